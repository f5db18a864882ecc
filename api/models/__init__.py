"""API models."""

from api.models.review import (
    CompleteStepRequest,
    CreateReviewRequest,
    PermissionResponse,
    Review,
    ReviewProgress,
    ReviewStatus,
    SaveReviewRequest,
    StepRecord,
)
from api.models.session import SessionState

__all__ = [
    "Review",
    "ReviewStatus",
    "StepRecord",
    "CreateReviewRequest",
    "SaveReviewRequest",
    "CompleteStepRequest",
    "ReviewProgress",
    "PermissionResponse",
    "SessionState",
]
