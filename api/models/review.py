"""
Medication therapy review models.

GOVERNANCE:
- Patient is fixed for the lifetime of a review
- Completed and cancelled reviews are terminal
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    """Review status enum."""

    IN_PROGRESS = "in_progress"  # Pharmacist working through the steps
    COMPLETED = "completed"  # Finalized, read-only
    CANCELLED = "cancelled"  # Abandoned on purpose, read-only

    @property
    def is_terminal(self) -> bool:
        return self is not ReviewStatus.IN_PROGRESS


class StepRecord(BaseModel):
    """Completion record for a single workflow step."""

    completed: bool = False
    completed_at: Optional[datetime] = None
    data: dict[str, Any] = Field(default_factory=dict)


class Review(BaseModel):
    """A medication therapy review session."""

    review_id: Optional[str] = None  # Assigned by the review service
    status: ReviewStatus = ReviewStatus.IN_PROGRESS
    patient_id: str = Field(..., min_length=1, frozen=True)
    pharmacist_id: Optional[str] = None

    # Keyed by step id, created lazily as steps complete
    steps: dict[str, StepRecord] = Field(default_factory=dict)
    current_step_index: int = Field(default=0, ge=0)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_step_completed(self, step_id: str) -> bool:
        record = self.steps.get(step_id)
        return record is not None and record.completed


class CreateReviewRequest(BaseModel):
    """Request to open a new review for a patient."""

    patient_id: str = Field(..., min_length=1)


class SaveReviewRequest(BaseModel):
    """Snapshot of in-progress review state sent on save."""

    steps: dict[str, StepRecord] = Field(default_factory=dict)
    current_step_index: int = Field(default=0, ge=0)


class CompleteStepRequest(BaseModel):
    """Request to mark a step completed."""

    data: dict[str, Any] = Field(default_factory=dict)


class ReviewProgress(BaseModel):
    """Progress summary for a review."""

    review_id: str
    completion_percentage: float
    next_step: Optional[int]
    can_complete: bool
    steps: dict[str, StepRecord]


class PermissionResponse(BaseModel):
    """Result of a permission check."""

    allowed: bool
    pharmacist_id: Optional[str] = None
