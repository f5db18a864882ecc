"""
Error taxonomy for the review workflow.

Gateway implementations raise GatewayError subclasses. The orchestrator
catches them at its boundary and records a SessionError instead.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class GatewayError(Exception):
    """A persistence gateway call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReviewNotFoundError(GatewayError):
    """The requested review does not exist."""


class ReviewConflictError(GatewayError):
    """The review service refused the change in the review's current state."""


class GatewayTimeoutError(GatewayError):
    """A gateway call did not settle in time."""


class ErrorCategory(str, Enum):
    """Where in the workflow an error happened."""

    PERMISSION = "permission"
    INITIALIZATION = "initialization"
    VALIDATION = "validation"
    SAVE = "save"
    COMPLETION = "completion"
    CANCELLATION = "cancellation"
    SESSION_CLOSED = "session_closed"


@dataclass
class SessionError:
    """An error surfaced to whoever drives the session."""

    category: ErrorCategory
    message: str
    step_id: Optional[str] = None

    @property
    def blocking(self) -> bool:
        """Errors that stop the workflow until the caller re-initializes."""
        return self.category in (ErrorCategory.PERMISSION, ErrorCategory.INITIALIZATION)
