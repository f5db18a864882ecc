"""
Workflow session state models.

GOVERNANCE:
- Terminal states are never left
"""

from enum import Enum


class SessionState(str, Enum):
    """Orchestrator session state enum."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"  # Fetching or creating the review
    ACTIVE = "active"  # Pharmacist working, autosave running
    SAVING = "saving"  # A save is in flight
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"  # Loading failed, re-initialize to retry

    @property
    def is_open(self) -> bool:
        """Whether the session accepts navigation and saves."""
        return self in (SessionState.ACTIVE, SessionState.SAVING)

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.CANCELLED)
