"""Permission gate run before any review is loaded or created."""

import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = (
    "You do not have permission to access medication therapy reviews. "
    "Please contact your administrator."
)


class PermissionGate:
    """
    Wraps an async permission check.

    A check that raises counts as a denial. Nothing is retried here: the
    caller re-runs initialization to check again.
    """

    def __init__(self, check: Callable[[], Awaitable[bool]]):
        self._check = check
        self.denied_reason: Optional[str] = None

    async def check(self) -> bool:
        """Run the check and remember why it failed, if it did."""
        self.denied_reason = None
        try:
            allowed = bool(await self._check())
        except Exception as e:
            logger.warning("Permission check failed: %s", e)
            self.denied_reason = f"{PERMISSION_DENIED_MESSAGE} ({e})"
            return False

        if not allowed:
            logger.warning("Permission denied for medication therapy review")
            self.denied_reason = PERMISSION_DENIED_MESSAGE
        return allowed
