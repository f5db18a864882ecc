"""
Step navigation for a review session.

GOVERNANCE:
- A step that requires validation is never completed without it
- Navigation can revisit completed steps but never skip ahead
"""

import logging
from typing import Any, Optional

from workflow.session import ReviewSession
from workflow.steps import StepCapability, StepDefinition

logger = logging.getLogger(__name__)

SKIPPED_STEP_REASON = "No data to enter for this step"


class NavigationController:
    """Turns next/back/jump intents into validated session transitions."""

    def __init__(self, session: ReviewSession):
        self._session = session
        self._capabilities: dict[str, StepCapability] = {}

    def bind(self, step_id: str, capability: StepCapability) -> None:
        """Attach the host's input handling for a step."""
        self._session.registry.index_of(step_id)
        self._capabilities[step_id] = capability

    def unbind(self, step_id: str) -> None:
        self._capabilities.pop(step_id, None)

    def validate_step(self, index: int) -> Optional[str]:
        """
        Check whether the step at `index` may be completed.

        Returns:
            None if valid, otherwise the message to show the pharmacist
        """
        step = self._session.registry[index]
        if not step.validation_required:
            return None
        capability = self._capabilities.get(step.step_id)
        if capability is None or not capability.validate():
            return step.validation_message
        return None

    async def next(self) -> bool:
        """
        Complete the current step and move to the following one.

        On the last step, when it is optional, there is nothing to advance
        to and this is a no-op; finish with complete() instead.

        Returns:
            True if the step was completed
        """
        session = self._session
        session.clear_error()
        if not session.ensure_open("continue"):
            return False

        index = session.current_step_index
        step = session.current_step
        last_index = session.registry.last_index
        if index == last_index and not step.validation_required:
            return False

        message = self.validate_step(index)
        if message is not None:
            session.report_validation_failure(step, message)
            return False

        if not await session.complete_step(index, self._step_data(step)):
            return False
        self._advance_from(index)
        return True

    def back(self) -> bool:
        """Go to the previous step. Completion flags are left as they are."""
        session = self._session
        if not session.ensure_open("go back"):
            return False
        index = session.current_step_index
        if index == 0:
            return False
        return session.move_to(index - 1)

    def jump_to(self, index: int) -> bool:
        """
        Go to a completed step or the first incomplete one.

        Anything further ahead, or out of range, is ignored.
        """
        session = self._session
        if not session.ensure_open("change step"):
            return False
        if not session.registry.contains_index(index):
            logger.debug("Ignoring jump to out-of-range step %s", index)
            return False
        if index > session.furthest_reachable_index():
            logger.debug("Ignoring jump past first incomplete step to %s", index)
            return False
        return session.move_to(index)

    async def skip_optional_step(self) -> bool:
        """Mark the current optional step completed without data and move on."""
        session = self._session
        session.clear_error()
        if not session.ensure_open("skip a step"):
            return False

        index = session.current_step_index
        step = session.current_step
        if step.validation_required:
            session.report_validation_failure(step, f"{step.label} cannot be skipped")
            return False

        data = {"step_name": step.label, "skipped": True, "reason": SKIPPED_STEP_REASON}
        if not await session.complete_step(index, data):
            return False
        self._advance_from(index)
        return True

    def _advance_from(self, index: int) -> None:
        # back/jump_to may have moved the cursor while the step was being saved
        session = self._session
        if index == session.registry.last_index or not session.state.is_open:
            return
        if session.current_step_index != index:
            logger.debug("Cursor moved during save of step %s, not advancing", index)
            return
        session.move_to(index + 1)

    def _step_data(self, step: StepDefinition) -> dict[str, Any]:
        capability = self._capabilities.get(step.step_id)
        data = capability.extract_data() if capability is not None else {}
        return {"step_name": step.label, **data}
