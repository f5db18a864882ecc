"""
Review session state machine.

GOVERNANCE:
- One review per patient is worked at a time; an in-progress review is
  always resumed before a new one is created
- Completed and cancelled reviews are never modified again
- Gateway failures never escape: they become SessionError values
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from api.models.review import Review, ReviewStatus, StepRecord
from api.models.session import SessionState
from workflow.autosave import AutosaveScheduler
from workflow.completion import (
    can_complete_review,
    completion_percentage,
    furthest_reachable_index,
    missing_required_steps,
    next_step_index,
)
from workflow.errors import (
    ErrorCategory,
    GatewayError,
    GatewayTimeoutError,
    SessionError,
)
from workflow.gateway import PersistenceGateway
from workflow.permissions import PermissionGate
from workflow.steps import MTR_STEPS, StepDefinition, StepRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionListener = Callable[["ReviewSession"], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewSession:
    """
    Owns the Review being worked on and every transition applied to it.

    States: UNINITIALIZED -> LOADING -> ACTIVE <-> SAVING -> COMPLETED |
    CANCELLED, with ERROR reachable from LOADING. Writes to the gateway are
    serialized through one lock; autosave ticks that find it held are
    skipped rather than queued.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: StepRegistry = MTR_STEPS,
        permission_gate: Optional[PermissionGate] = None,
        autosave_interval_seconds: float = 30.0,
        teardown_grace_seconds: float = 2.0,
        gateway_timeout_seconds: Optional[float] = 60.0,
    ):
        self._gateway = gateway
        self.registry = registry
        self._permissions = permission_gate or PermissionGate(gateway.check_permissions)
        self._teardown_grace_seconds = teardown_grace_seconds
        self._gateway_timeout_seconds = gateway_timeout_seconds

        self._state = SessionState.UNINITIALIZED
        self._review: Optional[Review] = None
        self.error: Optional[SessionError] = None

        self._save_lock = asyncio.Lock()
        self._revision = 0
        self._saved_revision = 0
        self._listeners: list[SessionListener] = []
        self._torn_down = False
        self._autosave = AutosaveScheduler(self.autosave, autosave_interval_seconds)

    # Read side

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def review(self) -> Optional[Review]:
        """A copy of the current review; mutate it only through the session."""
        if self._review is None:
            return None
        return self._review.model_copy(deep=True)

    @property
    def review_id(self) -> Optional[str]:
        return self._review.review_id if self._review else None

    @property
    def current_step_index(self) -> int:
        return self._review.current_step_index if self._review else 0

    @property
    def current_step(self) -> StepDefinition:
        return self.registry[self.current_step_index]

    @property
    def dirty(self) -> bool:
        """Whether local changes have not been saved yet."""
        return self._revision != self._saved_revision

    @property
    def save_in_flight(self) -> bool:
        return self._save_lock.locked()

    @property
    def autosave_running(self) -> bool:
        return self._autosave.running

    def is_step_completed(self, step_id: str) -> bool:
        return self._review is not None and self._review.is_step_completed(step_id)

    def current_step_name(self) -> str:
        return self.current_step.label

    def completion_percentage(self) -> float:
        return completion_percentage(self._review, self.registry)

    def can_complete_review(self) -> bool:
        return can_complete_review(self._review, self.registry)

    def next_step(self) -> Optional[int]:
        return next_step_index(self._review, self.registry)

    def furthest_reachable_index(self) -> int:
        return furthest_reachable_index(self._review, self.registry)

    # Subscriptions

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call `listener(session)` after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Lifecycle

    async def initialize(
        self, review_id: Optional[str] = None, patient_id: Optional[str] = None
    ) -> bool:
        """
        Load or create the review this session works on.

        With a review_id the review is loaded as-is. With a patient_id the
        patient's in-progress review is resumed, and a new one is created
        only when none exists.

        Returns:
            True when the session ended up with a review
        """
        if self._torn_down:
            self._fail(ErrorCategory.SESSION_CLOSED, "Review session has been torn down")
            return False
        if self._state not in (SessionState.UNINITIALIZED, SessionState.ERROR):
            logger.debug("Session already %s, ignoring initialize", self._state.value)
            return False

        self.clear_error()
        if not review_id and not (patient_id and patient_id.strip()):
            self._fail(
                ErrorCategory.INITIALIZATION, "A review id or patient id is required"
            )
            return False

        # Claimed before the first await so a concurrent initialize backs off
        previous_state = self._state
        self._set_state(SessionState.LOADING)

        try:
            allowed = await self._call(self._permissions.check())
        except GatewayError as e:
            allowed = False
            self._permissions.denied_reason = str(e)
        if not allowed:
            self._set_state(previous_state)
            self._fail(ErrorCategory.PERMISSION, self._permissions.denied_reason or "")
            return False

        try:
            if review_id:
                review = await self._call(self._gateway.load_review(review_id))
                logger.info("Loaded review %s", review.review_id)
            else:
                patient_id = patient_id.strip()
                review = await self._call(
                    self._gateway.load_in_progress_review(patient_id)
                )
                if review is not None:
                    logger.info(
                        "Resuming in-progress review %s for patient %s",
                        review.review_id,
                        patient_id,
                    )
                elif not self._torn_down:
                    review = await self._call(self._gateway.create_review(patient_id))
                    logger.info(
                        "Created review %s for patient %s", review.review_id, patient_id
                    )
        except GatewayError as e:
            self._review = None
            self._set_state(SessionState.ERROR)
            self._fail(
                ErrorCategory.INITIALIZATION,
                f"Failed to initialize review session: {e}",
            )
            return False

        if self._torn_down:
            logger.info("Session torn down while loading, discarding the result")
            self._set_state(previous_state)
            return False

        self._open(review)
        return True

    async def teardown(self) -> None:
        """Abandon the session: stop autosave and try one last bounded save."""
        self._torn_down = True
        if not self._state.is_open or self.review_id is None:
            self._autosave.stop()
            return
        await self._autosave.shutdown(self._final_save, self._teardown_grace_seconds)

    # Writes

    async def save(self) -> bool:
        """Explicitly save the current snapshot. Failures are recorded, not raised."""
        self.clear_error()
        if not self.ensure_open("save the review"):
            return False

        async with self._save_lock:
            if not self.ensure_open("save the review"):
                return False
            try:
                await self._persist_snapshot()
            except GatewayError as e:
                logger.warning("Failed to save review %s: %s", self.review_id, e)
                self._fail(ErrorCategory.SAVE, f"Failed to save review: {e}")
                return False
        return True

    async def autosave(self) -> bool:
        """
        Save if there is something to save and nothing else is saving.

        Failures are logged only; the next tick tries again.
        """
        if self._state is not SessionState.ACTIVE or self._review is None:
            return False
        if self._save_lock.locked():
            logger.debug("Autosave skipped, save already in flight")
            return False
        if not self.dirty:
            logger.debug("Autosave skipped, no changes")
            return False

        async with self._save_lock:
            try:
                await self._persist_snapshot()
            except GatewayError as e:
                logger.warning(
                    "Autosave failed for review %s: %s", self.review_id, e, exc_info=True
                )
                return False
        return True

    async def complete_step(self, index: int, data: dict[str, Any]) -> bool:
        """
        Record a step as completed and persist it.

        The local record stands even if persisting fails (a save error is
        recorded and autosave retries later).

        Returns:
            True when the step was recorded
        """
        if not self.ensure_open("complete a step"):
            return False
        if not self.registry.contains_index(index):
            raise IndexError(f"No step at index {index}")

        step = self.registry[index]
        async with self._save_lock:
            if not self.ensure_open("complete a step"):
                return False
            self._review.steps[step.step_id] = StepRecord(
                completed=True, completed_at=_utcnow(), data=dict(data)
            )
            self._touch()

            self._set_state(SessionState.SAVING)
            try:
                remote = await self._call(
                    self._gateway.complete_step(self.review_id, index, data)
                )
            except GatewayError as e:
                logger.warning("Failed to save step %s: %s", step.step_id, e)
                self._fail(
                    ErrorCategory.SAVE, f"Failed to save {step.label}: {e}", step.step_id
                )
                return True
            finally:
                self._resume_active()
            self._adopt(remote)
        return True

    def move_to(self, index: int) -> bool:
        """Point the cursor at `index` if it is not past the first incomplete step."""
        if not self.ensure_open("change step"):
            return False
        if not self.registry.contains_index(index):
            return False
        if index > self.furthest_reachable_index():
            return False
        if index != self._review.current_step_index:
            self._review.current_step_index = index
            self._touch()
        return True

    async def complete(self) -> bool:
        """Save, then finalize the review. Requires every required step completed."""
        self.clear_error()
        if not self.ensure_open("complete the review"):
            return False

        missing = missing_required_steps(self._review, self.registry)
        if missing:
            message = (
                "Please complete all required steps before finishing the review: "
                + ", ".join(missing)
            )
            logger.warning("Completion rejected for review %s: %s", self.review_id, message)
            self._fail(ErrorCategory.COMPLETION, message)
            return False

        async with self._save_lock:
            if not self.ensure_open("complete the review"):
                return False
            try:
                await self._persist_snapshot()
            except GatewayError as e:
                self._fail(
                    ErrorCategory.COMPLETION, f"Failed to save review before completing: {e}"
                )
                return False

            self._set_state(SessionState.SAVING)
            try:
                remote = await self._call(self._gateway.complete_review(self.review_id))
            except GatewayError as e:
                self._resume_active()
                logger.warning("Failed to complete review %s: %s", self.review_id, e)
                self._fail(ErrorCategory.COMPLETION, f"Failed to complete review: {e}")
                return False

            self._adopt(remote, saved_revision=self._revision)
            self._review.status = ReviewStatus.COMPLETED
            if self._review.completed_at is None:
                self._review.completed_at = _utcnow()
            self._enter_terminal(SessionState.COMPLETED)

        logger.info(
            "Review %s completed for patient %s", self.review_id, self._review.patient_id
        )
        return True

    async def cancel(self) -> bool:
        """Cancel the review. Takes effect only once the gateway acknowledges it."""
        self.clear_error()
        if not self.ensure_open("cancel the review"):
            return False

        async with self._save_lock:
            if not self.ensure_open("cancel the review"):
                return False
            try:
                remote = await self._call(self._gateway.cancel_review(self.review_id))
            except GatewayError as e:
                logger.warning("Failed to cancel review %s: %s", self.review_id, e)
                self._fail(ErrorCategory.CANCELLATION, f"Failed to cancel review: {e}")
                return False

            self._adopt(remote, saved_revision=self._revision)
            self._review.status = ReviewStatus.CANCELLED
            self._enter_terminal(SessionState.CANCELLED)

        logger.info("Review %s cancelled", self.review_id)
        return True

    # Helpers shared with the navigation controller

    def ensure_open(self, action: str) -> bool:
        if self._state.is_open and self._review is not None:
            return True
        self._fail(
            ErrorCategory.SESSION_CLOSED,
            f"Cannot {action}: review session is {self._state.value}",
        )
        return False

    def report_validation_failure(self, step: StepDefinition, message: str) -> None:
        logger.warning("Step %s is not valid: %s", step.step_id, message)
        self._fail(ErrorCategory.VALIDATION, message, step.step_id)

    def clear_error(self) -> None:
        if self.error is not None:
            self.error = None
            self._notify()

    # Internals

    def _open(self, review: Review) -> None:
        cursor = min(
            max(review.current_step_index, 0),
            furthest_reachable_index(review, self.registry),
        )
        self._review = review.model_copy(update={"current_step_index": cursor})
        self._saved_revision = self._revision
        if cursor != review.current_step_index:
            self._revision += 1

        if review.status.is_terminal:
            self._enter_terminal(
                SessionState.COMPLETED
                if review.status is ReviewStatus.COMPLETED
                else SessionState.CANCELLED
            )
        else:
            self._set_state(SessionState.ACTIVE)
            self._autosave.start()

    async def _persist_snapshot(self) -> None:
        """Send the current snapshot. Caller must hold the save lock."""
        self._set_state(SessionState.SAVING)
        revision = self._revision
        snapshot = self._review.model_copy(deep=True)
        try:
            remote = await self._call(self._gateway.save_review(snapshot))
        finally:
            self._resume_active()
        self._adopt(remote, saved_revision=revision)

    async def _final_save(self) -> None:
        async with self._save_lock:
            if self._state.is_open:
                await self._persist_snapshot()

    def _adopt(self, remote: Review, saved_revision: Optional[int] = None) -> None:
        """
        Take the gateway's copy of the review.

        Steps completed locally stay completed and the cursor stays local:
        both are owned by this session.
        """
        steps = dict(remote.steps)
        for step_id, record in self._review.steps.items():
            if record.completed and not (step_id in steps and steps[step_id].completed):
                steps[step_id] = record
        self._review = remote.model_copy(
            update={
                "steps": steps,
                "current_step_index": self._review.current_step_index,
            }
        )
        if saved_revision is not None:
            self._saved_revision = saved_revision
        self._notify()

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a gateway call, bounded by the gateway timeout."""
        try:
            if self._gateway_timeout_seconds is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, timeout=self._gateway_timeout_seconds)
        except GatewayError:
            raise
        except asyncio.TimeoutError as e:
            raise GatewayTimeoutError(
                f"Review service did not respond within {self._gateway_timeout_seconds:g}s"
            ) from e
        except Exception as e:
            logger.exception("Unexpected error from review gateway")
            raise GatewayError(str(e) or type(e).__name__) from e

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        if self._state.is_terminal:
            raise RuntimeError(f"Review session is {self._state.value} and cannot change")
        self._state = state
        self._notify()

    def _resume_active(self) -> None:
        if self._state is SessionState.SAVING:
            self._set_state(SessionState.ACTIVE)

    def _enter_terminal(self, state: SessionState) -> None:
        self._set_state(state)
        self._autosave.stop()

    def _touch(self) -> None:
        self._revision += 1
        self._notify()

    def _fail(
        self, category: ErrorCategory, message: str, step_id: Optional[str] = None
    ) -> None:
        self.error = SessionError(category=category, message=message, step_id=step_id)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Review session listener failed")
