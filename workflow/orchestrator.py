"""
Medication therapy review workflow.

GOVERNANCE:
- Permission is checked before any review is loaded or created
- Clinical judgement stays with the pharmacist; the workflow only gates
  navigation on each step's own validity signal
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import httpx

from api.models.review import Review
from api.models.session import SessionState
from config import Settings, get_settings
from workflow.errors import SessionError
from workflow.gateway import HttpPersistenceGateway, PersistenceGateway
from workflow.navigation import NavigationController
from workflow.permissions import PermissionGate
from workflow.session import ReviewSession, SessionListener
from workflow.steps import MTR_STEPS, StepCapability, StepRegistry


class ReviewWorkflow:
    """
    Entry point for driving one review session.

    Holds the session state machine and its navigation controller, and
    exposes the operations the surrounding UI needs.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: StepRegistry = MTR_STEPS,
        settings: Optional[Settings] = None,
        permission_gate: Optional[PermissionGate] = None,
    ):
        settings = settings or get_settings()
        self.session = ReviewSession(
            gateway,
            registry=registry,
            permission_gate=permission_gate,
            autosave_interval_seconds=settings.autosave_interval_seconds,
            teardown_grace_seconds=settings.teardown_grace_seconds,
            gateway_timeout_seconds=settings.gateway_timeout_seconds,
        )
        self.navigation = NavigationController(self.session)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def review(self) -> Optional[Review]:
        return self.session.review

    @property
    def error(self) -> Optional[SessionError]:
        return self.session.error

    async def start(
        self, review_id: Optional[str] = None, patient_id: Optional[str] = None
    ) -> bool:
        """Resume a review by id, or resume-or-create one for a patient."""
        return await self.session.initialize(review_id=review_id, patient_id=patient_id)

    async def close(self) -> None:
        """Tear down the session, attempting one final save."""
        await self.session.teardown()

    def bind_step(self, step_id: str, capability: StepCapability) -> None:
        self.navigation.bind(step_id, capability)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        return self.session.subscribe(listener)

    # Queries

    def get_current_step_name(self) -> str:
        return self.session.current_step_name()

    def get_completion_percentage(self) -> float:
        return self.session.completion_percentage()

    def get_next_step(self) -> Optional[int]:
        return self.session.next_step()

    def can_complete_review(self) -> bool:
        return self.session.can_complete_review()

    # Commands

    async def next(self) -> bool:
        return await self.navigation.next()

    def back(self) -> bool:
        return self.navigation.back()

    def jump_to(self, index: int) -> bool:
        return self.navigation.jump_to(index)

    async def skip_optional_step(self) -> bool:
        return await self.navigation.skip_optional_step()

    async def save(self) -> bool:
        return await self.session.save()

    async def complete(self) -> bool:
        return await self.session.complete()

    async def cancel(self) -> bool:
        return await self.session.cancel()


@asynccontextmanager
async def open_workflow(
    settings: Optional[Settings] = None,
    registry: StepRegistry = MTR_STEPS,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[ReviewWorkflow]:
    """
    Build a workflow talking to the review service over HTTP.

    The session is torn down and the HTTP client closed on exit.
    """
    settings = settings or get_settings()
    async with HttpPersistenceGateway(
        base_url=settings.api_base_url,
        pharmacist_id=settings.demo_pharmacist_id,
        timeout=settings.http_timeout_seconds,
        client=client,
    ) as gateway:
        workflow = ReviewWorkflow(gateway, registry=registry, settings=settings)
        try:
            yield workflow
        finally:
            await workflow.close()
