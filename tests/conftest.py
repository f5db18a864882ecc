"""Shared fixtures for the review workflow tests."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.models.review import Review, ReviewStatus, StepRecord
from config import Settings
from storage import ReviewStorage, get_storage
from workflow.completion import missing_required_steps
from workflow.errors import GatewayError, ReviewNotFoundError
from workflow.orchestrator import ReviewWorkflow
from workflow.session import ReviewSession
from workflow.steps import MTR_STEPS, StepRegistry

WRITE_OPERATIONS = {"save_review", "complete_step", "complete_review", "cancel_review"}


class FakeGateway:
    """
    In-memory persistence gateway.

    Records every call, can fail an operation with a given error, and can
    hold an operation open until its gate event is set.
    """

    def __init__(self, registry: StepRegistry = MTR_STEPS):
        self.registry = registry
        self.reviews: dict[str, Review] = {}
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.allowed = True
        self.writes_in_flight = 0
        self.max_writes_in_flight = 0
        self._next_id = 1

    def seed(self, patient_id: str = "patient-1", **fields: Any) -> Review:
        """Store a review directly, bypassing the call log."""
        now = datetime.now(timezone.utc)
        review = Review(
            review_id=f"rev-{self._next_id}",
            patient_id=patient_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._next_id += 1
        self.reviews[review.review_id] = review
        return review.model_copy(deep=True)

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    async def _run(self, operation: str) -> None:
        self.calls.append(operation)
        write = operation in WRITE_OPERATIONS
        if write:
            self.writes_in_flight += 1
            self.max_writes_in_flight = max(self.max_writes_in_flight, self.writes_in_flight)
        try:
            gate = self.gates.get(operation)
            if gate is not None:
                await gate.wait()
            error = self.failures.get(operation)
            if error is not None:
                raise error
        finally:
            if write:
                self.writes_in_flight -= 1

    def _stored(self, review_id: str) -> Review:
        review = self.reviews.get(review_id)
        if review is None:
            raise ReviewNotFoundError("Review not found", 404)
        return review

    async def create_review(self, patient_id: str) -> Review:
        await self._run("create_review")
        return self.seed(patient_id)

    async def load_review(self, review_id: str) -> Review:
        await self._run("load_review")
        return self._stored(review_id).model_copy(deep=True)

    async def load_in_progress_review(self, patient_id: str) -> Optional[Review]:
        await self._run("load_in_progress_review")
        for review in self.reviews.values():
            if review.patient_id == patient_id and review.status == ReviewStatus.IN_PROGRESS:
                return review.model_copy(deep=True)
        return None

    async def save_review(self, review: Review) -> Review:
        await self._run("save_review")
        stored = self._stored(review.review_id)
        stored.steps = {k: v.model_copy() for k, v in review.steps.items()}
        stored.current_step_index = review.current_step_index
        stored.updated_at = datetime.now(timezone.utc)
        return stored.model_copy(deep=True)

    async def complete_step(
        self, review_id: str, step_index: int, data: dict[str, Any]
    ) -> Review:
        await self._run("complete_step")
        stored = self._stored(review_id)
        step = self.registry[step_index]
        stored.steps[step.step_id] = StepRecord(
            completed=True, completed_at=datetime.now(timezone.utc), data=data
        )
        return stored.model_copy(deep=True)

    async def complete_review(self, review_id: str) -> Review:
        await self._run("complete_review")
        stored = self._stored(review_id)
        missing = missing_required_steps(stored, self.registry)
        if missing:
            raise GatewayError(f"Required steps not completed: {', '.join(missing)}", 400)
        stored.status = ReviewStatus.COMPLETED
        return stored.model_copy(deep=True)

    async def cancel_review(self, review_id: str) -> Review:
        await self._run("cancel_review")
        stored = self._stored(review_id)
        stored.status = ReviewStatus.CANCELLED
        return stored.model_copy(deep=True)

    async def check_permissions(self) -> bool:
        await self._run("check_permissions")
        return self.allowed


class StubStep:
    """Step capability with a fixed validity and payload."""

    def __init__(self, valid: bool = True, data: Optional[dict[str, Any]] = None):
        self.valid = valid
        self.data = data or {}

    def validate(self) -> bool:
        return self.valid

    def extract_data(self) -> dict[str, Any]:
        return dict(self.data)


def make_settings(**overrides: Any) -> Settings:
    values = {
        "autosave_interval_seconds": 3600.0,
        "teardown_grace_seconds": 0.2,
        "gateway_timeout_seconds": 1.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def session(gateway):
    return ReviewSession(
        gateway,
        autosave_interval_seconds=3600.0,
        teardown_grace_seconds=0.2,
        gateway_timeout_seconds=1.0,
    )


@pytest.fixture
def workflow(gateway):
    wf = ReviewWorkflow(gateway, settings=make_settings())
    for step in MTR_STEPS.required_steps():
        wf.bind_step(step.step_id, StubStep(data={"entered": step.step_id}))
    return wf


@pytest.fixture
def storage():
    return ReviewStorage()


@pytest.fixture
def client(storage):
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield TestClient(app, headers={"X-Pharmacist-Id": "pharm-1"})
    finally:
        app.dependency_overrides.clear()
