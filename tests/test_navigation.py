"""Tests for step navigation through the review workflow."""

import asyncio

import pytest

from api.models.session import SessionState
from tests.conftest import FakeGateway, StubStep, make_settings
from workflow.errors import ErrorCategory, GatewayError
from workflow.navigation import SKIPPED_STEP_REASON
from workflow.orchestrator import ReviewWorkflow
from workflow.steps import StepDefinition, StepRegistry


async def _advance_to(workflow, index):
    while workflow.session.current_step_index < index:
        assert await workflow.next() is True


@pytest.mark.asyncio
async def test_invalid_step_blocks_next_without_writing(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    workflow.bind_step("patient_selection", StubStep(valid=False))

    assert await workflow.next() is False

    assert workflow.error.category is ErrorCategory.VALIDATION
    assert workflow.error.message == "Please select a patient first"
    assert workflow.error.step_id == "patient_selection"
    assert workflow.session.current_step_index == 0
    assert gateway.count("complete_step") == 0
    assert gateway.count("save_review") == 0
    await workflow.close()


@pytest.mark.asyncio
async def test_unbound_required_step_fails_validation(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    workflow.navigation.unbind("patient_selection")

    assert await workflow.next() is False

    assert workflow.error.category is ErrorCategory.VALIDATION
    await workflow.close()


@pytest.mark.asyncio
async def test_next_records_step_and_advances(gateway, workflow):
    await workflow.start(patient_id="patient-1")

    assert await workflow.next() is True

    assert workflow.session.current_step_index == 1
    assert workflow.get_current_step_name() == "Medication History"
    record = workflow.review.steps["patient_selection"]
    assert record.completed
    assert record.completed_at is not None
    assert record.data == {"step_name": "Patient Selection", "entered": "patient_selection"}
    stored = gateway.reviews[workflow.review.review_id]
    assert stored.steps["patient_selection"].completed
    await workflow.close()


@pytest.mark.asyncio
async def test_validation_error_clears_on_next_success(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    capability = StubStep(valid=False)
    workflow.bind_step("patient_selection", capability)
    await workflow.next()

    capability.valid = True
    assert await workflow.next() is True
    assert workflow.error is None
    await workflow.close()


@pytest.mark.asyncio
async def test_back_keeps_completion_and_stops_at_first_step(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await _advance_to(workflow, 2)

    assert workflow.back() is True
    assert workflow.session.current_step_index == 1
    assert workflow.back() is True
    assert workflow.back() is False

    assert workflow.session.current_step_index == 0
    assert workflow.session.is_step_completed("medication_history")
    assert workflow.get_completion_percentage() == pytest.approx(200 / 6)
    await workflow.close()


@pytest.mark.asyncio
async def test_jump_ahead_of_first_incomplete_step_is_ignored(gateway, workflow):
    """Only completed steps and the first incomplete one can be reached."""
    await workflow.start(patient_id="patient-1")
    await workflow.next()

    assert workflow.jump_to(5) is False
    assert workflow.session.current_step_index == 1

    assert workflow.jump_to(0) is True
    assert workflow.session.current_step_index == 0
    assert workflow.jump_to(1) is True
    assert workflow.jump_to(2) is False
    await workflow.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("index", [-1, 6, 99])
async def test_jump_out_of_range_is_ignored(gateway, workflow, index):
    await workflow.start(patient_id="patient-1")

    assert workflow.jump_to(index) is False

    assert workflow.session.current_step_index == 0
    assert workflow.error is None
    await workflow.close()


@pytest.mark.asyncio
async def test_jump_anywhere_once_all_steps_complete(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await _advance_to(workflow, 4)
    await workflow.skip_optional_step()
    await workflow.skip_optional_step()

    assert workflow.get_completion_percentage() == 100.0
    assert workflow.get_next_step() is None
    assert workflow.jump_to(0) is True
    assert workflow.jump_to(5) is True
    await workflow.close()


@pytest.mark.asyncio
async def test_next_on_optional_last_step_is_a_no_op(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await _advance_to(workflow, 5)
    writes = gateway.count("complete_step")

    assert await workflow.next() is False

    assert workflow.session.current_step_index == 5
    assert not workflow.session.is_step_completed("follow_up")
    assert gateway.count("complete_step") == writes
    assert workflow.error is None
    await workflow.close()


@pytest.mark.asyncio
async def test_skip_optional_step_records_reason(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await _advance_to(workflow, 4)

    assert await workflow.skip_optional_step() is True

    assert workflow.session.current_step_index == 5
    record = workflow.review.steps["interventions"]
    assert record.completed
    assert record.data == {
        "step_name": "Interventions",
        "skipped": True,
        "reason": SKIPPED_STEP_REASON,
    }

    assert await workflow.skip_optional_step() is True
    assert workflow.session.current_step_index == 5
    assert workflow.get_completion_percentage() == 100.0
    await workflow.close()


@pytest.mark.asyncio
async def test_required_step_cannot_be_skipped(gateway, workflow):
    await workflow.start(patient_id="patient-1")

    assert await workflow.skip_optional_step() is False

    assert workflow.error.category is ErrorCategory.VALIDATION
    assert workflow.error.message == "Patient Selection cannot be skipped"
    assert gateway.count("complete_step") == 0
    await workflow.close()


@pytest.mark.asyncio
async def test_next_stays_optimistic_when_persisting_fails(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    gateway.failures["complete_step"] = GatewayError("Review service unreachable")

    assert await workflow.next() is True

    assert workflow.session.current_step_index == 1
    assert workflow.session.is_step_completed("patient_selection")
    assert workflow.session.dirty
    assert workflow.error.category is ErrorCategory.SAVE
    assert workflow.error.step_id == "patient_selection"
    assert workflow.state is SessionState.ACTIVE

    del gateway.failures["complete_step"]
    assert await workflow.save() is True
    assert gateway.reviews[workflow.review.review_id].steps["patient_selection"].completed
    await workflow.close()


@pytest.mark.asyncio
async def test_back_during_step_save_is_not_overridden(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await workflow.next()
    gate = asyncio.Event()
    gateway.gates["complete_step"] = gate

    pending = asyncio.create_task(workflow.next())
    await asyncio.sleep(0.01)
    assert workflow.back() is True

    gate.set()
    assert await pending is True

    assert workflow.session.current_step_index == 0
    assert workflow.session.is_step_completed("medication_history")
    await workflow.close()


@pytest.mark.asyncio
async def test_jump_during_skip_is_not_overridden(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await _advance_to(workflow, 4)
    gate = asyncio.Event()
    gateway.gates["complete_step"] = gate

    pending = asyncio.create_task(workflow.skip_optional_step())
    await asyncio.sleep(0.01)
    assert workflow.jump_to(2) is True

    gate.set()
    assert await pending is True

    assert workflow.session.current_step_index == 2
    assert workflow.session.is_step_completed("interventions")
    await workflow.close()


@pytest.mark.asyncio
async def test_completion_never_decreases_while_navigating(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    seen = []

    for action in ["next", "next", "back", "back", "next", "next", "next", "back"]:
        result = getattr(workflow, action)()
        if action == "next":
            await result
        seen.append(workflow.get_completion_percentage())

    assert seen == sorted(seen)
    await workflow.close()


@pytest.mark.asyncio
async def test_server_copy_without_local_step_keeps_local_completion(gateway, workflow):
    """A stale server response cannot un-complete a step."""
    await workflow.start(patient_id="patient-1")
    await workflow.next()
    stored = gateway.reviews[workflow.review.review_id]
    stored.steps = {}

    await workflow.next()

    assert set(stored.steps) == {"medication_history"}
    assert workflow.session.is_step_completed("patient_selection")
    assert workflow.session.is_step_completed("medication_history")
    await workflow.close()


@pytest.mark.asyncio
async def test_navigation_refused_once_closed(gateway, workflow):
    await workflow.start(patient_id="patient-1")
    await workflow.cancel()

    assert await workflow.next() is False
    assert workflow.back() is False
    assert workflow.jump_to(0) is False
    assert await workflow.skip_optional_step() is False
    assert workflow.error.category is ErrorCategory.SESSION_CLOSED


@pytest.mark.asyncio
async def test_required_last_step_completes_without_advancing():
    registry = StepRegistry(
        [
            StepDefinition("intake", "Intake", "Collect details", 1, False),
            StepDefinition("sign_off", "Sign-Off", "Pharmacist sign-off", 2, True, "Sign-off is required"),
        ]
    )
    gateway = FakeGateway(registry)
    workflow = ReviewWorkflow(gateway, registry=registry, settings=make_settings())
    workflow.bind_step("sign_off", StubStep())
    await workflow.start(patient_id="patient-1")

    assert await workflow.next() is True
    assert await workflow.next() is True

    assert workflow.session.current_step_index == 1
    assert workflow.can_complete_review()
    assert await workflow.complete() is True
    assert workflow.state is SessionState.COMPLETED


def test_bind_unknown_step_raises(workflow):
    with pytest.raises(KeyError):
        workflow.bind_step("billing", StubStep())


