"""
Step registry for the medication therapy review workflow.

GOVERNANCE:
- Step order is fixed at build time
- Clinical validity of step data is decided by the step itself, never here
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class StepDefinition:
    """An immutable workflow step."""

    step_id: str
    label: str
    description: str
    order: int
    validation_required: bool
    validation_message: str = "This step is not complete yet"


@runtime_checkable
class StepCapability(Protocol):
    """
    Per-step input handling supplied by the host UI.

    The orchestrator only asks whether the step is valid enough to
    proceed and what data to record when it completes.
    """

    def validate(self) -> bool: ...

    def extract_data(self) -> dict[str, Any]: ...


class StepRegistry:
    """Ordered, read-only catalogue of workflow steps."""

    def __init__(self, steps: list[StepDefinition]):
        if not steps:
            raise ValueError("Step registry needs at least one step")
        ordered = sorted(steps, key=lambda s: s.order)
        ids = [s.step_id for s in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError("Step ids must be unique")
        self._steps: tuple[StepDefinition, ...] = tuple(ordered)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(self._steps)

    def __getitem__(self, index: int) -> StepDefinition:
        return self._steps[index]

    @property
    def last_index(self) -> int:
        return len(self._steps) - 1

    def contains_index(self, index: int) -> bool:
        return 0 <= index < len(self._steps)

    def get(self, step_id: str) -> Optional[StepDefinition]:
        """Look up a step by id."""
        for step in self._steps:
            if step.step_id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        for index, step in enumerate(self._steps):
            if step.step_id == step_id:
                return index
        raise KeyError(f"Unknown step {step_id}")

    def required_steps(self) -> list[StepDefinition]:
        """Steps that must be completed before the review can be finalized."""
        return [s for s in self._steps if s.validation_required]


MTR_STEPS = StepRegistry(
    [
        StepDefinition(
            step_id="patient_selection",
            label="Patient Selection",
            description="Select or create a patient for medication therapy review",
            order=0,
            validation_required=True,
            validation_message="Please select a patient first",
        ),
        StepDefinition(
            step_id="medication_history",
            label="Medication History",
            description="Collect comprehensive medication history and current regimen",
            order=1,
            validation_required=True,
            validation_message="At least one medication must be entered",
        ),
        StepDefinition(
            step_id="therapy_assessment",
            label="Therapy Assessment",
            description="Assess therapy for drug-related problems and interactions",
            order=2,
            validation_required=True,
            validation_message="Assessment must be completed",
        ),
        StepDefinition(
            step_id="plan_development",
            label="Plan Development",
            description="Develop therapy recommendations and monitoring plans",
            order=3,
            validation_required=True,
            validation_message="Therapy plan must be created",
        ),
        StepDefinition(
            step_id="interventions",
            label="Interventions",
            description="Document interventions and track outcomes",
            order=4,
            validation_required=False,
        ),
        StepDefinition(
            step_id="follow_up",
            label="Follow-Up",
            description="Schedule follow-up activities and monitoring",
            order=5,
            validation_required=False,
        ),
    ]
)
