"""Completion metrics derived from a review's step records."""

from typing import Optional

from api.models.review import Review
from workflow.steps import StepRegistry


def completion_percentage(review: Optional[Review], registry: StepRegistry) -> float:
    """Share of registry steps completed, 0-100."""
    if review is None:
        return 0.0
    completed = sum(1 for step in registry if review.is_step_completed(step.step_id))
    return 100.0 * completed / len(registry)


def can_complete_review(review: Optional[Review], registry: StepRegistry) -> bool:
    """True when every validation-required step is completed."""
    if review is None:
        return False
    return not missing_required_steps(review, registry)


def missing_required_steps(review: Review, registry: StepRegistry) -> list[str]:
    """Labels of required steps not yet completed, in workflow order."""
    return [
        step.label
        for step in registry.required_steps()
        if not review.is_step_completed(step.step_id)
    ]


def next_step_index(review: Optional[Review], registry: StepRegistry) -> Optional[int]:
    """
    Index of the first incomplete step.

    Returns None when every step is completed, or when there is no review.
    """
    if review is None:
        return None
    for index, step in enumerate(registry):
        if not review.is_step_completed(step.step_id):
            return index
    return None


def furthest_reachable_index(review: Optional[Review], registry: StepRegistry) -> int:
    """Highest index a pharmacist may navigate to directly."""
    index = next_step_index(review, registry)
    return registry.last_index if index is None else index
