"""
Medication therapy review routes.

GOVERNANCE:
- Completion REQUIRES every required step completed
- Completed and cancelled reviews are read-only
- All operations require a pharmacist identity
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from api.models.review import (
    CompleteStepRequest,
    CreateReviewRequest,
    Review,
    ReviewProgress,
    ReviewStatus,
    SaveReviewRequest,
    StepRecord,
)
from api.routes.permissions import require_pharmacist
from storage import ReviewStorage, get_storage
from workflow.completion import (
    can_complete_review,
    completion_percentage,
    missing_required_steps,
    next_step_index,
)
from workflow.steps import MTR_STEPS

router = APIRouter(
    prefix="/v1/reviews",
    tags=["reviews"],
    dependencies=[Depends(require_pharmacist)],
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get_review(storage: ReviewStorage, review_id: str) -> Review:
    review = storage.get(review_id)
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


def _ensure_in_progress(review: Review) -> None:
    if review.status.is_terminal:
        raise HTTPException(
            status_code=409,
            detail=f"Review is not in progress (status: {review.status.value})",
        )


@router.post("", response_model=Review, status_code=201)
def create_review(
    request: CreateReviewRequest,
    pharmacist_id: str = Depends(require_pharmacist),
    storage: ReviewStorage = Depends(get_storage),
):
    """
    Open a new review for a patient.

    GOVERNANCE:
    - Rejected if the patient already has an in-progress review
    """
    now = _now()
    review = Review(
        review_id=str(uuid.uuid4()),
        status=ReviewStatus.IN_PROGRESS,
        patient_id=request.patient_id.strip(),
        pharmacist_id=pharmacist_id,
        created_at=now,
        updated_at=now,
    )

    try:
        storage.create(review)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return review


@router.get("/in-progress", response_model=Optional[Review])
def get_in_progress_review(
    patient_id: str, storage: ReviewStorage = Depends(get_storage)
):
    """Get the patient's in-progress review, or null if there is none."""
    return storage.find_in_progress(patient_id.strip())


@router.get("/stats/counts")
def get_review_counts(storage: ReviewStorage = Depends(get_storage)):
    """Get counts of reviews by status."""
    return storage.count_by_status()


@router.get("/{review_id}", response_model=Review)
def get_review(review_id: str, storage: ReviewStorage = Depends(get_storage)):
    """Get a review by ID."""
    return _get_review(storage, review_id)


@router.put("/{review_id}", response_model=Review)
def save_review(
    review_id: str,
    request: SaveReviewRequest,
    storage: ReviewStorage = Depends(get_storage),
):
    """
    Save the in-progress state of a review.

    Saving the same snapshot twice leaves the review unchanged apart from
    updated_at.
    """
    review = _get_review(storage, review_id)
    _ensure_in_progress(review)

    unknown = [step_id for step_id in request.steps if MTR_STEPS.get(step_id) is None]
    if unknown:
        raise HTTPException(
            status_code=400, detail=f"Unknown steps: {', '.join(sorted(unknown))}"
        )
    if not MTR_STEPS.contains_index(request.current_step_index):
        raise HTTPException(status_code=400, detail="Invalid current step index")

    review.steps = dict(request.steps)
    review.current_step_index = request.current_step_index
    review.updated_at = _now()
    storage.update(review)

    return review


@router.post("/{review_id}/steps/{step_index}/complete", response_model=Review)
def complete_step(
    review_id: str,
    step_index: int,
    request: CompleteStepRequest,
    storage: ReviewStorage = Depends(get_storage),
):
    """Mark a workflow step completed."""
    review = _get_review(storage, review_id)
    _ensure_in_progress(review)

    if not MTR_STEPS.contains_index(step_index):
        raise HTTPException(status_code=400, detail="Invalid step number")

    now = _now()
    step = MTR_STEPS[step_index]
    review.steps[step.step_id] = StepRecord(
        completed=True, completed_at=now, data=request.data
    )
    review.updated_at = now
    storage.update(review)

    return review


@router.post("/{review_id}/complete", response_model=Review)
def complete_review(review_id: str, storage: ReviewStorage = Depends(get_storage)):
    """
    Complete a review.

    GOVERNANCE:
    - Every required step must be completed
    - Irreversible
    """
    review = _get_review(storage, review_id)
    _ensure_in_progress(review)

    missing = missing_required_steps(review, MTR_STEPS)
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Required steps not completed: {', '.join(missing)}",
        )

    now = _now()
    review.status = ReviewStatus.COMPLETED
    review.completed_at = now
    review.updated_at = now
    storage.update(review)

    return review


@router.post("/{review_id}/cancel", response_model=Review)
def cancel_review(review_id: str, storage: ReviewStorage = Depends(get_storage)):
    """
    Cancel a review.

    GOVERNANCE:
    - Irreversible
    """
    review = _get_review(storage, review_id)
    _ensure_in_progress(review)

    review.status = ReviewStatus.CANCELLED
    review.updated_at = _now()
    storage.update(review)

    return review


@router.get("/{review_id}/progress", response_model=ReviewProgress)
def get_review_progress(review_id: str, storage: ReviewStorage = Depends(get_storage)):
    """Get workflow progress for a review."""
    review = _get_review(storage, review_id)

    return ReviewProgress(
        review_id=review.review_id,
        completion_percentage=completion_percentage(review, MTR_STEPS),
        next_step=next_step_index(review, MTR_STEPS),
        can_complete=can_complete_review(review, MTR_STEPS),
        steps=review.steps,
    )
