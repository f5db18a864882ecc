"""
In-memory review storage for the reference review service.

GOVERNANCE:
- No persistent storage (demo only)
- No external database connections
- At most one in-progress review per patient
"""

import threading
from functools import lru_cache
from typing import Optional

from api.models.review import Review, ReviewStatus


class ReviewStorage:
    """In-memory review storage for demo purposes."""

    def __init__(self):
        self._reviews: dict[str, Review] = {}
        self._lock = threading.Lock()

    def create(self, review: Review) -> None:
        """
        Store a new review.

        Raises:
            ValueError: if the patient already has an in-progress review
        """
        with self._lock:
            if self._find_in_progress(review.patient_id) is not None:
                raise ValueError(
                    f"Patient {review.patient_id} already has an active MTR session"
                )
            self._reviews[review.review_id] = review.model_copy(deep=True)

    def get(self, review_id: str) -> Optional[Review]:
        """
        Retrieve a copy of a review by ID.

        Changes to the copy are stored only through update().
        """
        with self._lock:
            review = self._reviews.get(review_id)
            return review.model_copy(deep=True) if review is not None else None

    def update(self, review: Review) -> None:
        """Replace an existing review."""
        with self._lock:
            if review.review_id not in self._reviews:
                raise KeyError(f"Review {review.review_id} not found")
            self._reviews[review.review_id] = review.model_copy(deep=True)

    def find_in_progress(self, patient_id: str) -> Optional[Review]:
        """The patient's in-progress review, if any."""
        with self._lock:
            review = self._find_in_progress(patient_id)
            return review.model_copy(deep=True) if review is not None else None

    def count_by_status(self) -> dict[str, int]:
        """Count reviews by status."""
        counts = {status.value: 0 for status in ReviewStatus}
        with self._lock:
            for review in self._reviews.values():
                counts[review.status.value] += 1
        return counts

    def _find_in_progress(self, patient_id: str) -> Optional[Review]:
        # create() keeps this to at most one match
        for review in self._reviews.values():
            if review.patient_id == patient_id and review.status == ReviewStatus.IN_PROGRESS:
                return review
        return None


@lru_cache
def get_storage() -> ReviewStorage:
    """Get the singleton storage instance."""
    return ReviewStorage()
