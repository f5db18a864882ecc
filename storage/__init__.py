"""Review storage."""

from storage.reviews import ReviewStorage, get_storage

__all__ = ["ReviewStorage", "get_storage"]
