"""API routes."""

from api.routes.permissions import router as permissions_router
from api.routes.review import router as review_router

__all__ = ["review_router", "permissions_router"]
