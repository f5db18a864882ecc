"""
Persistence gateway for medication therapy reviews.

GOVERNANCE:
- Every request carries the pharmacist identity
- The review service is the source of truth for ids and timestamps
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from api.models.review import Review
from workflow.errors import GatewayError, ReviewConflictError, ReviewNotFoundError

logger = logging.getLogger(__name__)

PHARMACIST_HEADER = "X-Pharmacist-Id"


class PersistenceGateway(Protocol):
    """Remote review operations consumed by the orchestrator."""

    async def create_review(self, patient_id: str) -> Review: ...

    async def load_review(self, review_id: str) -> Review: ...

    async def load_in_progress_review(self, patient_id: str) -> Optional[Review]: ...

    async def save_review(self, review: Review) -> Review: ...

    async def complete_step(
        self, review_id: str, step_index: int, data: dict[str, Any]
    ) -> Review: ...

    async def complete_review(self, review_id: str) -> Review: ...

    async def cancel_review(self, review_id: str) -> Review: ...

    async def check_permissions(self) -> bool: ...


class HttpPersistenceGateway:
    """
    Gateway backed by the review service HTTP API.

    Args:
        base_url: Review service root, e.g. http://localhost:8000
        pharmacist_id: Identity sent with every request
        timeout: Transport timeout in seconds
        client: Pre-built client (tests pass one bound to the ASGI app)
    """

    def __init__(
        self,
        base_url: str,
        pharmacist_id: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._headers = {PHARMACIST_HEADER: pharmacist_id}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "HttpPersistenceGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_review(self, patient_id: str) -> Review:
        response = await self._request(
            "POST", "/v1/reviews", json={"patient_id": patient_id}
        )
        return Review.model_validate(response.json())

    async def load_review(self, review_id: str) -> Review:
        response = await self._request("GET", f"/v1/reviews/{review_id}")
        return Review.model_validate(response.json())

    async def load_in_progress_review(self, patient_id: str) -> Optional[Review]:
        response = await self._request(
            "GET", "/v1/reviews/in-progress", params={"patient_id": patient_id}
        )
        payload = response.json()
        if payload is None:
            return None
        return Review.model_validate(payload)

    async def save_review(self, review: Review) -> Review:
        response = await self._request(
            "PUT",
            f"/v1/reviews/{review.review_id}",
            json=review.model_dump(
                mode="json", include={"steps", "current_step_index"}
            ),
        )
        return Review.model_validate(response.json())

    async def complete_step(
        self, review_id: str, step_index: int, data: dict[str, Any]
    ) -> Review:
        response = await self._request(
            "POST",
            f"/v1/reviews/{review_id}/steps/{step_index}/complete",
            json={"data": data},
        )
        return Review.model_validate(response.json())

    async def complete_review(self, review_id: str) -> Review:
        response = await self._request("POST", f"/v1/reviews/{review_id}/complete")
        return Review.model_validate(response.json())

    async def cancel_review(self, review_id: str) -> Review:
        response = await self._request("POST", f"/v1/reviews/{review_id}/cancel")
        return Review.model_validate(response.json())

    async def check_permissions(self) -> bool:
        response = await self._request("GET", "/v1/permissions")
        return bool(response.json().get("allowed", False))

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, headers=self._headers, **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise _status_error(e) from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Review service unreachable: {e}") from e
        return response


def _status_error(error: httpx.HTTPStatusError) -> GatewayError:
    """Map an error response to the gateway error taxonomy."""
    status_code = error.response.status_code
    try:
        payload = error.response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and "detail" in payload:
        detail = payload["detail"]
    else:
        detail = error.response.text
    message = f"{detail} (HTTP {status_code})"

    if status_code == 404:
        return ReviewNotFoundError(message, status_code)
    if status_code == 409:
        return ReviewConflictError(message, status_code)
    return GatewayError(message, status_code)
