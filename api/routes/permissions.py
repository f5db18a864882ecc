"""
Permission routes.

GOVERNANCE:
- Every review operation requires a pharmacist identity
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from api.models.review import PermissionResponse

router = APIRouter(prefix="/v1/permissions", tags=["permissions"])


def current_pharmacist(
    x_pharmacist_id: Optional[str] = Header(default=None),
) -> Optional[str]:
    """Pharmacist identity presented by the caller, if any."""
    if x_pharmacist_id is None or not x_pharmacist_id.strip():
        return None
    return x_pharmacist_id.strip()


def require_pharmacist(
    pharmacist_id: Optional[str] = Depends(current_pharmacist),
) -> str:
    """Reject callers without a pharmacist identity."""
    if pharmacist_id is None:
        raise HTTPException(
            status_code=403,
            detail="Permission denied: pharmacist identity required",
        )
    return pharmacist_id


@router.get("", response_model=PermissionResponse)
def check_permissions(pharmacist_id: Optional[str] = Depends(current_pharmacist)):
    """
    Check whether the caller may work on medication therapy reviews.

    GOVERNANCE:
    - Any identified pharmacist is allowed
    """
    return PermissionResponse(allowed=pharmacist_id is not None, pharmacist_id=pharmacist_id)
