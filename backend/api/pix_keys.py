"""
Pix key API routes.

- GET  /api/keys: List the current user's keys (newest first)
- POST /api/keys: Provision a key from an unused entitlement
"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.core.dependencies import get_current_user, get_key_registry
from backend.features.pix_keys.service import KeyRegistry
from backend.models.pix_key import PixKey
from backend.models.user import SessionUser


router = APIRouter(prefix="/keys", tags=["pix-keys"])


class CreateKeyRequest(BaseModel):
    local_handle: str


class PixKeyResponse(BaseModel):
    id: str
    key: str
    local_handle: str
    status: str
    created_at: datetime

    @classmethod
    def from_key(cls, pix_key: PixKey) -> "PixKeyResponse":
        return cls(
            id=pix_key.id,
            key=pix_key.key,
            local_handle=pix_key.local_handle,
            status=pix_key.status.value,
            created_at=pix_key.created_at,
        )


@router.get("", response_model=List[PixKeyResponse])
def list_keys(
    user: SessionUser = Depends(get_current_user),
    registry: KeyRegistry = Depends(get_key_registry),
):
    return [PixKeyResponse.from_key(k) for k in registry.list_keys(user.id)]


@router.post("", response_model=PixKeyResponse, status_code=201)
def create_key(
    body: CreateKeyRequest,
    user: SessionUser = Depends(get_current_user),
    registry: KeyRegistry = Depends(get_key_registry),
):
    """
    Create `{local_handle}@{domain}` for the current user.

    Errors:
        400: Malformed handle (contains '@', whitespace, empty)
        401: Not authenticated
        403: No keys available (code: entitlement_exhausted)
        409: Handle already taken (code: conflict)
    """
    return PixKeyResponse.from_key(registry.create_key(user.id, body.local_handle))
