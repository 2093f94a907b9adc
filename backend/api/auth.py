"""Session routes: who am I, and sign out."""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from backend.core.auth import SessionStore, bearer_token
from backend.core.dependencies import get_current_user, get_session_store
from backend.models.user import SessionUser


router = APIRouter(prefix="/auth", tags=["auth"])


class MeResponse(BaseModel):
    id: str
    email: Optional[str] = None


@router.get("/me", response_model=MeResponse)
def me(user: SessionUser = Depends(get_current_user)):
    return {"id": user.id, "email": user.email}


@router.post("/sign-out")
def sign_out(
    request: Request,
    user: SessionUser = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    store.sign_out(bearer_token(request))
    return {"signed_out": True}
