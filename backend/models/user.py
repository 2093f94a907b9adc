from typing import Optional
from pydantic import BaseModel, ConfigDict


class SessionUser(BaseModel):
    """Authenticated identity as reported by the auth provider."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
