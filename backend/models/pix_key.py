"""
backend/models/pix_key.py

PixKey model: a `local_handle@domain` alias owned by one user.
"""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict


class PixKeyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class PixKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    local_handle: str
    key: str
    status: PixKeyStatus
    created_at: datetime
