"""
backend/models/order.py

Order model: one purchase attempt and its lifecycle state.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from backend.models.plan import PlanType


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(BaseModel):
    """
    Orders start `pending` and move once, to `completed` or `failed`.
    Terminal states never change.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    plan_type: PlanType
    amount: int
    status: OrderStatus
    gateway_session_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
