"""
Order history and dashboard routes.

- GET /api/orders: Current user's orders (newest first)
- GET /api/dashboard: Keys, orders and entitlement counts in one read
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.api.pix_keys import PixKeyResponse
from backend.core.dependencies import get_current_user, get_entitlements, get_key_registry, get_order_ledger
from backend.features.entitlements.service import EntitlementCalculator
from backend.features.orders.service import OrderLedger
from backend.features.pix_keys.service import KeyRegistry
from backend.models.order import Order, OrderStatus
from backend.models.user import SessionUser


router = APIRouter(tags=["orders"])


class OrderResponse(BaseModel):
    id: str
    plan_type: str
    amount: int
    status: str
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            plan_type=order.plan_type.value,
            amount=order.amount,
            status=order.status.value,
            created_at=order.created_at,
        )


class EntitlementResponse(BaseModel):
    entitled: int
    used: int
    available: int


class DashboardResponse(BaseModel):
    email: Optional[str]
    keys: List[PixKeyResponse]
    orders: List[OrderResponse]
    completed_orders: int
    entitlement: EntitlementResponse


@router.get("/orders", response_model=List[OrderResponse])
def list_orders(
    user: SessionUser = Depends(get_current_user),
    ledger: OrderLedger = Depends(get_order_ledger),
):
    return [OrderResponse.from_order(o) for o in ledger.list_orders(user.id)]


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    user: SessionUser = Depends(get_current_user),
    ledger: OrderLedger = Depends(get_order_ledger),
    registry: KeyRegistry = Depends(get_key_registry),
    entitlements: EntitlementCalculator = Depends(get_entitlements),
):
    """`entitlement.available` is clamped at zero; create the form only when > 0."""
    user_orders = ledger.list_orders(user.id)
    summary = entitlements.summary(user.id)
    return {
        "email": user.email,
        "keys": [PixKeyResponse.from_key(k) for k in registry.list_keys(user.id)],
        "orders": [OrderResponse.from_order(o) for o in user_orders],
        "completed_orders": sum(1 for o in user_orders if o.status is OrderStatus.COMPLETED),
        "entitlement": {
            "entitled": summary.entitled,
            "used": summary.used,
            "available": summary.available,
        },
    }
