"""
backend/features/entitlements/service.py

Entitlement calculator.

entitled = sum of key allotments over a user's completed orders
available = entitled - keys already provisioned

Nothing here is stored; every read recomputes from orders and pix_keys.
The SQL expressions are shared with the key registry so key creation can
consume an entitlement in the same statement that checks it.
"""

from dataclasses import dataclass
import logging

from sqlalchemy import select, func, case, and_
from sqlalchemy.sql.elements import ColumnElement

from backend.core.database import Database, orders, pix_keys
from backend.features.plans.service import PLANS
from backend.models.order import OrderStatus


logger = logging.getLogger(__name__)


def key_allotment_case() -> ColumnElement:
    """Per-order key allotment keyed on plan_type; unknown plans grant nothing."""
    return case(
        *[(orders.c.plan_type == plan_type.value, plan.key_count) for plan_type, plan in PLANS.items()],
        else_=0,
    )


def entitled_count_expr(user_id: str) -> ColumnElement:
    return (
        select(func.coalesce(func.sum(key_allotment_case()), 0))
        .where(
            and_(
                orders.c.user_id == user_id,
                orders.c.status == OrderStatus.COMPLETED.value,
            )
        )
        .correlate(None)
        .scalar_subquery()
    )


def used_count_expr(user_id: str) -> ColumnElement:
    return (
        select(func.count(pix_keys.c.id))
        .where(pix_keys.c.user_id == user_id)
        .correlate(None)
        .scalar_subquery()
    )


def available_expr(user_id: str) -> ColumnElement:
    return entitled_count_expr(user_id) - used_count_expr(user_id)


@dataclass(frozen=True)
class EntitlementSummary:
    entitled: int
    used: int

    @property
    def available(self) -> int:
        """Clamped at zero; a negative raw value means keys outran entitlement."""
        return max(self.entitled - self.used, 0)


class EntitlementCalculator:
    def __init__(self, db: Database):
        self.db = db

    def entitled_count(self, user_id: str) -> int:
        with self.db.session() as session:
            return int(session.execute(select(entitled_count_expr(user_id))).scalar_one())

    def available(self, user_id: str) -> int:
        """
        Raw available count. May be negative if external state was corrupted;
        callers clamp before offering key creation.
        """
        with self.db.session() as session:
            return int(session.execute(select(available_expr(user_id))).scalar_one())

    def summary(self, user_id: str) -> EntitlementSummary:
        with self.db.session() as session:
            entitled, used = session.execute(
                select(entitled_count_expr(user_id), used_count_expr(user_id))
            ).one()
        result = EntitlementSummary(entitled=int(entitled), used=int(used))
        if result.entitled < result.used:
            logger.warning(
                "[entitlements] keys exceed entitlement",
                extra={"user_id": user_id, "entitled": result.entitled, "used": result.used},
            )
        return result
