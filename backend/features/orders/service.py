"""
backend/features/orders/service.py

Order ledger.

Handles:
- Order creation in `pending` at the plan's canonical price
- Linking an order to its hosted checkout session
- Monotonic status transitions (only from `pending`)
- Per-user listings for the dashboard
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import SQLAlchemyError

from backend.core.database import Database, orders
from backend.core.errors import DependencyError
from backend.models.order import Order, OrderStatus
from backend.models.plan import Plan


logger = logging.getLogger("chavepix")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_order(row) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        plan_type=row.plan_type,
        amount=row.amount,
        status=row.status,
        gateway_session_id=row.gateway_session_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class OrderLedger:
    """Reads and writes the `orders` table."""

    def __init__(self, db: Database):
        self.db = db

    def create_order(self, user_id: str, plan: Plan) -> Order:
        """
        Insert a `pending` order for plan.

        Raises:
            DependencyError: If the store rejects the insert
        """
        now = _utc_now()
        order_id = str(uuid.uuid4())
        try:
            with self.db.session() as session:
                session.execute(
                    insert(orders).values(
                        id=order_id,
                        user_id=user_id,
                        plan_type=plan.plan_type.value,
                        amount=plan.price,
                        status=OrderStatus.PENDING.value,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except SQLAlchemyError as e:
            raise DependencyError(f"Order creation failed: {e.__class__.__name__}") from e

        return Order(
            id=order_id,
            user_id=user_id,
            plan_type=plan.plan_type,
            amount=plan.price,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    def attach_gateway_session(self, order_id: str, user_id: str, gateway_session_id: str) -> bool:
        """Store the hosted session id on the order. Returns False if no row matched."""
        try:
            with self.db.session() as session:
                result = session.execute(
                    update(orders)
                    .where(and_(orders.c.id == order_id, orders.c.user_id == user_id))
                    .values(gateway_session_id=gateway_session_id, updated_at=_utc_now())
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DependencyError(f"Order update failed: {e.__class__.__name__}") from e

    def get_order(self, order_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        query = select(orders).where(orders.c.id == order_id)
        if user_id is not None:
            query = query.where(orders.c.user_id == user_id)
        with self.db.session() as session:
            row = session.execute(query).first()
        return _row_to_order(row) if row else None

    def list_orders(self, user_id: str) -> List[Order]:
        """All of a user's orders, newest first."""
        with self.db.session() as session:
            rows = session.execute(
                select(orders)
                .where(orders.c.user_id == user_id)
                .order_by(orders.c.created_at.desc(), orders.c.id.desc())
            ).fetchall()
        return [_row_to_order(row) for row in rows]

    def mark_completed(self, order_id: str, user_id: str) -> bool:
        return self._transition(order_id, user_id, OrderStatus.COMPLETED)

    def mark_failed(self, order_id: str, user_id: str) -> bool:
        return self._transition(order_id, user_id, OrderStatus.FAILED)

    def _transition(self, order_id: str, user_id: str, target: OrderStatus) -> bool:
        """
        Move a pending order to a terminal status.

        The predicate only matches rows still `pending`, so a repeated or
        reordered delivery never overwrites a terminal status.

        Returns:
            True if a row changed, False if the order is missing, owned by
            someone else, or already terminal.
        """
        with self.db.session() as session:
            result = session.execute(
                update(orders)
                .where(
                    and_(
                        orders.c.id == order_id,
                        orders.c.user_id == user_id,
                        orders.c.status == OrderStatus.PENDING.value,
                    )
                )
                .values(status=target.value, updated_at=_utc_now())
            )
            changed = result.rowcount > 0

        logger.info(
            "[orders] transition",
            extra={"order_id": order_id, "user_id": user_id, "outcome": target.value if changed else "noop"},
        )
        return changed
