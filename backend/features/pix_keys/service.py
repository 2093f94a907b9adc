"""
backend/features/pix_keys/service.py

Key registry: provisions `local_handle@domain` Pix keys.

A key is only written when the user still has an unprovisioned entitlement.
The check and the insert are one INSERT ... SELECT ... WHERE available > 0,
so two concurrent requests cannot both consume the last slot.
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import select, insert, literal, and_, DateTime, String
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.core.database import Database, orders, pix_keys
from backend.core.errors import ConflictError, DependencyError, EntitlementExhaustedError, ValidationError
from backend.features.entitlements.service import available_expr
from backend.models.order import OrderStatus
from backend.models.pix_key import PixKey, PixKeyStatus


logger = logging.getLogger("chavepix")

MAX_HANDLE_LENGTH = 64

# No '@' (the domain is appended for the user) and no whitespace
_HANDLE_RE = re.compile(r"^[^\s@]+$")


def validate_handle(local_handle) -> str:
    """
    Check a user-supplied handle.

    Raises:
        ValidationError: If the handle is empty, too long, or contains '@' or whitespace
    """
    if not isinstance(local_handle, str) or not local_handle:
        raise ValidationError("Handle must not be empty")
    if "@" in local_handle:
        raise ValidationError("Use only the part before the @ (e.g. joao.silva)")
    if not _HANDLE_RE.match(local_handle):
        raise ValidationError("Handle must not contain whitespace")
    if len(local_handle) > MAX_HANDLE_LENGTH:
        raise ValidationError(f"Handle must be at most {MAX_HANDLE_LENGTH} characters")
    return local_handle


def compose_key(local_handle: str, domain: str) -> str:
    return f"{local_handle}@{domain}"


def _row_to_key(row) -> PixKey:
    return PixKey(
        id=row.id,
        user_id=row.user_id,
        local_handle=row.local_handle,
        key=row.key,
        status=row.status,
        created_at=row.created_at,
    )


class KeyRegistry:
    def __init__(self, db: Database, domain: str):
        self.db = db
        self.domain = domain

    def create_key(self, user_id: str, local_handle: str) -> PixKey:
        """
        Provision a new active key for user_id.

        Raises:
            ValidationError: Malformed handle (nothing written)
            EntitlementExhaustedError: No keys left to provision
            ConflictError: (user_id, local_handle) already exists
            DependencyError: Store failure
        """
        handle = validate_handle(local_handle)
        key = compose_key(handle, self.domain)
        key_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)

        columns = ["id", "user_id", "local_handle", "key", "status", "created_at", "updated_at"]
        source = select(
            literal(key_id, String),
            literal(user_id, String),
            literal(handle, String),
            literal(key, String),
            literal(PixKeyStatus.ACTIVE.value, String),
            literal(now, DateTime(timezone=True)),
            literal(now, DateTime(timezone=True)),
        ).where(available_expr(user_id) > 0)

        try:
            with self.db.session() as session:
                if self.db.supports_row_locks:
                    # Serialize key creation per user on the rows that grant entitlement
                    session.execute(
                        select(orders.c.id)
                        .where(
                            and_(
                                orders.c.user_id == user_id,
                                orders.c.status == OrderStatus.COMPLETED.value,
                            )
                        )
                        .with_for_update()
                    ).all()
                result = session.execute(insert(pix_keys).from_select(columns, source))
                inserted = result.rowcount
        except IntegrityError as e:
            logger.info("[pix_keys] duplicate handle", extra={"user_id": user_id, "error_code": "conflict"})
            raise ConflictError(f"Key {key} already exists. Choose another name.") from e
        except SQLAlchemyError as e:
            raise DependencyError(f"Key creation failed: {e.__class__.__name__}") from e

        if not inserted:
            logger.info("[pix_keys] no entitlement left", extra={"user_id": user_id, "error_code": "entitlement_exhausted"})
            raise EntitlementExhaustedError("No Pix keys available. Purchase a plan to create more.")

        logger.info("[pix_keys] created", extra={"user_id": user_id})
        return PixKey(
            id=key_id,
            user_id=user_id,
            local_handle=handle,
            key=key,
            status=PixKeyStatus.ACTIVE,
            created_at=now,
        )

    def list_keys(self, user_id: str) -> List[PixKey]:
        """All of a user's keys, newest first."""
        with self.db.session() as session:
            rows = session.execute(
                select(pix_keys)
                .where(pix_keys.c.user_id == user_id)
                .order_by(pix_keys.c.created_at.desc(), pix_keys.c.id.desc())
            ).fetchall()
        return [_row_to_key(row) for row in rows]
