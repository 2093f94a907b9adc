"""
User profile service.
- upsert_profile(user)
- get_profile(user_id)
- profile_listener(): auth state callback that upserts on sign-in
"""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from backend.core.auth import SIGNED_IN
from backend.core.database import Database, profiles
from backend.models.user import SessionUser


class ProfileService:
    def __init__(self, db: Database):
        self.db = db

    def get_profile(self, user_id: str) -> Optional[dict]:
        with self.db.session() as session:
            row = session.execute(select(profiles).where(profiles.c.id == user_id)).first()
        return dict(row._mapping) if row else None

    def upsert_profile(self, user: SessionUser) -> None:
        now = datetime.now(timezone.utc)
        values = {
            "email": user.email or "",
            "full_name": user.full_name,
            "avatar_url": user.avatar_url,
            "updated_at": now,
        }
        if self.get_profile(user.id) is None:
            try:
                with self.db.session() as session:
                    session.execute(insert(profiles).values(id=user.id, created_at=now, **values))
                return
            except IntegrityError:
                # Created concurrently; fall through to update
                pass

        with self.db.session() as session:
            session.execute(update(profiles).where(profiles.c.id == user.id).values(**values))

    def profile_listener(self):
        def on_change(event: str, user: Optional[SessionUser]) -> None:
            if event == SIGNED_IN and user is not None:
                self.upsert_profile(user)

        return on_change
