"""
Database configuration and connection management.

This module provides:
- An explicitly constructed Database handle (engine + session factory)
- Table definitions for orders, pix keys, profiles and payment events
- Test database support (in-memory SQLite)
"""
import logging
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, UniqueConstraint, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func


logger = logging.getLogger("chavepix")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration (ignored for SQLite)
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def _engine_for(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
    )


class Database:
    """
    Engine and session factory for one relational store.

    Built once at startup and handed to the services that need it.

    Usage:
        db = Database("sqlite://")
        with db.session() as session:
            session.execute(...)
    """

    def __init__(self, url: str, engine: Optional[Engine] = None):
        if not url and engine is None:
            raise ValueError(
                "DATABASE_URL is not configured. "
                "Set DATABASE_URL in environment or .env file."
            )
        self.url = url
        self.engine = engine or _engine_for(url)
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
        )

    @property
    def supports_row_locks(self) -> bool:
        return self.engine.dialect.name != "sqlite"

    @contextmanager
    def session(self):
        """Yield a Session; commit on success, roll back on error."""
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create all tables. Idempotent."""
        metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Only use in tests or development."""
        metadata.drop_all(bind=self.engine)

    def check_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database connection check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()


# Profiles mirror the auth provider's users; upserted on sign-in
profiles = Table(
    'profiles',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('email', String(320), nullable=False),
    Column('full_name', Text, nullable=True),
    Column('avatar_url', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Orders: one row per purchase attempt
orders = Table(
    'orders',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False),
    Column('plan_type', String(20), nullable=False),  # single, five_pack
    Column('amount', Integer, nullable=False),  # whole currency units
    Column('status', String(20), nullable=False, server_default='pending'),  # pending, completed, failed
    Column('gateway_session_id', String(255), nullable=True, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Entitlement sums and dashboard listings: (user_id, status)
    Index('idx_orders_user_status', 'user_id', 'status'),
    Index('idx_orders_user_created', 'user_id', 'created_at'),
)

# Pix keys: local_handle@domain aliases owned by a user
pix_keys = Table(
    'pix_keys',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False),
    Column('local_handle', String(64), nullable=False),
    Column('key', String(320), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),  # active, inactive, pending
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'local_handle', name='uq_pix_keys_user_handle'),
    Index('idx_pix_keys_user_created', 'user_id', 'created_at'),
)

# Payment events: webhook delivery log keyed by the gateway's event id
payment_events = Table(
    'payment_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gateway_event_id', String(255), nullable=False),
    Column('event_type', String(100), nullable=False, index=True),
    Column('order_id', String(255), nullable=True, index=True),  # raw metadata value, may not match any order
    Column('payload_hash', String(64), nullable=False),  # SHA256 of the raw body
    Column('processed', Boolean, nullable=False, server_default='0'),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('gateway_event_id', name='uq_payment_events_gateway_id'),
    Index('idx_payment_events_received_at', 'received_at'),
)
