"""
FastAPI dependencies.

Everything is read from app.state, which create_app() populates with the
settings, database, session store and (optional) payment gateway.
"""
from typing import Optional

from fastapi import Depends, Request

from backend.core.auth import SessionStore, bearer_token
from backend.core.config import Settings
from backend.core.database import Database
from backend.core.errors import AuthError
from backend.features.billing.provider import PaymentGateway
from backend.features.billing.service import CheckoutService, PaymentWebhookHandler
from backend.features.entitlements.service import EntitlementCalculator
from backend.features.orders.service import OrderLedger
from backend.features.pix_keys.service import KeyRegistry
from backend.models.user import SessionUser


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_gateway(request: Request) -> Optional[PaymentGateway]:
    return request.app.state.gateway


def get_optional_user(
    request: Request,
    store: SessionStore = Depends(get_session_store),
) -> Optional[SessionUser]:
    return store.get_current_user(bearer_token(request))


def get_current_user(user: Optional[SessionUser] = Depends(get_optional_user)) -> SessionUser:
    """
    Raises:
        AuthError: Missing or invalid Bearer token
    """
    if user is None:
        raise AuthError("Missing or invalid Authorization (Bearer JWT)")
    return user


def get_order_ledger(db: Database = Depends(get_database)) -> OrderLedger:
    return OrderLedger(db)


def get_key_registry(
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> KeyRegistry:
    return KeyRegistry(db, settings.PIX_KEY_DOMAIN)


def get_entitlements(db: Database = Depends(get_database)) -> EntitlementCalculator:
    return EntitlementCalculator(db)


def get_checkout_service(
    ledger: OrderLedger = Depends(get_order_ledger),
    gateway: Optional[PaymentGateway] = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> CheckoutService:
    return CheckoutService(ledger, gateway, settings.CHECKOUT_CURRENCY, settings.APP_BASE_URL)


def get_webhook_handler(
    db: Database = Depends(get_database),
    ledger: OrderLedger = Depends(get_order_ledger),
    gateway: Optional[PaymentGateway] = Depends(get_gateway),
) -> PaymentWebhookHandler:
    return PaymentWebhookHandler(db, ledger, gateway)
