"""
Billing service orchestrator.

Coordinates:
- Checkout: pending order -> hosted session -> redirect URL
- Webhook processing: verify, deduplicate, transition the order

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from backend.core.config import Settings
from backend.core.database import Database, payment_events
from backend.core.errors import AuthError, BillingDisabledError, DependencyError
from backend.core.logging import log_event
from backend.features.billing.provider import (
    BillingProviderError,
    FAILURE_KINDS,
    SUCCESS_KINDS,
    GatewayEvent,
    GatewayEventKind,
    LineItem,
    PaymentGateway,
)
from backend.features.billing.stripe_provider import StripeProvider
from backend.features.orders.service import OrderLedger
from backend.features.plans.service import get_plan
from backend.models.user import SessionUser


logger = logging.getLogger("chavepix")


def billing_enabled(cfg: Settings) -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(cfg.STRIPE_SECRET_KEY)


def build_gateway(cfg: Settings) -> Optional[PaymentGateway]:
    """Build the payment gateway if billing is enabled."""
    if not billing_enabled(cfg):
        return None
    try:
        return StripeProvider(
            secret_key=cfg.STRIPE_SECRET_KEY,
            webhook_secret=cfg.STRIPE_WEBHOOK_SECRET,
            tolerance=cfg.STRIPE_WEBHOOK_TOLERANCE,
        )
    except BillingProviderError:
        return None


@dataclass(frozen=True)
class CheckoutResult:
    redirect_url: str
    order_id: str
    gateway_session_id: str


class CheckoutService:
    """Starts hosted checkouts for plan purchases."""

    def __init__(self, ledger: OrderLedger, gateway: Optional[PaymentGateway], currency: str, app_base_url: str):
        self.ledger = ledger
        self.gateway = gateway
        self.currency = currency
        self.app_base_url = app_base_url.rstrip("/")

    def start_checkout(self, user: Optional[SessionUser], plan_type: Optional[str], origin: Optional[str] = None) -> CheckoutResult:
        """
        Create a pending order and a hosted payment session for it.

        An order whose session request fails stays `pending` with no session id;
        it is abandoned, never retried.

        Raises:
            AuthError: No authenticated user
            ValidationError: Unknown plan_type (no order written)
            BillingDisabledError: No gateway configured (no order written)
            DependencyError: Order insert or gateway call failed
        """
        if user is None:
            raise AuthError("User not authenticated")
        plan = get_plan(plan_type)
        if self.gateway is None:
            raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")

        order = self.ledger.create_order(user.id, plan)
        base = (origin or self.app_base_url).rstrip("/")
        metadata = {
            "order_id": order.id,
            "user_id": user.id,
            "plan_type": plan.plan_type.value,
        }

        try:
            session = self.gateway.create_hosted_session(
                customer_email=user.email,
                line_item=LineItem(
                    name=plan.product_name,
                    description=plan.product_description,
                    currency=self.currency,
                    unit_amount=plan.unit_amount,
                    quantity=1,
                ),
                success_url=f"{base}/dashboard?success=true",
                cancel_url=f"{base}/?canceled=true",
                metadata=metadata,
            )
        except BillingProviderError as e:
            log_event(
                "error",
                "[checkout] gateway session failed",
                user_id=user.id,
                order_id=order.id,
                error_code=e.code,
                extra={"reason": e.message},
            )
            raise

        if not self.ledger.attach_gateway_session(order.id, user.id, session.session_id):
            raise DependencyError("Order disappeared before the checkout session was linked")

        log_event("info", "[checkout] session created", user_id=user.id, order_id=order.id,
                  extra={"plan_type": plan.plan_type.value})
        return CheckoutResult(
            redirect_url=session.hosted_url,
            order_id=order.id,
            gateway_session_id=session.session_id,
        )


def _fit_column(value: Optional[str], column) -> Optional[str]:
    """Drop a metadata value the log column can't hold; it's forensic only."""
    if value is None or len(value) > column.type.length:
        return None
    return value


@dataclass(frozen=True)
class WebhookAck:
    event_id: str
    event_type: str
    outcome: str  # applied, noop, ignored, duplicate


class PaymentWebhookHandler:
    """
    Applies gateway payment outcomes to orders.

    Order transitions only leave `pending`, so duplicate or reordered
    deliveries cannot flip a terminal status. The payment_events log
    additionally short-circuits an event id that was already processed.
    """

    def __init__(self, db: Database, ledger: OrderLedger, gateway: Optional[PaymentGateway]):
        self.db = db
        self.ledger = ledger
        self.gateway = gateway

    def handle_event(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Verify, record and apply one webhook delivery.

        Raises:
            BillingDisabledError: No gateway configured
            SignatureError: Signature missing or invalid (nothing written)
            ValidationError: Verified body is not an event
        """
        if self.gateway is None:
            raise BillingDisabledError("Billing not enabled")

        event = self.gateway.verify_event(raw_body, signature)
        log_event("info", "[webhook] received", event_type=event.event_type, order_id=event.order_id)

        if not self._record(event, raw_body):
            log_event("info", "[webhook] duplicate delivery", event_type=event.event_type, order_id=event.order_id)
            return WebhookAck(event.event_id, event.event_type, "duplicate")

        try:
            outcome = self._apply(event)
        except Exception as e:
            self._mark(event.event_id, error=str(e))
            raise

        self._mark(event.event_id)
        return WebhookAck(event.event_id, event.event_type, outcome)

    def _record(self, event: GatewayEvent, raw_body: bytes) -> bool:
        """Log the delivery. Returns False if this event id was already processed."""
        payload_hash = hashlib.sha256(raw_body).hexdigest()
        with self.db.session() as session:
            existing = session.execute(
                select(payment_events.c.processed).where(
                    payment_events.c.gateway_event_id == event.event_id
                )
            ).fetchone()
            if existing is not None:
                # A previous attempt failed midway; process again
                return not existing.processed

        try:
            with self.db.session() as session:
                session.execute(
                    insert(payment_events).values(
                        gateway_event_id=event.event_id,
                        event_type=event.event_type[:payment_events.c.event_type.type.length],
                        order_id=_fit_column(event.order_id, payment_events.c.order_id),
                        payload_hash=payload_hash,
                        processed=False,
                        received_at=datetime.now(timezone.utc),
                    )
                )
        except IntegrityError:
            # Race condition: a concurrent delivery of the same event got there first
            return False
        return True

    def _mark(self, event_id: str, error: Optional[str] = None) -> None:
        values = {"error": error} if error else {"processed": True, "processed_at": datetime.now(timezone.utc), "error": None}
        with self.db.session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.gateway_event_id == event_id)
                .values(**values)
            )

    def _apply(self, event: GatewayEvent) -> str:
        if event.kind in SUCCESS_KINDS:
            if event.kind is GatewayEventKind.CHECKOUT_COMPLETED and event.payment_status == "unpaid":
                # Asynchronous payment methods settle later via async_payment_succeeded
                log_event("info", "[webhook] checkout completed but unpaid", order_id=event.order_id,
                          event_type=event.event_type)
                return "ignored"
            if not (event.order_id and event.user_id and event.plan_type):
                log_event("error", "[webhook] missing metadata", event_type=event.event_type,
                          extra={"metadata": event.metadata})
                return "ignored"
            changed = self.ledger.mark_completed(event.order_id, event.user_id)

        elif event.kind in FAILURE_KINDS:
            if not (event.order_id and event.user_id):
                log_event("error", "[webhook] missing metadata", event_type=event.event_type,
                          extra={"metadata": event.metadata})
                return "ignored"
            changed = self.ledger.mark_failed(event.order_id, event.user_id)

        else:
            log_event("info", "[webhook] unhandled event type", event_type=event.event_type)
            return "ignored"

        outcome = "applied" if changed else "noop"
        log_event("info", "[webhook] order transition", user_id=event.user_id, order_id=event.order_id,
                  event_type=event.event_type, outcome=outcome)
        return outcome
