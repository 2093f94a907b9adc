"""
Billing API routes.

Minimal surface:
- POST /api/billing/checkout: Create order + hosted checkout session
- POST /api/billing/webhook: Handle Stripe webhooks
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Header
from pydantic import BaseModel

from backend.core.config import Settings
from backend.core.dependencies import get_checkout_service, get_optional_user, get_settings, get_webhook_handler
from backend.core.errors import AppError
from backend.features.billing.service import CheckoutService, PaymentWebhookHandler
from backend.models.user import SessionUser


logger = logging.getLogger("chavepix")

router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan_type: str


class CheckoutResponse(BaseModel):
    """Response with hosted checkout URL."""
    url: str
    order_id: str


class WebhookResponse(BaseModel):
    received: bool
    event_id: str
    outcome: str


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user: Optional[SessionUser] = Depends(get_optional_user),
    checkout: CheckoutService = Depends(get_checkout_service),
    settings: Settings = Depends(get_settings),
):
    """
    Create a pending order and a Stripe checkout session for it.

    Returns:
        {"url": "https://checkout.stripe.com/...", "order_id": "..."}

    Errors:
        401: Not authenticated
        400: Unknown plan_type
        502: Order store or Stripe failure
        503: Billing disabled (STRIPE_SECRET_KEY not set)
    """
    origin = request.headers.get("origin")
    if origin not in settings.cors_origins():
        # Unlisted or "null" origins fall back to APP_BASE_URL
        origin = None
    result = checkout.start_checkout(user, body.plan_type, origin=origin)
    return {"url": result.redirect_url, "order_id": result.order_id}


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    handler: PaymentWebhookHandler = Depends(get_webhook_handler),
):
    """
    Handle Stripe webhook events.

    Verifies signature, records the delivery and moves the order out of
    `pending` when the event calls for it.

    Returns:
        {"received": true, "event_id": "...", "outcome": "applied" | "noop" | "ignored" | "duplicate"}

    Errors:
        400: Invalid signature or payload
        500: Unexpected failure (Stripe retries)
        503: Billing disabled
    """
    # Read raw body (required for signature verification)
    body = await request.body()

    try:
        ack = handler.handle_event(body, stripe_signature)
    except AppError:
        raise
    except Exception as e:
        logger.error("[webhook] processing failed", exc_info=True)
        raise AppError(f"Webhook processing failed: {e.__class__.__name__}", code="webhook_failed", status_code=500)

    return {"received": True, "event_id": ack.event_id, "outcome": ack.outcome}
