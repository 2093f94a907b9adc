"""
Stripe payment gateway implementation.

Implements PaymentGateway protocol using Stripe Checkout in payment mode.
Handles webhook signature verification and event parsing.
"""
import json
from typing import Dict, Any, Optional
import stripe

from backend.core.errors import ValidationError
from backend.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    GatewayEvent,
    HostedSession,
    LineItem,
    classify_event,
)

# Correlation keys as written by this service, then the camelCase spelling
# older storefront sessions used.
_METADATA_ALIASES = {
    "order_id": ("order_id", "orderId"),
    "user_id": ("user_id", "userId"),
    "plan_type": ("plan_type", "planType"),
}

# Matches payment_events.gateway_event_id
MAX_EVENT_ID_LENGTH = 255


def _normalize_metadata(raw: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("Invalid payload: metadata is not an object")
    normalized = {}
    for key, aliases in _METADATA_ALIASES.items():
        for alias in aliases:
            value = raw.get(alias)
            if value:
                normalized[key] = str(value)
                break
    return normalized


class StripeProvider:
    """Stripe implementation of PaymentGateway protocol."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None, tolerance: int = 300):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key
            webhook_secret: Stripe webhook signing secret (whsec_...)
            tolerance: Maximum signature age in seconds
        """
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def create_hosted_session(
        self,
        customer_email: Optional[str],
        line_item: LineItem,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> HostedSession:
        """Create Stripe checkout session for a one-time payment."""
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": line_item.currency,
                        "product_data": {
                            "name": line_item.name,
                            "description": line_item.description,
                        },
                        "unit_amount": line_item.unit_amount,
                    },
                    "quantity": line_item.quantity,
                }
            ],
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            # payment_intent.* events carry the intent's metadata, not the session's
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

        if not session.url:
            raise BillingProviderError("Stripe checkout session has no hosted URL")
        return HostedSession(session_id=session.id, hosted_url=session.url)

    def verify_event(self, body: bytes, signature: Optional[str]) -> GatewayEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise BillingWebhookError("Webhook body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise ValidationError(f"Invalid payload: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Any) -> GatewayEvent:
        """Parse Stripe event into normalized GatewayEvent."""
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationError("Invalid payload: not a Stripe event")
        if len(str(event["id"])) > MAX_EVENT_ID_LENGTH:
            raise ValidationError("Invalid payload: event id too long")

        data = event.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid payload: data is not an object")
        obj = data.get("object")
        if obj is None:
            obj = {}
        if not isinstance(obj, dict):
            raise ValidationError("Invalid payload: data.object is not an object")

        return GatewayEvent(
            event_id=str(event["id"]),
            event_type=str(event["type"]),
            kind=classify_event(str(event["type"])),
            metadata=_normalize_metadata(obj.get("metadata")),
            payment_status=obj.get("payment_status"),
        )
