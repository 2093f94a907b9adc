"""
Payment gateway protocol.

Defines the interface for hosted-checkout payment gateways (Stripe, etc.).
This allows swapping gateways without changing order or webhook logic.
"""
from enum import Enum
from typing import Protocol, Dict, Optional
from dataclasses import dataclass, field

from backend.core.errors import DependencyError, SignatureError


@dataclass(frozen=True)
class LineItem:
    name: str
    description: str
    currency: str
    unit_amount: int  # cents
    quantity: int = 1


@dataclass(frozen=True)
class HostedSession:
    """A hosted checkout session the buyer is redirected to."""
    session_id: str
    hosted_url: str


class GatewayEventKind(str, Enum):
    """Closed set of gateway events the webhook handler acts on."""
    CHECKOUT_COMPLETED = "checkout_completed"
    ASYNC_PAYMENT_SUCCEEDED = "async_payment_succeeded"
    CHECKOUT_EXPIRED = "checkout_expired"
    ASYNC_PAYMENT_FAILED = "async_payment_failed"
    PAYMENT_FAILED = "payment_failed"
    UNKNOWN = "unknown"


EVENT_KINDS: Dict[str, GatewayEventKind] = {
    "checkout.session.completed": GatewayEventKind.CHECKOUT_COMPLETED,
    "checkout.session.async_payment_succeeded": GatewayEventKind.ASYNC_PAYMENT_SUCCEEDED,
    "checkout.session.expired": GatewayEventKind.CHECKOUT_EXPIRED,
    "checkout.session.async_payment_failed": GatewayEventKind.ASYNC_PAYMENT_FAILED,
    "payment_intent.payment_failed": GatewayEventKind.PAYMENT_FAILED,
}

SUCCESS_KINDS = frozenset({
    GatewayEventKind.CHECKOUT_COMPLETED,
    GatewayEventKind.ASYNC_PAYMENT_SUCCEEDED,
})

FAILURE_KINDS = frozenset({
    GatewayEventKind.CHECKOUT_EXPIRED,
    GatewayEventKind.ASYNC_PAYMENT_FAILED,
    GatewayEventKind.PAYMENT_FAILED,
})


def classify_event(event_type: str) -> GatewayEventKind:
    return EVENT_KINDS.get(event_type, GatewayEventKind.UNKNOWN)


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook event, normalized."""
    event_id: str
    event_type: str
    kind: GatewayEventKind
    metadata: Dict[str, str] = field(default_factory=dict)
    payment_status: Optional[str] = None  # paid, unpaid, no_payment_required

    @property
    def order_id(self) -> Optional[str]:
        return self.metadata.get("order_id")

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("user_id")

    @property
    def plan_type(self) -> Optional[str]:
        return self.metadata.get("plan_type")


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations must handle:
    - Hosted checkout session creation
    - Webhook signature verification and parsing
    """

    def create_hosted_session(
        self,
        customer_email: Optional[str],
        line_item: LineItem,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> HostedSession:
        """
        Create a hosted checkout session for a one-time payment.

        Args:
            customer_email: Prefilled buyer email (optional)
            line_item: What is being sold
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation
            metadata: Opaque correlation data echoed back on webhook events

        Returns:
            Session id and hosted URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def verify_event(self, body: bytes, signature: Optional[str]) -> GatewayEvent:
        """
        Verify webhook signature and parse event.

        Args:
            body: Raw webhook body (for signature verification)
            signature: Signature header value

        Returns:
            Parsed event

        Raises:
            BillingWebhookError: If the signature is missing or invalid
            ValidationError: If the verified body is not an event
        """
        ...


class BillingProviderError(DependencyError):
    """Gateway call failed."""
    pass


class BillingWebhookError(SignatureError):
    """Webhook authenticity could not be established."""
    pass
