# backend/conftest.py
import hashlib
import hmac
import json
import sys
import time
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import jwt
import pytest
from fastapi.testclient import TestClient

# Add repo root to PYTHONPATH so `backend.*` imports resolve
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.core.config import Settings
from backend.core.database import Database
from backend.features.billing.provider import BillingProviderError, HostedSession, LineItem
from backend.features.billing.stripe_provider import StripeProvider


JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
WEBHOOK_SECRET = "whsec_test123"


class FakeGateway:
    """
    Records hosted session requests instead of calling Stripe.

    Webhook verification is delegated to a real StripeProvider so signature
    checks run against Stripe's own scheme.
    """

    def __init__(self, webhook_secret: Optional[str] = WEBHOOK_SECRET):
        self.calls: List[Dict] = []
        self.fail_with: Optional[Exception] = None
        self._verifier = StripeProvider(secret_key="sk_test_fake", webhook_secret=webhook_secret)

    def create_hosted_session(self, customer_email, line_item: LineItem, success_url, cancel_url, metadata):
        self.calls.append({
            "customer_email": customer_email,
            "line_item": line_item,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
        })
        if self.fail_with is not None:
            raise self.fail_with
        session_id = f"cs_test_{len(self.calls)}"
        return HostedSession(session_id=session_id, hosted_url=f"https://checkout.stripe.com/c/pay/{session_id}")

    def verify_event(self, body: bytes, signature: Optional[str]):
        return self._verifier.verify_event(body, signature)


def sign_stripe_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_type: str, metadata: Optional[Dict] = None, event_id: Optional[str] = None, **obj_fields) -> str:
    """Serialize a minimal Stripe event body."""
    obj = {"id": "cs_test_obj", "object": "checkout.session", "metadata": metadata or {}}
    obj.update(obj_fields)
    return json.dumps({
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL="sqlite://",
        AUTH_JWT_SECRET=JWT_SECRET,
        AUTH_JWT_AUDIENCE="authenticated",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        APP_BASE_URL="https://chavepix.test",
        CORS_ALLOWED_ORIGINS="https://chavepix.test,https://www.chavepix.club",
        PIX_KEY_DOMAIN="chavepix.club",
    )


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.drop_all()
    database.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(settings, db, gateway):
    from backend.main import create_app
    return create_app(settings=settings, database=db, gateway=gateway)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_token():
    """Mint an access token like the auth provider does."""
    def _make(user_id: str = "user_alice", email: Optional[str] = "alice@example.com", expires_in: int = 3600, **claims):
        now = int(time.time())
        payload = {
            "sub": user_id,
            "email": email,
            "aud": "authenticated",
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(claims)
        return jwt.encode(payload, JWT_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: str = "user_alice", email: Optional[str] = "alice@example.com") -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, email)}"}

    return _headers


@pytest.fixture
def signed_webhook():
    """Return (body, headers) for a signed Stripe webhook delivery."""
    def _build(event_type: str, metadata: Optional[Dict] = None, event_id: Optional[str] = None, **obj_fields):
        body = stripe_event(event_type, metadata, event_id=event_id, **obj_fields)
        return body, {"stripe-signature": sign_stripe_payload(body), "content-type": "application/json"}

    return _build
