"""
Billing routes over HTTP: checkout and Stripe webhook.
"""
import json
from unittest.mock import patch

import pytest
from sqlalchemy import select

from backend.conftest import sign_stripe_payload

from backend.core.database import orders
from backend.features.billing.provider import BillingProviderError
from backend.features.orders.service import OrderLedger


def _only_order(db):
    with db.session() as session:
        return session.execute(select(orders)).one()


def test_checkout_returns_hosted_url(client, auth_headers, gateway, db):
    resp = client.post("/api/billing/checkout", json={"plan_type": "five_pack"}, headers=auth_headers())

    assert resp.status_code == 200
    body = resp.json()
    assert body["url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
    row = _only_order(db)
    assert body["order_id"] == row.id
    assert row.amount == 99
    assert row.gateway_session_id == "cs_test_1"


def test_checkout_uses_request_origin(client, auth_headers, gateway):
    client.post(
        "/api/billing/checkout",
        json={"plan_type": "single"},
        headers={**auth_headers(), "Origin": "https://www.chavepix.club"},
    )
    assert gateway.calls[0]["cancel_url"] == "https://www.chavepix.club/?canceled=true"


@pytest.mark.parametrize("origin", ["null", "https://evil.example"])
def test_checkout_ignores_unlisted_origin(client, auth_headers, gateway, origin):
    resp = client.post(
        "/api/billing/checkout",
        json={"plan_type": "single"},
        headers={**auth_headers(), "Origin": origin},
    )

    assert resp.status_code == 200
    assert gateway.calls[0]["success_url"] == "https://chavepix.test/dashboard?success=true"
    assert gateway.calls[0]["cancel_url"] == "https://chavepix.test/?canceled=true"


def test_checkout_requires_auth(client, db):
    resp = client.post("/api/billing/checkout", json={"plan_type": "single"})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_checkout_unknown_plan(client, auth_headers, gateway):
    resp = client.post("/api/billing/checkout", json={"plan_type": "enterprise"}, headers=auth_headers())

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "validation_error"
    assert "enterprise" in body["error"]["message"]
    assert gateway.calls == []


def test_checkout_missing_plan_type(client, auth_headers):
    resp = client.post("/api/billing/checkout", json={}, headers=auth_headers())

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_checkout_gateway_failure_is_502(client, auth_headers, gateway, db):
    gateway.fail_with = BillingProviderError("Stripe checkout session creation failed: boom")

    resp = client.post("/api/billing/checkout", json={"plan_type": "single"}, headers=auth_headers())

    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "dependency_error"
    assert _only_order(db).status == "pending"


def _pending_order(db, user_id="user_alice", plan_type="single"):
    from backend.features.plans.service import get_plan
    return OrderLedger(db).create_order(user_id, get_plan(plan_type))


def test_webhook_completes_order(client, signed_webhook, db):
    order = _pending_order(db)
    body, headers = signed_webhook(
        "checkout.session.completed",
        {"order_id": order.id, "user_id": "user_alice", "plan_type": "single"},
        event_id="evt_http_1",
    )

    resp = client.post("/api/billing/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "event_id": "evt_http_1", "outcome": "applied"}
    assert _only_order(db).status == "completed"


def test_webhook_bad_signature_is_400(client, signed_webhook, db):
    order = _pending_order(db)
    body, headers = signed_webhook(
        "checkout.session.completed",
        {"order_id": order.id, "user_id": "user_alice", "plan_type": "single"},
    )
    headers["stripe-signature"] = headers["stripe-signature"][:-4] + "0000"

    resp = client.post("/api/billing/webhook", content=body, headers=headers)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_signature"
    assert _only_order(db).status == "pending"


def test_webhook_missing_signature_is_400(client, signed_webhook):
    body, _ = signed_webhook("checkout.session.completed", {})

    resp = client.post("/api/billing/webhook", content=body, headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_signature"


def test_webhook_unknown_event_is_acknowledged(client, signed_webhook):
    body, headers = signed_webhook("customer.subscription.created", {})

    resp = client.post("/api/billing/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "ignored"


def test_webhook_missing_metadata_is_acknowledged(client, signed_webhook):
    body, headers = signed_webhook("checkout.session.completed", {"order_id": "o-unknown"})

    resp = client.post("/api/billing/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "ignored"


def test_webhook_internal_failure_is_500_so_stripe_retries(client, signed_webhook, db):
    order = _pending_order(db)
    body, headers = signed_webhook(
        "checkout.session.completed",
        {"order_id": order.id, "user_id": "user_alice", "plan_type": "single"},
    )

    with patch.object(OrderLedger, "mark_completed", side_effect=RuntimeError("connection reset")):
        resp = client.post("/api/billing/webhook", content=body, headers=headers)

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "webhook_failed"

    retry = client.post("/api/billing/webhook", content=body, headers=headers)
    assert retry.status_code == 200
    assert retry.json()["outcome"] == "applied"
    assert _only_order(db).status == "completed"


@pytest.mark.parametrize("data", [
    {"object": "oops"},
    {"object": {"metadata": "oops"}},
    {"object": {"metadata": ["order_id"]}},
    "oops",
])
def test_webhook_malformed_event_shape_is_400(client, db, data):
    body = json.dumps({"id": "evt_malformed", "type": "checkout.session.completed", "data": data})

    resp = client.post(
        "/api/billing/webhook",
        content=body,
        headers={"stripe-signature": sign_stripe_payload(body), "content-type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_webhook_oversized_order_id_is_acknowledged(client, signed_webhook, db):
    from backend.core.database import payment_events

    order = _pending_order(db)
    body, headers = signed_webhook(
        "checkout.session.completed",
        {"order_id": "legacy-" + "x" * 300, "user_id": "user_alice", "plan_type": "single"},
        event_id="evt_long_order",
    )

    resp = client.post("/api/billing/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "noop"
    assert _only_order(db).id == order.id
    assert _only_order(db).status == "pending"
    with db.session() as session:
        row = session.execute(select(payment_events)).one()
    assert row.order_id is None
    assert row.processed
