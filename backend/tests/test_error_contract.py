"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.core.errors import (
    AppError,
    ConflictError,
    EntitlementExhaustedError,
    app_error_handler,
    unhandled_exception_handler,
)
from backend.core.middleware.request_id import RequestIdMiddleware


def test_validation_error_has_standard_shape(client, auth_headers):
    resp = client.post("/api/billing/checkout", json={"plan_type": "gold"}, headers=auth_headers())
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_unknown_route_is_normalized(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_provided_request_id_is_echoed_in_error(client):
    resp = client.get("/api/auth/me", headers={"X-Request-Id": "rid-from-edge"})
    assert resp.status_code == 401
    assert resp.headers["x-request-id"] == "rid-from-edge"
    assert resp.json()["error"]["request_id"] == "rid-from-edge"


def _app_raising(exc: Exception) -> FastAPI:
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/boom")
    async def boom():
        raise exc

    return test_app


def test_taxonomy_status_codes():
    for exc, status, code in [
        (ConflictError("taken"), 409, "conflict"),
        (EntitlementExhaustedError("none left"), 403, "entitlement_exhausted"),
    ]:
        resp = TestClient(_app_raising(exc)).get("/boom")
        assert resp.status_code == status
        assert resp.json()["error"]["code"] == code


def test_unexpected_exception_is_internal_error():
    client = TestClient(_app_raising(RuntimeError("kaboom")), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "kaboom" not in body["error"]["message"]
