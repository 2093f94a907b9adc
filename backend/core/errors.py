"""
Error taxonomy and normalized error responses.

Every failure leaves the API as:

    {"error": {"code", "message", "request_id"}, "detail": message}

with the request id echoed in the x-request-id header.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from backend.core.logging import LOGGER_NAME, get_request_id


logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    """Bad input: unknown plan, malformed handle, undecodable event."""
    code = "validation_error"
    status_code = 400


class AuthError(AppError):
    """No authenticated user where one is required."""
    code = "unauthorized"
    status_code = 401


class EntitlementExhaustedError(AppError):
    """User has no unprovisioned keys left."""
    code = "entitlement_exhausted"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class DependencyError(AppError):
    """External store or payment gateway call failed."""
    code = "dependency_error"
    status_code = 502


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


class SignatureError(AppError):
    """Webhook authenticity check failed. Terminal, never retried."""
    code = "invalid_signature"
    status_code = 400


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _respond(rid: str, status_code: int, code: str, message: str) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": message, "request_id": rid},
            "detail": message,
        },
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(rid, exc.status_code, exc.code, exc.message)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(rid, exc.status_code, code, exc.detail or "HTTP error")


async def request_validation_handler(request: Request, exc: Exception):
    """Body/query schema failures map onto ValidationError's 400."""
    rid = _request_id(request)
    message = "Invalid request body"
    errors = getattr(exc, "errors", None)
    if callable(errors):
        first = next(iter(errors()), None)
        if first:
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = f"{location}: {first.get('msg', 'invalid')}"
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": ValidationError.code})
    return _respond(rid, ValidationError.status_code, ValidationError.code, message)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _respond(rid, 500, "internal_error", "Unexpected error")
