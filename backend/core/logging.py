"""
Structured logging for the chavepix logger.

- JSON lines in production, one readable line per record elsewhere.
- request_id is bound per request through a context var and stamped on
  every record by RequestIdFilter.
- log_event() attaches the order/payment correlation fields both
  formatters know how to render.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "chavepix"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Correlation fields rendered by both formatters when set on a record
STRUCTURED_FIELDS = ("user_id", "order_id", "event_type", "error_code", "outcome")

_LATENCY_BUCKETS = (
    (10, "<10ms"),
    (100, "10-100ms"),
    (500, "100-500ms"),
    (1000, "500-1000ms"),
)

_TRUNCATE_AT = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label, so log lines group well."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


def _structured(record: logging.LogRecord) -> Dict[str, object]:
    fields = {}
    for name in STRUCTURED_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            fields[name] = value
    return fields


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_structured(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        rid = getattr(record, "request_id", None)
        parts = [_timestamp(record), record.levelname, f"[{LOGGER_NAME}]"]
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{k}={v}" for k, v in _structured(record).items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Install a single stdout handler on the chavepix logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn keeps its own handlers; don't duplicate its lines through root
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False


def _truncate(value) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= _TRUNCATE_AT:
        return text
    return text[:_TRUNCATE_AT] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    order_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    outcome: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """
    Log msg on the chavepix logger with correlation fields.

    Unset fields are left off the record. Values in `extra` are stringified
    and truncated so a gateway payload can't flood the log.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {"request_id": request_id or get_request_id()}
    for name, value in (
        ("user_id", user_id),
        ("order_id", order_id),
        ("event_type", event_type),
        ("error_code", error_code),
        ("outcome", outcome),
    ):
        if value is not None:
            fields[name] = value
    for key, value in (extra or {}).items():
        fields[key] = _truncate(value)

    logger.log(logging.getLevelName(level.upper()), msg, extra=fields)
