"""
Health and diagnostics routes.

Lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from backend.core.database import Database
from backend.core.dependencies import get_database
from backend.core.logging import latency_bucket_ms

logger = logging.getLogger("chavepix")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = ("orders", "pix_keys", "profiles", "payment_events")


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(db: Database = Depends(get_database)):
    """Readiness check: DB connectivity + required tables."""
    start = time.perf_counter()
    if not db.check_connection():
        return JSONResponse(status_code=503, content={"status": "unavailable", "db": {"connected": False}})
    try:
        present = set(inspect(db.engine).get_table_names())
    except Exception as e:
        logger.warning(f"[readyz] database unavailable: {e.__class__.__name__}")
        return JSONResponse(status_code=503, content={"status": "unavailable", "db": {"connected": False}})

    missing = [t for t in REQUIRED_TABLES if t not in present]
    latency = latency_bucket_ms((time.perf_counter() - start) * 1000)
    body = {
        "status": "ok" if not missing else "degraded",
        "db": {"connected": True, "missing_tables": missing, "latency_bucket": latency},
    }
    return JSONResponse(status_code=200 if not missing else 503, content=body)
