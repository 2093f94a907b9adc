import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from backend/.env
backend_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(backend_dir, ".env"))

from backend.core.auth import SessionStore
from backend.core.config import Settings, settings as default_settings, validate_config
from backend.core.database import Database
from backend.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from backend.core.logging import configure_logging
from backend.core.middleware.request_id import RequestIdMiddleware
from backend.api import auth, billing, health, orders, pix_keys, plans
from backend.features.billing.provider import PaymentGateway
from backend.features.billing.service import build_gateway
from backend.features.users.service import ProfileService

_UNSET = object()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gateway=_UNSET,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Build the application with explicit collaborators.

    Anything not passed in is built from settings; pass gateway=None to run
    with billing disabled.
    """
    cfg = settings or default_settings
    db = database or Database(cfg.DATABASE_URL)
    store = session_store or SessionStore(cfg.AUTH_JWT_SECRET, cfg.AUTH_JWT_AUDIENCE)
    payment_gateway: Optional[PaymentGateway] = build_gateway(cfg) if gateway is _UNSET else gateway

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("chavepix")
        logger.info("Starting Chave Pix Club backend...")
        db.create_all()
        try:
            yield
        finally:
            logger.info("Stopping Chave Pix Club backend...")

    app = FastAPI(title="Chave Pix Club - Backend", lifespan=lifespan)
    app.state.settings = cfg
    app.state.db = db
    app.state.session_store = store
    app.state.gateway = payment_gateway

    store.on_auth_state_change(ProfileService(db).profile_listener())

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.root_router)
    app.include_router(plans.router, prefix="/api")
    app.include_router(auth.router, prefix="/api")
    app.include_router(billing.router, prefix="/api")
    app.include_router(orders.router, prefix="/api")
    app.include_router(pix_keys.router, prefix="/api")

    if payment_gateway is None:
        logging.getLogger("chavepix").warning("Billing disabled: STRIPE_SECRET_KEY not configured")

    return app


def build_default_app() -> FastAPI:
    configure_logging(default_settings.ENV, default_settings.LOG_LEVEL)
    validate_config(strict=default_settings.CONFIG_STRICT)
    return create_app()
