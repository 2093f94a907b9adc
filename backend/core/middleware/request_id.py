import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from backend.core.logging import LOGGER_NAME, latency_bucket_ms, request_id_ctx_var

logger = logging.getLogger(LOGGER_NAME)

# Longer incoming ids are replaced rather than echoed into logs and headers
MAX_INCOMING_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request_id for the duration of each request and log its completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    def _resolve(self, request) -> str:
        incoming = (request.headers.get(self.header_name) or "").strip()
        if incoming and len(incoming) <= MAX_INCOMING_ID_LENGTH:
            return incoming
        return str(uuid4())

    async def dispatch(self, request, call_next):
        rid = self._resolve(request)
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[self.header_name] = rid
            return response
        finally:
            logger.info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "path": request.url.path,
                    "method": request.method,
                    "status": status,
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - start) * 1000),
                },
            )
            request_id_ctx_var.reset(token)
