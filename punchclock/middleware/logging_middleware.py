"""Request logging middleware.

Binds a request id (taken from X-Request-ID when the gateway sent one) to
structlog's contextvars so every log line emitted while handling the
request carries it, and logs one summary line per request.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

log = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            log.error("request_failed", exc_info=True)
            raise
        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        # Health probes and scrapes would drown everything else
        if request.url.path not in ("/health", "/metrics"):
            log.info("request_completed", status_code=response.status_code, duration_ms=duration_ms)
        response.headers["X-Request-ID"] = request_id
        return response
