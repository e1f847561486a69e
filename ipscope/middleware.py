# ─────────────────────────────────────────────────────────────────────────────
# Request Middleware: request context logging, admission gate, CORS
# ─────────────────────────────────────────────────────────────────────────────


import time
import uuid
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ipscope.exceptions import RateLimitExceededError, error_response
from ipscope.lookup.client import client_address
from ipscope.services.admission import AdmissionController
from ipscope.services.metrics import ServiceMetrics

logger = structlog.get_logger()

# Public API: any origin may read, GET only, plain Content-Type requests.
CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Adds request ID, logs timing, attaches context for structured logging.

    Skips logging for /health (too noisy from liveness probes).
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:  # noqa: ANN001
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start = time.perf_counter()

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration_ms = (time.perf_counter() - start) * 1000

        if not request.url.path.startswith("/health"):
            logger.info(
                "request_completed",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path),
                status=response.status_code,
                duration_ms=round(duration_ms, 1),
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(round(duration_ms, 1))
        return response


class RequestGateMiddleware(BaseHTTPMiddleware):
    """Admission control and CORS in front of every route.

    Order matters: the token bucket is consulted before any identity work
    runs, and a denied request gets a bare 429 without CORS headers.
    OPTIONS preflights are answered here and never reach a route.
    """

    def __init__(
        self,
        app: Any,
        *,
        admission: AdmissionController,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        super().__init__(app)
        self._admission = admission
        self._metrics = metrics

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        key = client_address(request)
        allowed = self._admission.allow(key)
        if self._metrics is not None:
            self._metrics.record_admission(allowed)

        if not allowed:
            exc = RateLimitExceededError(key, self._admission.retry_after_seconds)
            logger.warning(
                "rate_limit_exceeded",
                client=key,
                path=request.url.path,
                method=request.method,
            )
            return error_response(exc)

        if request.method == "OPTIONS":
            if self._metrics is not None:
                self._metrics.record_preflight()
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        response.headers.update(CORS_HEADERS)
        return response
