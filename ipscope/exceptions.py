# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import math

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ── Exception hierarchy ──────────────────────────────────────────────────────


class IPScopeError(Exception):
    """Base exception for all ipscope errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceededError(IPScopeError):
    """Raised when a client has no tokens left in its bucket.

    retry_after_seconds is the refill time of a single token; the response
    carries it as a Retry-After header.
    """

    def __init__(self, client_key: str, retry_after_seconds: float = 1.0):
        self.client_key = client_key
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "Rate limit exceeded. Please try again later.",
            status_code=429,
        )


class DatabaseOpenError(IPScopeError):
    """Raised when a lookup database exists on disk but cannot be opened."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Could not open database '{path}': {reason}", status_code=503)


class ConfigurationError(IPScopeError):
    """Raised at startup for settings the server cannot run with."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


# ── Response building ───────────────────────────────────────────────────────


def error_response(exc: IPScopeError) -> JSONResponse:
    """Structured JSON body for an IPScopeError.

    Shared by the exception handlers and by middleware, which runs outside
    FastAPI's exception handling and has to build its responses directly.
    """
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitExceededError):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after_seconds)))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "type": type(exc).__name__},
        headers=headers,
    )


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    Endpoints raise IPScopeError subclasses; these handlers catch them
    and return structured JSON.
    """

    @app.exception_handler(IPScopeError)
    async def ipscope_error_handler(request: Request, exc: IPScopeError) -> JSONResponse:
        logger.error("ipscope_error", error=exc.message, error_type=type(exc).__name__, exc_info=exc)
        return error_response(exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "type": "UnhandledError"},
        )
