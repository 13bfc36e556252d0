"""Request tracing middleware and structured exception handlers.

Every request gets a unique ID (from X-Request-ID header or generated),
which is bound to structlog contextvars so all log lines within a
request are correlated. Prometheus counters and histograms are recorded
per route template, so wallet addresses never become metric labels.
Exception handlers translate BlockServedError subclasses into structured
ErrorResponse JSON; the API never leaks stack traces.
"""

import time
import uuid
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from blockserved.core.exceptions import (
    BlockServedError,
    ChainUnavailable,
    InvalidAddress,
    NotFoundError,
    RateLimitError,
    StoreUnavailable,
    WalletAuthError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
)


def _endpoint_label(request: Request) -> str:
    route_path = getattr(request.scope.get("route"), "path", None)
    if route_path:
        return str(route_path)
    endpoint = request.scope.get("endpoint")
    return getattr(endpoint, "__name__", "unmatched")


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, bind structured log context, and record metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        logger.info(
            "request_started",
            method=request.method,
            path=str(request.url.path),
        )

        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            logger.exception(
                "request_failed",
                method=request.method,
                path=str(request.url.path),
                duration_seconds=round(duration, 4),
            )
            response = JSONResponse(
                status_code=500,
                content=_error_body("internal_server_error", "An unexpected error occurred."),
            )

        duration = time.perf_counter() - start
        endpoint = _endpoint_label(request)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration_seconds=round(duration, 4),
        )
        return response


# ---------------------------------------------------------------------------
# Exception → JSON response handlers
# ---------------------------------------------------------------------------


def _request_id() -> str | None:
    """Pull the current request ID from structlog context, if bound."""
    ctx: dict[str, str] = structlog.contextvars.get_contextvars()
    return ctx.get("request_id")


def _error_body(error: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "error": error,
        "message": message,
        "details": details or {},
        "request_id": _request_id(),
    }


def register_exception_handlers(app: FastAPI) -> None:
    """Attach structured error handlers to the app."""

    @app.exception_handler(InvalidAddress)
    async def _invalid_address(request: Request, exc: InvalidAddress) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=_error_body("invalid_address", exc.message, exc.details),
        )

    @app.exception_handler(WalletAuthError)
    async def _wallet_auth(request: Request, exc: WalletAuthError) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content=_error_body("wallet_required", exc.message, exc.details),
        )

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=_error_body("not_found", exc.message, exc.details),
        )

    @app.exception_handler(RateLimitError)
    async def _rate_limit(request: Request, exc: RateLimitError) -> JSONResponse:
        headers: dict[str, str] = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        return JSONResponse(
            status_code=429,
            content=_error_body("rate_limit_exceeded", exc.message, exc.details),
            headers=headers,
        )

    @app.exception_handler(ChainUnavailable)
    @app.exception_handler(StoreUnavailable)
    async def _unavailable(request: Request, exc: BlockServedError) -> JSONResponse:
        logger.warning("dependency_unavailable", error_type=type(exc).__name__, message=exc.message)
        return JSONResponse(
            status_code=503,
            content=_error_body("service_unavailable", exc.message, exc.details),
        )

    @app.exception_handler(BlockServedError)
    async def _blockserved(request: Request, exc: BlockServedError) -> JSONResponse:
        logger.error(
            "blockserved_error",
            error_type=type(exc).__name__,
            message=exc.message,
            details=exc.details,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(type(exc).__name__, exc.message, exc.details),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content=_error_body("internal_server_error", "An unexpected error occurred."),
        )
