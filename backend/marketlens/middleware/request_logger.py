"""
MarketLens — Request Logger Middleware

Structured request/response logging via structlog. Attaches a unique
request ID (echoed from ``X-Request-ID`` when the client sends one) for
end-to-end tracing.
"""

from __future__ import annotations

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

log = structlog.get_logger(__name__)

# Paths to skip logging (high-frequency, low-signal)
_SKIP_PATHS = frozenset({"/health", "/favicon.ico"})

# /v1/api/analyze/{component} and the per-symbol market routes
_ROUTE_RE = re.compile(r"^/v1/api/(analyze|ticks|history|analysis|signals)/([^/]+)/?$")


def route_fields(path: str) -> dict[str, str]:
    """Symbol or analysis component addressed by an API path, if any.

    >>> route_fields("/v1/api/history/R_100")
    {'symbol': 'R_100'}
    >>> route_fields("/v1/api/analyze/smc")
    {'component': 'smc'}
    """
    match = _ROUTE_RE.match(path)
    if not match:
        return {}
    kind, value = match.groups()
    return {"component" if kind == "analyze" else "symbol": value}


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Log every request with its symbol or component, status and latency."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        # Bind request context for structured logs
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        fields = route_fields(request.url.path)

        log.info(
            "request.start",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
        )

        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - start) * 1000
            log.error(
                "request.error",
                method=request.method,
                path=request.url.path,
                **fields,
                latency_ms=round(elapsed_ms, 1),
            )
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000

        log.info(
            "request.complete",
            method=request.method,
            path=request.url.path,
            **fields,
            status=response.status_code,
            latency_ms=round(elapsed_ms, 1),
        )

        response.headers["X-Request-ID"] = request_id
        return response
