"""
MarketLens — Engine Tracing

Timing spans around engine calls. Every span logs at debug level on exit and
emits a warning when it runs longer than the configured slow threshold.

Usage:
    with trace_span("smc_engine.analyze", tags=["smc"]):
        result = SMCEngine().analyze(history)
"""

from __future__ import annotations

import functools
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

import structlog

from marketlens.config import get_settings

logger = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Manual Tracing
# ──────────────────────────────────────────────

@contextmanager
def trace_span(
    name: str,
    metadata: Optional[dict] = None,
    tags: Optional[list[str]] = None,
):
    """Context manager that times a block of engine work.

    Args:
        name: Name of the span (e.g., "ta_engine.analyze").
        metadata: Optional key/values attached to the log events.
        tags: Optional tags for filtering.
    """
    start = time.perf_counter()
    extra = {"span_name": name, **(metadata or {})}
    if tags:
        extra["tags"] = tags

    logger.debug("trace_span_start", **extra)
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("trace_span_end", elapsed_ms=round(elapsed * 1000, 2), **extra)
        if elapsed > get_settings().slow_span_seconds:
            logger.warning("trace_span_slow", elapsed_s=round(elapsed, 2), **extra)


def traced(
    name: Optional[str] = None,
    tags: Optional[list[str]] = None,
):
    """Decorator to time a function as a span.

    Usage:
        @traced("signal_composer.compose", tags=["signals"])
        def compose(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with trace_span(span_name, tags=tags):
                return func(*args, **kwargs)

        return wrapper

    return decorator
