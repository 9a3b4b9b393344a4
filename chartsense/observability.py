"""
chartsense — Logging & Timing

structlog setup plus lightweight span timing for engine calls. Every module
gets its logger with ``structlog.get_logger(__name__)`` and emits dotted event
names with key/value context (``cache.hit``, ``optimizer.timeout``, ...).
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────

def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure structlog processors and the stdlib root level.

    Args:
        level: Minimum log level name (``"DEBUG"``, ``"INFO"``, ...).
        json: Render JSON lines instead of the console renderer.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(format="%(message)s", level=numeric)

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=True,
    )
    logger.debug("logging_configured", level=level, json=json)


# ──────────────────────────────────────────────
# Span Timing
# ──────────────────────────────────────────────

@contextmanager
def trace_span(name: str, slow_after: float = 1.0, **metadata: Any):
    """Time a block of engine work.

    Logs the elapsed time at debug level and warns when the block takes
    longer than ``slow_after`` seconds.

    Usage:
        with trace_span("patterns.detect", symbol="ETH/USDT"):
            result = engine.detect(series)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("trace_span_end", span_name=name, elapsed_ms=round(elapsed * 1000, 2), **metadata)
        if elapsed > slow_after:
            logger.warning("trace_span_slow", span_name=name, elapsed_s=round(elapsed, 2), **metadata)


def traced(name: Optional[str] = None, slow_after: float = 1.0) -> Callable:
    """Decorator form of :func:`trace_span` for sync and async callables."""
    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with trace_span(span_name, slow_after=slow_after):
                return func(*args, **kwargs)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            with trace_span(span_name, slow_after=slow_after):
                return await func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return wrapper

    return decorator


# ──────────────────────────────────────────────
# Engine Metrics
# ──────────────────────────────────────────────

class EngineMetrics:
    """In-process call/latency/error counters per engine operation."""

    def __init__(self):
        self._call_counts: dict[str, int] = {}
        self._total_latency: dict[str, float] = {}
        self._error_counts: dict[str, int] = {}

    def record_call(self, operation: str, latency_ms: float, success: bool = True):
        """Record a single operation call."""
        self._call_counts[operation] = self._call_counts.get(operation, 0) + 1
        self._total_latency[operation] = self._total_latency.get(operation, 0.0) + latency_ms
        if not success:
            self._error_counts[operation] = self._error_counts.get(operation, 0) + 1

    def get_stats(self) -> dict[str, dict]:
        """Get performance stats per operation."""
        stats = {}
        for op in self._call_counts:
            calls = self._call_counts[op]
            stats[op] = {
                "total_calls": calls,
                "avg_latency_ms": round(self._total_latency.get(op, 0) / max(calls, 1), 2),
                "error_count": self._error_counts.get(op, 0),
                "error_rate": round(self._error_counts.get(op, 0) / max(calls, 1), 4),
            }
        return stats

    def reset(self):
        """Reset all metrics."""
        self._call_counts.clear()
        self._total_latency.clear()
        self._error_counts.clear()


# Module-level shared instance
engine_metrics = EngineMetrics()
