"""
In-process telemetry for the advisor pipeline.

Nothing is exported to a metrics backend. Events go to the log, counters and
latency samples stay in memory for the lifetime of the process, and
health_snapshot() is what GET /health reports.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections import deque
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("advisorq.telemetry")

# Newest samples per metric; older ones fall off
MAX_LATENCY_SAMPLES = 500

PROVIDER_LATENCY_METRIC = "advisor.provider.latency_ms"

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, deque[float]] = {}


def _metric_name(name: str) -> str:
    return name if name.endswith("_ms") else f"{name}_ms"


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must ensure user identifiers are redacted.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """Add ``increment`` to a named counter and return the new value."""
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def counters_snapshot(prefix: str = "") -> dict[str, int]:
    """Copy of all counters whose name starts with ``prefix``."""
    return {name: value for name, value in sorted(_COUNTERS.items()) if name.startswith(prefix)}


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Record the wall time of the block in milliseconds, even when it raises.

    ``advisor.provider.latency`` and ``advisor.provider.latency_ms`` name the
    same metric.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        name = _metric_name(metric_name)
        logger.debug("timing=%s ms=%.2f", name, elapsed_ms)
        _LATENCIES.setdefault(name, deque(maxlen=MAX_LATENCY_SAMPLES)).append(elapsed_ms)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """Count, min, max, avg, p50 and p95 in milliseconds over the retained samples."""
    samples = sorted(_LATENCIES.get(_metric_name(metric_name), ()))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": round(samples[0], 2),
        "max": round(samples[-1], 2),
        "avg": round(sum(samples) / count, 2),
        "p50": round(samples[int(count * 0.50)], 2),
        "p95": round(samples[min(int(count * 0.95), count - 1)], 2),
    }


def health_snapshot() -> dict[str, Any]:
    """Advisor counters and provider latency, as served by GET /health."""
    return {
        "counters": counters_snapshot("advisor."),
        "providerLatencyMs": get_latency_stats(PROVIDER_LATENCY_METRIC),
    }


def reset_telemetry() -> None:
    """Clear all counters and latency samples (useful for tests)."""
    _COUNTERS.clear()
    _LATENCIES.clear()
