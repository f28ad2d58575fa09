"""Prometheus metrics instrumentation for index synchronization.

Tracks:
- Search backend requests per operation (latency, success/failure)
- Bulk buffer flushes, flushed operations and queue depth
- Document store hook events handled by the synchronizer
"""

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram

# ==================== Backend Request Metrics ====================

INDEX_REQUESTS = Counter(
    "searchsync_requests_total",
    "Total search backend requests",
    ["operation", "status"],
)

INDEX_LATENCY = Histogram(
    "searchsync_request_latency_seconds",
    "Search backend request latency in seconds",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# ==================== Bulk Metrics ====================

BULK_FLUSHES = Counter(
    "searchsync_bulk_flushes_total",
    "Total bulk flushes",
    ["status"],
)

BULK_OPERATIONS = Counter(
    "searchsync_bulk_operations_total",
    "Total operations submitted through bulk requests",
)

BULK_FLUSH_LATENCY = Histogram(
    "searchsync_bulk_flush_latency_seconds",
    "Bulk flush latency in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

BULK_QUEUE_SIZE = Gauge(
    "searchsync_bulk_queue_size",
    "Current bulk queue size",
    ["buffer"],
)

# ==================== Hook Metrics ====================

HOOK_EVENTS = Counter(
    "searchsync_hook_events_total",
    "Document store hook events handled",
    ["event", "status"],
)

P = ParamSpec("P")
T = TypeVar("T")


def track_request(operation: str) -> Callable[..., Any]:
    """Decorator to track search backend request metrics.

    Args:
            operation: Operation name (index, delete, search, etc.).

    Returns:
            Decorated function.

    Example:
            @track_request("search")
            async def search(self, query: dict) -> dict:
                    ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
                INDEX_REQUESTS.labels(operation=operation, status="success").inc()
                return result

            except Exception:
                INDEX_REQUESTS.labels(operation=operation, status="error").inc()
                raise

            finally:
                duration = time.perf_counter() - start_time
                INDEX_LATENCY.labels(operation=operation).observe(duration)

        return wrapper

    return decorator


def record_bulk_flush(success: bool, operations: int, latency: float) -> None:
    """Record a bulk flush.

    Args:
            success: Whether the bulk request succeeded.
            operations: Number of operations in the request.
            latency: Flush latency in seconds.
    """
    status = "success" if success else "error"
    BULK_FLUSHES.labels(status=status).inc()
    BULK_OPERATIONS.inc(operations)
    BULK_FLUSH_LATENCY.observe(latency)


def set_bulk_queue_size(buffer: str, size: int) -> None:
    """Set the current queue size of one bulk buffer."""
    BULK_QUEUE_SIZE.labels(buffer=buffer).set(size)


def clear_bulk_queue_size(buffer: str) -> None:
    """Drop the queue size series of a closed bulk buffer."""
    try:
        BULK_QUEUE_SIZE.remove(buffer)
    except KeyError:
        pass


def record_hook_event(event: str, success: bool) -> None:
    """Record a handled document store hook event.

    Args:
            event: Hook name (saved, removed).
            success: Whether handling succeeded.
    """
    status = "success" if success else "error"
    HOOK_EVENTS.labels(event=event, status=status).inc()

