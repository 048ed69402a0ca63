"""Prometheus metrics for SocialDB.

Repository calls and migration units are counted, and repository latency
is recorded, on a registry owned by this module so tests can read and
reset samples without touching the process-wide default.

Metrics:
    - repository_operations_total{operation,status}
    - repository_operation_duration_seconds{operation}
    - migrations_total{direction,status}
    - errors_total{error_type,component}

Example:
    >>> from socialdb.metrics import generate_metrics_output
    >>> payload = generate_metrics_output()  # text exposition format
"""

from __future__ import annotations

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry()

# Seconds. A local SQLite round trip is usually well under 10ms.
STORE_LATENCY_BUCKETS = (0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.1, 0.5, 2.0)


# ========== COUNTER METRICS ==========

repository_operations_total = Counter(
    "repository_operations_total",
    "Total number of repository operations",
    labelnames=["operation", "status"],
    registry=registry,
)
"""Counter for repository operations.

Labels:
    operation: Operation name (e.g., "get_feed_posts", "create_message")
    status: "success" or "error"
"""

migrations_total = Counter(
    "migrations_total",
    "Total number of migration units run",
    labelnames=["direction", "status"],
    registry=registry,
)
"""Counter for migration units.

Labels:
    direction: "up" or "down"
    status: "success" or "error"
"""

errors_total = Counter(
    "errors_total",
    "Errors raised by repository and migrator code",
    labelnames=["error_type", "component"],
    registry=registry,
)
"""Counter for errors by exception type and component ("repository", "migrator")."""


# ========== HISTOGRAM METRICS ==========

repository_operation_duration_seconds = Histogram(
    "repository_operation_duration_seconds",
    "Repository operation latency in seconds",
    labelnames=["operation"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=registry,
)


# ========== HELPER FUNCTIONS ==========

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def track_operation(operation: str) -> Callable[[F], F]:
    """Decorate an async repository method with count and latency metrics.

    Example:
        ```python
        class SocialRepository(Repository):
            @track_operation("get_feed_posts")
            async def get_feed_posts(self, user_id: str) -> list[PostView]:
                ...
        ```
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                repository_operations_total.labels(operation=operation, status="error").inc()
                errors_total.labels(error_type=type(exc).__name__, component="repository").inc()
                raise
            finally:
                repository_operation_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )
            repository_operations_total.labels(operation=operation, status="success").inc()
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


def generate_metrics_output() -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(registry)


def sample_value(name: str, labels: dict[str, str] | None = None) -> float:
    """Read the current value of a sample from the registry (0.0 if unset)."""
    value = registry.get_sample_value(name, labels or {})
    return value if value is not None else 0.0


def reset_metrics() -> None:
    """Drop every labelled sample (tests call this for isolation)."""
    for metric in (
        repository_operations_total,
        migrations_total,
        errors_total,
        repository_operation_duration_seconds,
    ):
        metric.clear()


__all__ = [
    "registry",
    "repository_operations_total",
    "migrations_total",
    "errors_total",
    "repository_operation_duration_seconds",
    "track_operation",
    "generate_metrics_output",
    "sample_value",
    "reset_metrics",
    "STORE_LATENCY_BUCKETS",
]
