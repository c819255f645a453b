"""Prometheus metrics for the recurrence engine."""

from prometheus_client import Counter, Histogram, start_http_server
import functools
import time

# Public exports
__all__ = [
    "TICKS",
    "TICK_LATENCY",
    "GENERATION_SUCCESS",
    "GENERATION_FAILURE",
    "CRON_FALLBACK",
    "NOTIFICATION_FAILURE",
    "OPERATION_LATENCY",
    "start_metrics_server",
    "track_operation",
]

TICKS = Counter(
    "recurrence_ticks_total",
    "Number of scheduler ticks executed",
)

TICK_LATENCY = Histogram(
    "recurrence_tick_latency_seconds",
    "Time spent processing one scheduler tick",
)

GENERATION_SUCCESS = Counter(
    "recurrence_generation_success_total",
    "Tasks materialized from recurring templates",
    ["trigger"],
)

GENERATION_FAILURE = Counter(
    "recurrence_generation_failure_total",
    "Templates whose materialization raised an exception",
    ["trigger"],
)

CRON_FALLBACK = Counter(
    "recurrence_cron_fallback_total",
    "Reschedules that used the fallback offset for an invalid cron expression",
)

NOTIFICATION_FAILURE = Counter(
    "recurrence_notification_failure_total",
    "Assignee notifications that could not be delivered",
)

OPERATION_LATENCY = Histogram(
    "recurrence_operation_latency_seconds",
    "Time spent in tracked operations",
    ["operation"],
)


def start_metrics_server(port: int = 8000) -> None:
    """Start an HTTP server to expose Prometheus metrics."""
    start_http_server(port)


def track_operation(func=None, *, name: str | None = None):
    """Decorator recording the latency of ``func`` in ``OPERATION_LATENCY``.

    Usable bare as ``@track_operation`` or as
    ``@track_operation(name="materialize")``.
    """

    def decorator(func):
        operation = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                OPERATION_LATENCY.labels(operation).observe(
                    time.monotonic() - start_time
                )

        return wrapper

    if func is None:
        return decorator

    return decorator(func)
