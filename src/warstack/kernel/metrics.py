"""
Prometheus metrics collection for WarStack.

Provides observability into ledger growth, kernel transitions, remote-call
resilience and snapshot persistence.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ============================================================================
# Ledger Metrics
# ============================================================================

ledger_entries_appended_total = Counter(
    "warstack_ledger_entries_appended_total",
    "Total number of entries appended to the hash-chained ledger",
    ["event_type"],
)

ledger_verifications_total = Counter(
    "warstack_ledger_verifications_total",
    "Total number of full-chain verifications",
    ["result"],  # result: valid, broken
)

ledger_resets_total = Counter(
    "warstack_ledger_resets_total",
    "Total number of whole-ledger replacements (reset or load)",
)

ledger_length = Gauge(
    "warstack_ledger_length",
    "Number of entries currently held by the ledger",
)

# ============================================================================
# Kernel Metrics
# ============================================================================

kernel_events_processed_total = Counter(
    "warstack_kernel_events_processed_total",
    "Total number of events offered to the kernel",
    ["event_type", "status"],  # status: committed, recovered
)

kernel_recoveries_total = Counter(
    "warstack_kernel_recoveries_total",
    "Total number of recoverable errors absorbed by the recovery policy",
    ["code"],
)

kernel_cognitive_load = Gauge(
    "warstack_kernel_cognitive_load",
    "Current cognitive load of the kernel (0-100)",
)

kernel_operation_duration_seconds = Histogram(
    "warstack_kernel_operation_duration_seconds",
    "Duration of kernel operations in seconds",
    ["operation"],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

# ============================================================================
# Remote Call Metrics
# ============================================================================

remote_call_retries_total = Counter(
    "warstack_remote_call_retries_total",
    "Total number of remote-call retries scheduled",
    ["category"],
)

remote_call_failures_total = Counter(
    "warstack_remote_call_failures_total",
    "Total number of remote calls that failed for good",
    ["category"],
)

# ============================================================================
# Persistence Metrics
# ============================================================================

snapshot_saves_total = Counter(
    "warstack_snapshot_saves_total",
    "Total number of snapshot saves",
    ["trigger", "status"],  # trigger: debounce, forced, interval; status: success, failure
)

bus_handler_failures_total = Counter(
    "warstack_bus_handler_failures_total",
    "Total number of subscriber handlers that raised",
    ["topic"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_duration(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track kernel operation duration.

    Args:
        operation: Label value for the duration histogram

    Returns:
        Decorated function that records its wall time, success or not
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                kernel_operation_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)
