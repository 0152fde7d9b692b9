"""Prometheus metrics registration for the resource lock registry.

All metric objects are defined at import time and registered on the default
prometheus_client registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

resource_lock_operations_total = Counter(
    "resource_lock_operations_total",
    "Resource lock registry operations",
    ["operation", "status"],
)
resource_lock_expired_entries_total = Counter(
    "resource_lock_expired_entries_total",
    "Entries reaped by lazy expiry sweeps",
    ["index"],
)
resource_lock_operation_duration_seconds = Histogram(
    "resource_lock_operation_duration_seconds",
    "Duration of resource lock registry operations",
    ["operation"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
)
