"""Health reporting: database, models, indexes, and query performance.

Usage:
    from db_lifecycle.health import HealthMonitor, HealthReport, QueryLatencyTracker
"""

from db_lifecycle.health.latency import QueryLatencyTracker
from db_lifecycle.health.models import (
    HealthCheck,
    HealthReport,
    HealthStatus,
    status_for_latency,
)
from db_lifecycle.health.monitor import HealthMonitor

__all__ = [
    "HealthMonitor",
    "HealthReport",
    "HealthCheck",
    "HealthStatus",
    "QueryLatencyTracker",
    "status_for_latency",
]
