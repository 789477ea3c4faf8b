"""Pydantic models for health reports."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
}


def status_for_latency(latency_ms: float, warn_ms: float, critical_ms: float) -> HealthStatus:
    """``healthy`` below ``warn_ms``, ``warning`` below ``critical_ms``, else ``critical``.

    Example:
        >>> status_for_latency(150, warn_ms=100, critical_ms=500)
        <HealthStatus.WARNING: 'warning'>
    """
    if latency_ms < warn_ms:
        return HealthStatus.HEALTHY
    if latency_ms < critical_ms:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


class HealthCheck(BaseModel):
    """Status of one sub-check plus its details payload."""

    status: HealthStatus
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(cls, error: BaseException | str) -> "HealthCheck":
        return cls(status=HealthStatus.CRITICAL, details={"error": str(error)})


class HealthReport(BaseModel):
    """One health sample: four independent sub-checks.

    Example:
        >>> report = HealthReport(
        ...     database=HealthCheck(status="healthy", details={"latencyMs": 3.2}),
        ...     models=HealthCheck(status="healthy", details={"totalModels": 0, "loadedModels": []}),
        ...     indexes=HealthCheck(status="healthy", details={"totalIndexes": 0, "duplicateIndexes": 0}),
        ...     performance=HealthCheck(status="healthy", details={"avgQueryTime": 0.0}),
        ... )
        >>> sorted(report.to_wire())
        ['database', 'indexes', 'models', 'performance']
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    database: HealthCheck
    models: HealthCheck
    indexes: HealthCheck
    performance: HealthCheck

    @property
    def checks(self) -> dict[str, HealthCheck]:
        return {
            "database": self.database,
            "models": self.models,
            "indexes": self.indexes,
            "performance": self.performance,
        }

    @property
    def overall(self) -> HealthStatus:
        """Worst status across the four checks."""
        return max((c.status for c in self.checks.values()), key=lambda s: s.severity)

    def to_wire(self) -> dict[str, dict[str, Any]]:
        """JSON-ready dict with exactly the four sub-check sections."""
        return {
            name: {"status": check.status.value, "details": dict(check.details)}
            for name, check in self.checks.items()
        }
