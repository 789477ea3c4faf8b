"""Periodic health sampling.

``HealthMonitor.sample()`` runs four independent checks (database, models,
indexes, performance).  A check that raises is reported as ``critical``
with an ``error`` detail; it never prevents the other three from being
reported.

Usage:
    monitor = HealthMonitor(client, registry, introspector, inspector, config, tracker)
    report = await monitor.sample()
    print(report.to_wire())

    await monitor.start()   # periodic sampling in the background
    ...
    await monitor.stop()
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from db_lifecycle.adapters.base import DatabaseClient
from db_lifecycle.config.models import LifecycleConfig
from db_lifecycle.errors import TableNotFoundError
from db_lifecycle.health.latency import QueryLatencyTracker
from db_lifecycle.health.models import (
    HealthCheck,
    HealthReport,
    HealthStatus,
    status_for_latency,
)
from db_lifecycle.indexes.inspector import IndexInspector
from db_lifecycle.indexes.models import OptimizationPolicy
from db_lifecycle.indexes.optimizer import plan_removals
from db_lifecycle.schema.introspector import SchemaIntrospector
from db_lifecycle.schema.registry import ModelRegistry

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Samples database health on demand or on a fixed interval.

    Only the most recent report is kept (``latest``).

    Args:
        client: Shared database client.
        registry: Declared models.
        introspector: Catalog reader (table existence).
        inspector: Index inspector (index counts and duplicates).
        config: Thresholds, ceiling, and sampling interval.
        latency: Caller-maintained query latency window.
    """

    def __init__(
        self,
        client: DatabaseClient,
        registry: ModelRegistry,
        introspector: SchemaIntrospector,
        inspector: IndexInspector,
        config: LifecycleConfig,
        latency: QueryLatencyTracker | None = None,
    ):
        self._client = client
        self._registry = registry
        self._introspector = introspector
        self._inspector = inspector
        self.config = config
        self.latency = latency or QueryLatencyTracker()
        self.latest: HealthReport | None = None
        self.running = False
        self.monitor_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_database(self) -> HealthCheck:
        start = time.perf_counter()
        try:
            connected = await self._client.test_connection()
        except Exception as e:
            return HealthCheck(
                status=HealthStatus.CRITICAL,
                details={"connected": False, "error": str(e)},
            )
        if not connected:
            return HealthCheck(
                status=HealthStatus.CRITICAL,
                details={"connected": False, "error": "connection test failed"},
            )
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        return HealthCheck(
            status=status_for_latency(
                latency_ms, self.config.warn_latency_ms, self.config.critical_latency_ms
            ),
            details={"connected": True, "latencyMs": latency_ms},
        )

    async def check_models(self) -> HealthCheck:
        models = self._registry.all()
        loaded: list[str] = []
        missing: list[str] = []
        for model in models:
            if await self._introspector.table_exists(model.table):
                loaded.append(model.name)
            else:
                missing.append(model.table)

        if not models:
            status = HealthStatus.WARNING
        elif missing:
            status = HealthStatus.CRITICAL
        else:
            status = HealthStatus.HEALTHY

        details: dict = {"totalModels": len(models), "loadedModels": loaded}
        if missing:
            details["missingTables"] = missing
        return HealthCheck(status=status, details=details)

    async def check_indexes(self) -> HealthCheck:
        ceiling = self.config.index_ceiling
        margin = self.config.index_warning_margin
        total = 0
        duplicates = 0
        near: list[str] = []
        over: list[str] = []

        for table in self._registry.tables():
            try:
                signatures = await self._inspector.inspect(table)
            except TableNotFoundError:
                continue
            count = await self._inspector.index_count(table)
            total += count
            duplicates += len(
                plan_removals(
                    signatures,
                    OptimizationPolicy.CONSERVATIVE,
                    declared_names=self._registry.declared_index_names(table),
                )
            )
            if count >= ceiling:
                over.append(table)
            elif count >= ceiling - margin:
                near.append(table)

        if over:
            status = HealthStatus.CRITICAL
        elif near:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY

        details: dict = {"totalIndexes": total, "duplicateIndexes": duplicates}
        if near:
            details["tablesNearCeiling"] = near
        if over:
            details["tablesAtCeiling"] = over
        return HealthCheck(status=status, details=details)

    async def check_performance(self) -> HealthCheck:
        average = round(self.latency.average_ms, 2)
        return HealthCheck(
            status=status_for_latency(
                average, self.config.warn_latency_ms, self.config.critical_latency_ms
            ),
            details={"avgQueryTime": average, "samples": self.latency.sample_count},
        )

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    async def _guarded(self, name: str, check: Callable[[], Awaitable[HealthCheck]]) -> HealthCheck:
        # A failing check must never take the report down with it
        try:
            return await check()
        except Exception as e:
            logger.warning("Health check '%s' failed: %s", name, e)
            return HealthCheck.failed(e)

    async def sample(self) -> HealthReport:
        """Run all four checks and keep the report as ``latest``."""
        database, models, indexes, performance = await asyncio.gather(
            self._guarded("database", self.check_database),
            self._guarded("models", self.check_models),
            self._guarded("indexes", self.check_indexes),
            self._guarded("performance", self.check_performance),
        )
        report = HealthReport(
            database=database,
            models=models,
            indexes=indexes,
            performance=performance,
        )
        self.latest = report
        if report.overall is not HealthStatus.HEALTHY:
            logger.warning("Database health is %s", report.overall.value)
        return report

    async def start(self) -> None:
        """Start periodic sampling."""
        if self.running:
            logger.warning("Health monitoring is already running")
            return

        self.running = True
        self.monitor_task = asyncio.create_task(self._monitoring_worker())
        logger.info(
            "Health monitoring started (every %d ms)", self.config.health_sample_interval_ms
        )

    async def stop(self) -> None:
        """Stop periodic sampling and wait for the task to finish."""
        if not self.running:
            return

        self.running = False

        if self.monitor_task:
            self.monitor_task.cancel()
            try:
                await self.monitor_task
            except asyncio.CancelledError:
                pass
            self.monitor_task = None

        logger.info("Health monitoring stopped")

    async def _monitoring_worker(self) -> None:
        interval = self.config.health_sample_interval_ms / 1000
        while self.running:
            await self.sample()
            await asyncio.sleep(interval)
