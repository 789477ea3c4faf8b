"""Database lifecycle manager.

One ``DatabaseManager`` value holds the model registry and the shared
client (and with it the connection pool) for the lifetime of the process.
Callers construct it once at startup, pass it to whatever needs it, and
close it at shutdown -- there is no module-level singleton.

Startup (``setup_database()``) is strictly sequential:

1. connectivity check (with retry)
2. migration strategy selection
3. apply the strategy (migration files / schema sync / hybrid)
4. baseline conservative index optimization of every existing table
5. start the periodic health monitor

Usage:
    from db_lifecycle.manager import connect_manager

    manager = await connect_manager("local", config_path=Path("db.toml"))
    async with manager:
        if not await manager.setup_database():
            print(manager.last_setup.error)
        report = await manager.get_health()
"""

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from db_lifecycle.adapters.base import DatabaseClient
from db_lifecycle.config.loader import (
    get_active_profile_name,
    load_db_config,
    load_model_descriptors,
    resolve_url,
)
from db_lifecycle.config.models import LifecycleConfig
from db_lifecycle.errors import (
    ConstraintError,
    DatabaseConnectionError,
    LifecycleError,
    NoMigrationPathError,
    TableNotFoundError,
)
from db_lifecycle.health.latency import QueryLatencyTracker
from db_lifecycle.health.models import HealthReport
from db_lifecycle.health.monitor import HealthMonitor
from db_lifecycle.indexes.inspector import IndexInspector
from db_lifecycle.indexes.locks import TableLocks
from db_lifecycle.indexes.models import CleanupSummary, OptimizationPolicy, OptimizationResult
from db_lifecycle.indexes.optimizer import IndexOptimizer
from db_lifecycle.migrations.apply import AppliedChangeSet, ChangeApplier
from db_lifecycle.migrations.runner import MigrationRunner
from db_lifecycle.migrations.source import MigrationSource, SqlDirectorySource
from db_lifecycle.migrations.strategy import (
    MigrationStrategy,
    migration_files_available,
    select_strategy,
)
from db_lifecycle.retry import RetryPolicy, with_retry
from db_lifecycle.schema.fix import ConstraintFixer, SeedStep, run_seed_steps
from db_lifecycle.schema.introspector import SchemaIntrospector
from db_lifecycle.schema.models import ModelDescriptor, TableInfo
from db_lifecycle.schema.registry import ModelRegistry
from db_lifecycle.schema.sync import SchemaSynchronizer

logger = logging.getLogger(__name__)


# ============================================================================
# Result Models
# ============================================================================


class SetupResult(BaseModel):
    """Outcome of one ``setup_database()`` run.

    Attributes:
        success: Every stage completed.
        strategy: Selected migration strategy (``None`` if selection failed).
        change_set: What the strategy changed.
        optimizations: Baseline optimization result per existing table.
        emergency_cleanup: Set when the baseline left a table over the ceiling.
        warnings: Non-fatal problems (e.g. a table that could not be optimized).
        error: Why setup stopped, when ``success`` is False.
    """

    success: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    strategy: MigrationStrategy | None = None
    change_set: AppliedChangeSet | None = None
    optimizations: list[OptimizationResult] = Field(default_factory=list)
    emergency_cleanup: CleanupSummary | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


class ModelDiagnosis(BaseModel):
    """Per-model comparison of declared and live shape."""

    name: str
    table: str
    exists: bool
    missing_columns: list[str] = Field(default_factory=list)
    missing_indexes: list[str] = Field(default_factory=list)
    relaxable_not_null: list[str] = Field(default_factory=list)
    type_mismatches: list[str] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.exists and not (
            self.missing_columns or self.missing_indexes or self.relaxable_not_null
        )


# ============================================================================
# Manager
# ============================================================================


class DatabaseManager:
    """Owns the registry, the client, and every lifecycle component.

    Args:
        config: Lifecycle options.
        registry: Validated model registry.
        client: Shared database client (the one connection pool).
        migration_source: Migration source; defaults to the SQL files in
            ``config.migrations_dir``.
        seed_steps: Default seed sequence for ``fix_seeding_constraints()``.
        latency: Query latency window read by the performance check.
    """

    def __init__(
        self,
        config: LifecycleConfig,
        registry: ModelRegistry,
        client: DatabaseClient,
        migration_source: MigrationSource | None = None,
        seed_steps: list[SeedStep] | None = None,
        latency: QueryLatencyTracker | None = None,
    ):
        self.config = config
        self.registry = registry
        self.client = client
        self.seed_steps = list(seed_steps or [])
        self.retry_policy = RetryPolicy(
            attempts=config.retry_attempts,
            base_delay=config.retry_base_delay_seconds,
        )

        self.introspector = SchemaIntrospector(client, schema_name=config.schema_name)
        self.locks = TableLocks(timeout=config.lock_timeout_seconds)
        self.inspector = IndexInspector(
            client, self.introspector, locks=self.locks, retry_policy=self.retry_policy
        )
        self.optimizer = IndexOptimizer(
            self.inspector,
            registry,
            index_ceiling=config.index_ceiling,
            max_concurrency=config.max_concurrency,
            retry_policy=self.retry_policy,
        )

        self.migration_source = migration_source or SqlDirectorySource(config.migrations_dir)
        self.runner = MigrationRunner(
            client, self.migration_source, retry_policy=self.retry_policy
        )
        self.synchronizer = SchemaSynchronizer(
            client,
            registry,
            self.introspector,
            production=config.is_production,
            on_index_limit=self.emergency_index_cleanup,
            retry_policy=self.retry_policy,
        )
        self.applier = ChangeApplier(registry, self.synchronizer, self.runner)
        self.fixer = ConstraintFixer(client, registry)

        self.latency = latency or QueryLatencyTracker()
        self.monitor = HealthMonitor(
            client,
            registry,
            self.introspector,
            self.inspector,
            config,
            latency=self.latency,
        )

        self._strategy: MigrationStrategy | None = None
        self.last_setup: SetupResult | None = None
        self.last_cleanup: CleanupSummary | None = None

    # ------------------------------------------------------------------
    # Strategy
    # ------------------------------------------------------------------

    def select_strategy(self, reselect: bool = False) -> MigrationStrategy:
        """Strategy for this process; selected once and then fixed.

        Args:
            reselect: Evaluate the decision table again (e.g. after adding
                migration files).

        Raises:
            NoMigrationPathError: Production, no migration files, and sync
                not allowed.
        """
        if self._strategy is not None and not reselect:
            return self._strategy

        file_count = len(self.migration_source.load())
        strategy = select_strategy(
            self.config.environment,
            has_migration_files=migration_files_available(self.config, file_count),
            allow_sync=self.config.allow_sync_in_production,
        )
        if self._strategy is not None and strategy is not self._strategy:
            logger.warning(
                "Migration strategy changed on re-selection: %s -> %s",
                self._strategy.value,
                strategy.value,
            )
        self._strategy = strategy
        logger.info(
            "Migration strategy: %s (environment=%s, migration files=%d)",
            strategy.value,
            self.config.environment.value,
            file_count,
        )
        return strategy

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def check_connection(self) -> None:
        async def _ping() -> None:
            if not await self.client.test_connection():
                raise DatabaseConnectionError("Connectivity check returned no rows")

        await with_retry(_ping, self.retry_policy, description="Database connection check")

    async def _baseline_optimization(self, result: SetupResult) -> None:
        for table in self.registry.tables():
            try:
                optimization = await self.optimizer.optimize(
                    table, OptimizationPolicy.CONSERVATIVE
                )
            except TableNotFoundError:
                continue
            except LifecycleError as e:
                message = f"Baseline optimization of {table} failed: {e}"
                logger.warning(message)
                result.warnings.append(message)
                continue
            result.optimizations.append(optimization)
            if optimization.error:
                result.warnings.append(optimization.error)

        if any(o.ceiling_exceeded for o in result.optimizations):
            logger.warning("Tables over the index ceiling after baseline optimization")
            result.emergency_cleanup = await self.optimizer.emergency_cleanup()
            self.last_cleanup = result.emergency_cleanup

    async def run_startup(self) -> SetupResult:
        """Run the full startup sequence, raising on the first fatal failure.

        Returns:
            The successful ``SetupResult`` (also stored as ``last_setup``).

        Raises:
            DatabaseConnectionError: Database unreachable after retries.
            NoMigrationPathError: Raised before any DDL is attempted.
            MigrationError / SyncError: The strategy failed.
        """
        result = SetupResult()
        self.last_setup = result
        try:
            await self.check_connection()
            result.strategy = self.select_strategy()
            result.change_set = await self.applier.apply(result.strategy)
            await self._baseline_optimization(result)
            if self.config.start_health_monitor:
                await self.monitor.start()
        except LifecycleError as e:
            result.error = str(e)
            change_set = getattr(e, "change_set", None)
            if change_set is not None:
                result.change_set = change_set
            raise
        finally:
            result.finished_at = datetime.now(UTC)

        result.success = True
        logger.info(
            "Database setup complete (%s, %d indexes removed)",
            result.strategy.value,
            sum(o.removed for o in result.optimizations),
        )
        return result

    async def setup_database(self) -> bool:
        """Run the startup sequence; ``False`` on any fatal failure.

        Details of a failure are in ``last_setup``.
        """
        try:
            await self.run_startup()
        except NoMigrationPathError as e:
            logger.error("Database setup aborted, no migration path: %s", e)
            return False
        except LifecycleError as e:
            logger.error("Database setup failed: %s", e)
            return False
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_health(self) -> HealthReport:
        """Fresh health sample.  Never raises."""
        return await self.monitor.sample()

    async def optimize_table_indexes(
        self,
        table: str,
        policy: OptimizationPolicy = OptimizationPolicy.CONSERVATIVE,
    ) -> OptimizationResult:
        return await self.optimizer.optimize(table, policy)

    async def emergency_index_cleanup(self) -> int:
        """Aggressive optimization of every registered table.

        Returns:
            Total indexes removed.  The full summary is in ``last_cleanup``.
        """
        summary = await self.optimizer.emergency_cleanup()
        self.last_cleanup = summary
        return summary.total_removed

    async def _table_info(self, table: str) -> TableInfo:
        model = self.registry.by_table(table)
        info = TableInfo(
            table=table,
            exists=False,
            model=model.name if model else None,
            index_ceiling=self.config.index_ceiling,
        )
        if not await self.introspector.table_exists(table):
            return info

        info.exists = True
        info.columns = list((await self.introspector.get_columns(table)).values())
        constraints = await self.introspector.get_constraints(table)
        for constraint in constraints.values():
            if constraint.constraint_type == "PRIMARY KEY":
                info.primary_key = list(constraint.columns)
            elif constraint.constraint_type == "FOREIGN KEY":
                info.foreign_keys.append(constraint)
        async with self.locks.hold(table):
            info.indexes = list((await self.introspector.get_indexes(table)).values())
            info.index_count = await self.introspector.count_indexes(table)
        return info

    async def get_table_info(
        self, table: str | None = None
    ) -> TableInfo | dict[str, TableInfo]:
        """Read-only metadata snapshot of one table, or of every registered table."""
        if table is not None:
            return await with_retry(
                lambda: self._table_info(table),
                self.retry_policy,
                description=f"Table info for '{table}'",
            )
        infos: dict[str, TableInfo] = {}
        for name in self.registry.tables():
            infos[name] = await with_retry(
                lambda name=name: self._table_info(name),
                self.retry_policy,
                description=f"Table info for '{name}'",
            )
        return infos

    async def fix_seeding_constraints(self, steps: list[SeedStep] | None = None) -> bool:
        """Load seed steps in dependency order with FK enforcement disabled."""
        steps = self.seed_steps if steps is None else steps
        if not steps:
            logger.info("No seed steps to fix")
            return True
        return await self.fixer.fix_seeding_constraints(steps)

    async def seed(self, steps: list[SeedStep]) -> bool:
        """Insert seed rows in the given order.

        A foreign key violation rolls the load back and retries it through
        the constraint fixer before surfacing.

        Raises:
            ConstraintError: The constraint fixer could not load the rows either.
        """
        try:
            async with self.client.connection() as session:
                async with session.transaction():
                    await run_seed_steps(session, steps)
        except ConstraintError as e:
            logger.warning(
                "Seeding hit a constraint violation (%s); retrying through the constraint fixer",
                e,
            )
            if await self.fix_seeding_constraints(steps):
                return True
            raise
        return True

    async def diagnose_models(self) -> list[ModelDiagnosis]:
        """Compare every registered model with its live table."""
        drift = await self.synchronizer.drift()
        missing_tables = set(drift.missing_tables)

        def _columns(diffs, table: str) -> list[str]:
            return [d.column for d in diffs if d.table == table]

        diagnoses = []
        for model in self.registry.all():
            diagnoses.append(
                ModelDiagnosis(
                    name=model.name,
                    table=model.table,
                    exists=model.table not in missing_tables,
                    missing_columns=_columns(drift.missing_columns, model.table),
                    missing_indexes=[
                        d.index for d in drift.missing_indexes if d.table == model.table
                    ],
                    relaxable_not_null=_columns(drift.relaxable_not_null, model.table),
                    type_mismatches=[
                        f"{d.column}: {d.message}"
                        for d in drift.type_mismatches
                        if d.table == model.table
                    ],
                )
            )
        return diagnoses

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop the health monitor and dispose of the connection pool."""
        await self.monitor.stop()
        await self.client.close()

    async def __aenter__(self) -> "DatabaseManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# ============================================================================
# Construction
# ============================================================================


def create_manager(
    config: LifecycleConfig | None,
    descriptors: list[ModelDescriptor],
    client: DatabaseClient,
    migration_source: MigrationSource | None = None,
    seed_steps: list[SeedStep] | None = None,
) -> DatabaseManager:
    """Build a manager from caller-supplied descriptors and client.

    Raises:
        DuplicateModelError / InvalidDescriptorError: Bad descriptors.
    """
    registry = ModelRegistry().register(descriptors)
    return DatabaseManager(
        config or LifecycleConfig(),
        registry,
        client,
        migration_source=migration_source,
        seed_steps=seed_steps,
    )


async def connect_manager(
    profile_name: str | None = None,
    config_path: Path | None = None,
    env_prefix: str = "",
    descriptors: list[ModelDescriptor] | None = None,
) -> DatabaseManager:
    """Build a manager from db.toml and verify the database is reachable.

    Args:
        profile_name: Profile from db.toml.  ``None`` reads
            ``{env_prefix}DB_PROFILE`` (or the only profile defined).
        config_path: Path to db.toml (default: ``./db.toml``).
        env_prefix: Prefix for environment variable lookup.
        descriptors: Models; defaults to ``lifecycle.models_file``.

    Raises:
        ProfileNotFoundError: No profile configured.
        KeyError: Profile not in db.toml.
        DatabaseConnectionError: Database unreachable after retries.
    """
    from db_lifecycle.adapters.postgres import AsyncPostgresAdapter

    db_config = load_db_config(config_path, env_prefix=env_prefix)
    if profile_name is None:
        profile_name = get_active_profile_name(db_config, env_prefix=env_prefix)
    if profile_name not in db_config.profiles:
        available = ", ".join(db_config.profiles.keys())
        raise KeyError(f"Profile '{profile_name}' not found in db.toml. Available: {available}")

    lifecycle = db_config.lifecycle
    if descriptors is None:
        descriptors = load_model_descriptors(lifecycle.models_file)

    client = AsyncPostgresAdapter(
        resolve_url(db_config.profiles[profile_name]),
        timeout=lifecycle.db_timeout_seconds,
    )
    manager = create_manager(lifecycle, descriptors, client)
    try:
        await manager.check_connection()
    except LifecycleError:
        await client.close()
        raise
    logger.info("Connected to profile '%s'", profile_name)
    return manager
