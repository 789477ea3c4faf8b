"""Apply the selected migration strategy and record what changed.

Usage:
    from db_lifecycle.migrations.apply import ChangeApplier

    applier = ChangeApplier(registry, synchronizer, runner)
    change_set = await applier.apply(MigrationStrategy.HYBRID)
    print(change_set.state, change_set.migrations_applied)
"""

import logging
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from db_lifecycle.errors import LifecycleError, MigrationError, SyncError
from db_lifecycle.migrations.runner import MigrationRunner
from db_lifecycle.migrations.source import Migration
from db_lifecycle.migrations.strategy import MigrationStrategy
from db_lifecycle.schema.registry import ModelRegistry
from db_lifecycle.schema.sync import SchemaSynchronizer, SyncResult

logger = logging.getLogger(__name__)


class ChangeSetState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    ChangeSetState.NOT_STARTED: {ChangeSetState.RUNNING},
    ChangeSetState.RUNNING: {ChangeSetState.COMPLETED, ChangeSetState.FAILED},
    ChangeSetState.COMPLETED: set(),
    ChangeSetState.FAILED: set(),
}


class AppliedChangeSet(BaseModel):
    """Everything one ``ChangeApplier.apply()`` invocation changed.

    ``state`` moves ``not_started -> running -> completed | failed``.
    Terminal states are final; applying again needs a new invocation.
    """

    strategy: MigrationStrategy
    state: ChangeSetState = ChangeSetState.NOT_STARTED
    started_at: datetime | None = None
    finished_at: datetime | None = None
    migrations_applied: list[str] = Field(default_factory=list)
    last_applied_version: str | None = None
    statements: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    tables_created: list[str] = Field(default_factory=list)
    columns_added: list[str] = Field(default_factory=list)
    not_null_relaxed: list[str] = Field(default_factory=list)
    indexes_created: list[str] = Field(default_factory=list)
    synced_tables: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, state: ChangeSetState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid change set transition {self.state.value} -> {state.value}"
            )
        self.state = state
        if state is ChangeSetState.RUNNING:
            self.started_at = datetime.now(UTC)
        elif self.is_terminal:
            self.finished_at = datetime.now(UTC)

    def record_migration(self, migration: Migration) -> None:
        self.migrations_applied.append(migration.label)
        self.last_applied_version = migration.version

    def record_sync(self, result: SyncResult, tables: list[str]) -> None:
        self.synced_tables.extend(tables)
        self.statements.extend(result.statements)
        self.skipped.extend(result.skipped)
        self.tables_created.extend(result.tables_created)
        self.columns_added.extend(result.columns_added)
        self.not_null_relaxed.extend(result.not_null_relaxed)
        self.indexes_created.extend(result.indexes_created)
        self.notes.extend(result.notes)


class ChangeApplier:
    """Executes a ``MigrationStrategy`` against the live database.

    - ``MIGRATION_FILES``: pending migrations in ascending version order.
    - ``SCHEMA_SYNC``: direct sync of every registered model.
    - ``HYBRID``: migrations first, then sync of models whose tables no
      applied migration created or altered.

    Args:
        registry: Declared models.
        synchronizer: Direct schema sync.
        runner: Migration runner; required for file-based strategies.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        synchronizer: SchemaSynchronizer,
        runner: MigrationRunner | None = None,
    ):
        self._registry = registry
        self._synchronizer = synchronizer
        self._runner = runner

    async def apply(self, strategy: MigrationStrategy) -> AppliedChangeSet:
        """Run ``strategy`` once.

        Returns:
            The completed ``AppliedChangeSet``.

        Raises:
            MigrationError: A migration failed (``change_set`` attached).
            SyncError: Schema sync failed (``change_set`` attached).
        """
        change_set = AppliedChangeSet(strategy=strategy)
        change_set.transition(ChangeSetState.RUNNING)
        logger.info("Applying schema changes with strategy %s", strategy.value)

        uses_files = strategy in (MigrationStrategy.MIGRATION_FILES, MigrationStrategy.HYBRID)
        phase = "migration" if uses_files else "sync"
        try:
            if uses_files:
                if self._runner is None:
                    raise MigrationError(
                        f"Strategy {strategy.value} requires a migration source"
                    )
                await self._runner.run(on_applied=change_set.record_migration)

            phase = "sync"
            if strategy is MigrationStrategy.SCHEMA_SYNC:
                tables = self._registry.tables()
                change_set.record_sync(await self._synchronizer.sync(tables), tables)
            elif strategy is MigrationStrategy.HYBRID:
                covered = await self._runner.covered_tables()
                tables = [t for t in self._registry.tables() if t not in covered]
                if tables:
                    logger.info(
                        "Syncing %d models not covered by migrations: %s",
                        len(tables),
                        ", ".join(tables),
                    )
                    change_set.record_sync(await self._synchronizer.sync(tables), tables)
        except LifecycleError as e:
            change_set.error = str(e)
            change_set.transition(ChangeSetState.FAILED)
            logger.error("Schema change (%s) failed: %s", strategy.value, e)
            if isinstance(e, (MigrationError, SyncError)):
                e.change_set = change_set
                raise
            if phase == "migration":
                raise MigrationError(
                    str(e),
                    last_applied_version=change_set.last_applied_version,
                    change_set=change_set,
                ) from e
            raise SyncError(str(e), change_set=change_set) from e

        change_set.transition(ChangeSetState.COMPLETED)
        logger.info(
            "Schema changes complete: %d migrations, %d statements, %d skipped",
            len(change_set.migrations_applied),
            len(change_set.statements),
            len(change_set.skipped),
        )
        return change_set
