"""Migration runner: applies pending migrations in ascending version order.

Applied versions are recorded in a history table (``schema_migrations``).
Each migration runs in its own transaction together with its history row,
so a migration is either fully applied and recorded, or not at all.

Usage:
    from db_lifecycle.migrations.runner import MigrationRunner
    from db_lifecycle.migrations.source import SqlDirectorySource

    runner = MigrationRunner(client, SqlDirectorySource("migrations"))
    applied = await runner.run()
"""

import logging
from collections.abc import Callable

from db_lifecycle.adapters.base import DatabaseClient
from db_lifecycle.errors import LifecycleError, MigrationError
from db_lifecycle.migrations.source import Migration, MigrationSource
from db_lifecycle.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

HISTORY_TABLE = "schema_migrations"


def _latest_version(history: dict[str, list[str]]) -> str | None:
    if not history:
        return None
    return max(history, key=lambda v: (int(v), v) if v.isdigit() else (-1, v))


class MigrationRunner:
    """Runs pending migrations from a ``MigrationSource``.

    A failure halts the sequence immediately: later migrations are never
    attempted, even if they look independent.

    Args:
        client: Shared database client.
        source: Supplies the known migrations.
        history_table: Name of the table recording applied versions.
        retry_policy: Backoff for transient connection failures.  Retrying
            a migration is safe because its transaction rolled back.
    """

    def __init__(
        self,
        client: DatabaseClient,
        source: MigrationSource,
        history_table: str = HISTORY_TABLE,
        retry_policy: RetryPolicy | None = None,
    ):
        self._client = client
        self._source = source
        self.history_table = history_table
        self._retry_policy = retry_policy or RetryPolicy()

    async def ensure_history_table(self) -> None:
        await self._client.execute(
            f"CREATE TABLE IF NOT EXISTS {self.history_table} ("
            "version VARCHAR(64) PRIMARY KEY, "
            "name TEXT NOT NULL, "
            "tables TEXT NOT NULL DEFAULT '', "
            "applied_at TIMESTAMPTZ NOT NULL DEFAULT now())"
        )

    async def applied_versions(self) -> dict[str, list[str]]:
        """Map of applied version to the tables it touched."""
        rows = await self._client.fetch(
            f"SELECT version, tables FROM {self.history_table} ORDER BY version"
        )
        return {
            str(r["version"]): [t for t in (r["tables"] or "").split(",") if t]
            for r in rows
        }

    async def pending(self) -> list[Migration]:
        """Known migrations not yet recorded, in ascending version order."""
        return self._pending_from(await self.applied_versions())

    def _pending_from(self, applied: dict[str, list[str]]) -> list[Migration]:
        migrations = sorted(self._source.load(), key=lambda m: m.sort_key)
        return [m for m in migrations if m.version not in applied]

    async def covered_tables(self) -> set[str]:
        """Tables created or altered by any applied migration."""
        covered: set[str] = set()
        for tables in (await self.applied_versions()).values():
            covered.update(tables)
        return covered

    async def _apply_one(self, migration: Migration) -> None:
        async with self._client.connection() as session:
            async with session.transaction():
                for statement in migration.statements:
                    await session.execute(statement)
                await session.execute(
                    f"INSERT INTO {self.history_table} (version, name, tables) "
                    "VALUES (:version, :name, :tables)",
                    {
                        "version": migration.version,
                        "name": migration.name,
                        "tables": ",".join(migration.tables),
                    },
                )

    async def run(
        self,
        on_applied: Callable[[Migration], None] | None = None,
    ) -> list[Migration]:
        """Apply every pending migration.

        Args:
            on_applied: Called after each migration commits.

        Returns:
            Migrations applied by this call, in order.

        Raises:
            MigrationError: A migration failed.  ``last_applied_version`` is
                the highest committed version, from this call or
                earlier runs (``None`` if history is empty).
        """
        await with_retry(
            self.ensure_history_table,
            self._retry_policy,
            description="[MIGRATION] history table setup",
        )
        history = await with_retry(
            self.applied_versions,
            self._retry_policy,
            description="[MIGRATION] pending lookup",
        )
        pending = self._pending_from(history)
        if not pending:
            logger.info("[MIGRATION] No pending migrations")
            return []

        logger.info("[MIGRATION] %d pending migration(s)", len(pending))
        applied: list[Migration] = []
        for migration in pending:
            logger.info("[MIGRATION] Applying %s", migration.label)
            try:
                await with_retry(
                    lambda migration=migration: self._apply_one(migration),
                    self._retry_policy,
                    description=f"[MIGRATION] {migration.label}",
                )
            except LifecycleError as e:
                last = applied[-1].version if applied else _latest_version(history)
                logger.error(
                    "[MIGRATION] %s failed, halting (last applied: %s): %s",
                    migration.label,
                    last or "none",
                    e,
                )
                raise MigrationError(
                    f"Migration {migration.label} failed: {e}",
                    last_applied_version=last,
                ) from e
            applied.append(migration)
            if on_applied is not None:
                on_applied(migration)
            logger.info("[MIGRATION] Applied %s", migration.label)

        return applied
