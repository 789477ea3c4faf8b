"""Direct schema synchronization from the model registry.

Computes additive/altering DDL from the declared models and applies it:

- ``CREATE TABLE`` for missing tables, parents before children
- ``ALTER TABLE ... ADD COLUMN`` for missing columns
- ``ALTER TABLE ... ALTER COLUMN ... DROP NOT NULL`` where the model
  declares a column nullable
- ``CREATE [UNIQUE] INDEX IF NOT EXISTS`` for missing declared indexes

Nothing here ever drops a table or column: ``guard_statement()`` refuses any
statement that would, in every environment.  Type mismatches are reported
but never repaired, since that would rewrite data.

Usage:
    from db_lifecycle.schema.sync import SchemaSynchronizer

    synchronizer = SchemaSynchronizer(
        client, registry, introspector,
        production=False,
        on_index_limit=optimizer.emergency_cleanup,
    )
    result = await synchronizer.sync()
    print(result.tables_created, result.columns_added)
"""

import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from db_lifecycle.adapters.base import DatabaseClient
from db_lifecycle.errors import (
    DestructiveOperationError,
    IndexLimitError,
    LifecycleError,
    SchemaError,
    SyncError,
)
from db_lifecycle.retry import RetryPolicy, with_retry
from db_lifecycle.schema.comparator import compare_schema
from db_lifecycle.schema.fix import dependency_order
from db_lifecycle.schema.introspector import SchemaIntrospector
from db_lifecycle.schema.models import ModelDescriptor, SchemaDrift
from db_lifecycle.schema.registry import ModelRegistry

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Destructive statement guard
# ------------------------------------------------------------------

_DESTRUCTIVE_PATTERNS = (
    re.compile(r"\bDROP\s+(?:TABLE|COLUMN|SCHEMA|DATABASE)\b", re.IGNORECASE),
    re.compile(r"\bTRUNCATE\b", re.IGNORECASE),
    # ALTER TABLE t DROP c  (COLUMN keyword is optional)
    re.compile(
        r"\bALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?\S+\s+DROP\s+"
        r"(?!NOT\s+NULL\b|DEFAULT\b|CONSTRAINT\b|IDENTITY\b|EXPRESSION\b)",
        re.IGNORECASE,
    ),
)


def guard_statement(sql: str) -> str:
    """Refuse statements that would drop data-bearing structures.

    Returns:
        ``sql`` unchanged when it is safe.

    Raises:
        DestructiveOperationError: ``sql`` drops a table, column, schema or
            database, or truncates a table.

    Examples:
        >>> guard_statement("ALTER TABLE users ADD COLUMN age INT")
        'ALTER TABLE users ADD COLUMN age INT'
        >>> guard_statement("DROP TABLE users")
        Traceback (most recent call last):
        ...
        db_lifecycle.errors.DestructiveOperationError: Refusing destructive statement: DROP TABLE users
    """
    for pattern in _DESTRUCTIVE_PATTERNS:
        if pattern.search(sql):
            raise DestructiveOperationError(f"Refusing destructive statement: {sql.strip()}")
    return sql


# ------------------------------------------------------------------
# Fix data classes
# ------------------------------------------------------------------


@dataclass
class TableFix:
    """A table to be created.

    Example:
        fix = TableFix(table="users", create_sql="CREATE TABLE IF NOT EXISTS users (...)")
        fix.to_sql()
    """

    table: str
    create_sql: str

    def to_sql(self) -> str:
        """Return the CREATE TABLE statement."""
        return self.create_sql


@dataclass
class ColumnFix:
    """A column to be added via ALTER TABLE.

    Example:
        fix = ColumnFix(table="users", column="email", definition="TEXT NOT NULL")
        fix.to_sql()
        # 'ALTER TABLE users ADD COLUMN IF NOT EXISTS email TEXT'
    """

    table: str
    column: str
    definition: str

    def to_sql(self) -> str:
        """Generate ALTER TABLE ADD COLUMN statement.

        Strips PRIMARY KEY, and NOT NULL unless a DEFAULT is given, since
        existing rows would violate it.
        """
        definition = self.definition

        if " NOT NULL" in definition and "DEFAULT" not in definition:
            definition = definition.replace(" NOT NULL", "")

        # PRIMARY KEY columns can't be added via ALTER
        if "PRIMARY KEY" in definition:
            definition = definition.replace(" PRIMARY KEY", "")

        return f"ALTER TABLE {self.table} ADD COLUMN IF NOT EXISTS {self.column} {definition}"


@dataclass
class NullabilityFix:
    """A NOT NULL constraint the model no longer declares."""

    table: str
    column: str

    def to_sql(self) -> str:
        return f"ALTER TABLE {self.table} ALTER COLUMN {self.column} DROP NOT NULL"


@dataclass
class IndexFix:
    """A declared index to be created."""

    table: str
    name: str
    fields: tuple[str, ...]
    unique: bool = False

    def to_sql(self) -> str:
        unique = "UNIQUE " if self.unique else ""
        return (
            f"CREATE {unique}INDEX IF NOT EXISTS {self.name} "
            f"ON {self.table} ({', '.join(self.fields)})"
        )


@dataclass
class SyncPlan:
    """Ordered DDL repairing the drift between models and database.

    Attributes:
        missing_tables: Tables to create, already in ``create_order``.
        missing_columns: Columns to add.
        nullability: NOT NULL constraints to relax.
        missing_indexes: Declared indexes to create (including those of
            newly created tables).
        create_order: Forward topological order of ``missing_tables``
            (parent tables before child tables).
        notes: Drift that is reported but not repaired.
    """

    missing_tables: list[TableFix] = field(default_factory=list)
    missing_columns: list[ColumnFix] = field(default_factory=list)
    nullability: list[NullabilityFix] = field(default_factory=list)
    missing_indexes: list[IndexFix] = field(default_factory=list)
    create_order: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def has_fixes(self) -> bool:
        """True if there are any fixes to apply."""
        return bool(
            self.missing_tables or self.missing_columns or self.nullability or self.missing_indexes
        )

    @property
    def fix_count(self) -> int:
        """Total number of fixes."""
        return (
            len(self.missing_tables)
            + len(self.missing_columns)
            + len(self.nullability)
            + len(self.missing_indexes)
        )

    def ordered_fixes(self) -> list[TableFix | ColumnFix | NullabilityFix | IndexFix]:
        """Tables first, then columns, relaxed constraints, and indexes."""
        return [
            *self.missing_tables,
            *self.missing_columns,
            *self.nullability,
            *self.missing_indexes,
        ]


class SyncResult(BaseModel):
    """Result of one ``SchemaSynchronizer.sync()`` call.

    Attributes:
        statements: DDL executed successfully, in order.
        skipped: Statements skipped after a schema error (development/test).
        tables_created: Tables created.
        columns_added: Columns added.
        not_null_relaxed: NOT NULL constraints dropped.
        indexes_created: Declared indexes created.
        notes: Drift reported but not repaired (type mismatches, extra tables).
    """

    statements: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    tables_created: list[str] = Field(default_factory=list)
    columns_added: list[str] = Field(default_factory=list)
    not_null_relaxed: list[str] = Field(default_factory=list)
    indexes_created: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


# ------------------------------------------------------------------
# Plan generation
# ------------------------------------------------------------------


def column_definition(descriptor: ModelDescriptor, column: str) -> str:
    """Column definition including an inline REFERENCES clause, if any."""
    spec = descriptor.get_field(column)
    if spec is None:
        raise SchemaError(f"Unknown column definition for {descriptor.table}.{column}")
    definition = spec.column_definition()
    for fk in descriptor.foreign_keys:
        if fk.field == column:
            definition += f" REFERENCES {fk.references_table} ({fk.references_field})"
            if fk.on_delete:
                definition += f" ON DELETE {fk.on_delete}"
    return definition


def create_table_sql(descriptor: ModelDescriptor) -> str:
    """``CREATE TABLE IF NOT EXISTS`` for a declared model.

    Example:
        >>> from db_lifecycle.schema.models import FieldSpec
        >>> create_table_sql(ModelDescriptor(
        ...     name="User", table="users",
        ...     fields=[FieldSpec(name="id", type="SERIAL", primary_key=True)],
        ... ))
        'CREATE TABLE IF NOT EXISTS users (id SERIAL PRIMARY KEY)'
    """
    columns = [f"{f.name} {column_definition(descriptor, f.name)}" for f in descriptor.fields]
    return f"CREATE TABLE IF NOT EXISTS {descriptor.table} ({', '.join(columns)})"


def plan_sync(drift: SchemaDrift, registry: ModelRegistry) -> SyncPlan:
    """Generate the DDL plan for ``drift``.

    Pure logic: no I/O.

    Args:
        drift: Result of ``compare_schema(registry, live)``.
        registry: Declared models (source of column and index definitions).

    Returns:
        ``SyncPlan`` with fixes in safe execution order.
    """
    plan = SyncPlan()

    if drift.missing_tables:
        plan.create_order = dependency_order(registry.dependencies(), drift.missing_tables)
        for table in plan.create_order:
            descriptor = registry.by_table(table)
            plan.missing_tables.append(TableFix(table=table, create_sql=create_table_sql(descriptor)))
            for idx in descriptor.indexes:
                plan.missing_indexes.append(
                    IndexFix(table=table, name=idx.name, fields=idx.fields, unique=idx.unique)
                )

    for diff in drift.missing_columns:
        descriptor = registry.by_table(diff.table)
        plan.missing_columns.append(
            ColumnFix(
                table=diff.table,
                column=diff.column,
                definition=column_definition(descriptor, diff.column),
            )
        )

    for diff in drift.relaxable_not_null:
        plan.nullability.append(NullabilityFix(table=diff.table, column=diff.column))

    for diff in drift.missing_indexes:
        descriptor = registry.by_table(diff.table)
        spec = next(i for i in descriptor.indexes if i.name == diff.index)
        plan.missing_indexes.append(
            IndexFix(table=diff.table, name=spec.name, fields=spec.fields, unique=spec.unique)
        )

    for diff in drift.type_mismatches:
        plan.notes.append(f"Type mismatch on {diff.table}.{diff.column} ({diff.message}), not repaired")
    if drift.extra_tables:
        plan.notes.append(f"Tables without a model: {', '.join(drift.extra_tables)}")

    return plan


# ------------------------------------------------------------------
# Synchronizer
# ------------------------------------------------------------------


class SchemaSynchronizer:
    """Applies ``plan_sync()`` output against the live database.

    Error policy:

    - ``DestructiveOperationError``: always raised; nothing destructive runs.
    - ``SchemaError``: raised as ``SyncError`` in production, logged and
      skipped in development/test.
    - ``IndexLimitError``: ``on_index_limit`` (emergency cleanup) runs once,
      then the statement is retried exactly once before ``SyncError``.
    - Anything else (connection failures after retry, constraint errors):
      raised as ``SyncError``.

    Args:
        client: Shared database client.
        registry: Declared models.
        introspector: Catalog reader.
        production: Whether schema errors are fatal.
        on_index_limit: Async callback invoked on an index-limit error.
        retry_policy: Backoff for transient connection failures.
    """

    def __init__(
        self,
        client: DatabaseClient,
        registry: ModelRegistry,
        introspector: SchemaIntrospector,
        production: bool = False,
        on_index_limit: Callable[[], Awaitable[Any]] | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._client = client
        self._registry = registry
        self._introspector = introspector
        self.production = production
        self._on_index_limit = on_index_limit
        self._retry_policy = retry_policy or RetryPolicy()

    async def drift(self, tables: Iterable[str] | None = None) -> SchemaDrift:
        """Compare the registry (optionally a subset of tables) with the database."""
        wanted = list(tables) if tables is not None else self._registry.tables()
        live = await with_retry(
            lambda: self._introspector.introspect(wanted),
            self._retry_policy,
            description="Schema introspection",
        )
        return compare_schema(self._registry, live, tables=wanted)

    async def plan(self, tables: Iterable[str] | None = None) -> SyncPlan:
        return plan_sync(await self.drift(tables), self._registry)

    async def execute_statement(self, sql: str) -> None:
        """Run one guarded DDL statement with index-limit remediation.

        Raises:
            DestructiveOperationError: The statement would drop data.
            IndexLimitError: Still over the limit after cleanup and one retry.
        """
        guard_statement(sql)

        def _run() -> Awaitable[None]:
            return with_retry(
                lambda: self._client.execute(sql),
                self._retry_policy,
                description="Schema sync statement",
            )

        try:
            await _run()
        except IndexLimitError as e:
            if self._on_index_limit is None:
                raise
            logger.warning("Index limit reached (%s); running emergency index cleanup", e)
            await self._on_index_limit()
            logger.info("Retrying statement after emergency cleanup: %s", sql)
            await _run()

    async def sync(self, tables: Iterable[str] | None = None) -> SyncResult:
        """Bring the database in line with the declared models.

        Args:
            tables: Restrict to these tables (default: every registered table).

        Returns:
            ``SyncResult`` describing what was executed and skipped.

        Raises:
            SyncError: See the class docstring for the error policy.
        """
        plan = await self.plan(tables)
        result = SyncResult(notes=list(plan.notes))
        for note in plan.notes:
            logger.info("Schema drift: %s", note)

        if not plan.has_fixes:
            logger.info("Schema in sync with %d models", len(self._registry))
            return result

        fixes = plan.ordered_fixes()
        # Refuse the whole plan before running any of it
        for fix in fixes:
            guard_statement(fix.to_sql())

        logger.info("Applying %d schema fixes", len(fixes))
        for fix in fixes:
            sql = fix.to_sql()
            try:
                await self.execute_statement(sql)
            except SchemaError as e:
                if self.production:
                    raise SyncError(f"Schema error in production on '{sql}': {e}") from e
                logger.warning("Skipping statement after schema error: %s (%s)", sql, e)
                result.skipped.append(sql)
                continue
            except SyncError:
                raise
            except LifecycleError as e:
                raise SyncError(f"Schema sync failed on '{sql}': {e}") from e

            result.statements.append(sql)
            if isinstance(fix, TableFix):
                result.tables_created.append(fix.table)
            elif isinstance(fix, ColumnFix):
                result.columns_added.append(f"{fix.table}.{fix.column}")
            elif isinstance(fix, NullabilityFix):
                result.not_null_relaxed.append(f"{fix.table}.{fix.column}")
            else:
                result.indexes_created.append(fix.name)

        return result
