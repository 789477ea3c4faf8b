"""Shared fixtures: an in-memory catalog implementing ``DatabaseClient``.

``FakeDatabase`` answers exactly the catalog queries ``SchemaIntrospector``
issues and interprets the DDL the lifecycle generates (CREATE TABLE,
ADD COLUMN, DROP NOT NULL, CREATE/DROP INDEX, INSERT, FK toggles).
Transactions snapshot the catalog and restore it on error.
"""

import asyncio
import copy
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import pytest

from db_lifecycle.config.models import LifecycleConfig
from db_lifecycle.errors import (
    ConstraintError,
    DatabaseConnectionError,
    IndexLimitError,
    SchemaError,
)
from db_lifecycle.schema.introspector import normalize_data_type
from db_lifecycle.schema.models import FieldSpec, ForeignKeySpec, IndexSpec, ModelDescriptor


@dataclass
class FakeIndex:
    name: str
    columns: list[str]
    unique: bool = False
    constraint: bool = False
    primary: bool = False
    method: str = "btree"
    predicate: str | None = None
    expressions: bool = False


@dataclass
class FakeTable:
    name: str
    columns: dict[str, dict[str, Any]] = field(default_factory=dict)
    indexes: dict[str, FakeIndex] = field(default_factory=dict)
    foreign_keys: dict[str, tuple[str, str]] = field(default_factory=dict)
    rows: list[dict[str, Any]] = field(default_factory=list)


def _split_top_level(body: str) -> list[str]:
    parts, depth, current = [], 0, []
    for ch in body:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if "".join(current).strip():
        parts.append("".join(current).strip())
    return parts


_CREATE_TABLE = re.compile(
    r"^\s*CREATE TABLE (?:IF NOT EXISTS )?(\w+)\s*\((.*)\)\s*$", re.IGNORECASE | re.DOTALL
)
_ADD_COLUMN = re.compile(
    r"^\s*ALTER TABLE (\w+) ADD COLUMN (?:IF NOT EXISTS )?(\w+) (.+)$", re.IGNORECASE | re.DOTALL
)
_DROP_NOT_NULL = re.compile(
    r"^\s*ALTER TABLE (\w+) ALTER COLUMN (\w+) DROP NOT NULL\s*$", re.IGNORECASE
)
_CREATE_INDEX = re.compile(
    r"^\s*CREATE (UNIQUE )?INDEX (?:IF NOT EXISTS )?(\w+) ON (\w+) \(([^)]*)\)\s*$",
    re.IGNORECASE,
)
_DROP_INDEX = re.compile(r'^\s*DROP INDEX IF EXISTS "(\w+)"\."(\w+)"\s*$')
_INSERT = re.compile(r"^\s*INSERT INTO (\w+) \(([^)]*)\) VALUES", re.IGNORECASE)
_REFERENCES = re.compile(r"REFERENCES (\w+) \((\w+)\)", re.IGNORECASE)


class FakeSession:
    def __init__(self, db: "FakeDatabase"):
        self._db = db

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        return await self._db._fetch(sql, params or {})

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        await self._db._execute(sql, params or {})

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy(self._db.tables)
        try:
            yield
        except BaseException:
            self._db.tables = snapshot
            self._db.rollbacks += 1
            raise


class FakeDatabase:
    """In-memory PostgreSQL stand-in for lifecycle tests."""

    dialect = "postgresql"

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.executed: list[str] = []
        self.queries: list[str] = []
        self.severed = False
        self.fail_fetches = 0  # transient failures before fetches succeed
        self.max_indexes: int | None = None  # engine ceiling for CREATE INDEX
        self.fail_drops: set[str] = set()
        self.reject: dict[str, Exception] = {}  # statement prefix -> error raised
        self.fk_checks = True
        self.open_connections = 0
        self.max_open_connections = 0
        self.rollbacks = 0
        self.closed = False

    # -- setup helpers -------------------------------------------------

    def add_table(
        self,
        name: str,
        columns: dict[str, str] | None = None,
        primary_key: str | None = "id",
        not_null: tuple[str, ...] = (),
    ) -> FakeTable:
        columns = columns or {"id": "int"}
        table = FakeTable(name=name)
        for col, data_type in columns.items():
            table.columns[col] = {
                "data_type": data_type,
                "is_nullable": col != primary_key and col not in not_null,
                "default": None,
            }
        if primary_key:
            table.indexes[f"{name}_pkey"] = FakeIndex(
                f"{name}_pkey", [primary_key], unique=True, constraint=True, primary=True
            )
        self.tables[name] = table
        return table

    def add_index(
        self,
        table: str,
        name: str,
        columns: list[str],
        unique: bool = False,
        constraint: bool = False,
        method: str = "btree",
        predicate: str | None = None,
        expressions: bool = False,
    ) -> None:
        self.tables[table].indexes[name] = FakeIndex(
            name,
            list(columns),
            unique,
            constraint,
            method=method,
            predicate=predicate,
            expressions=expressions,
        )

    def index_names(self, table: str) -> set[str]:
        return set(self.tables[table].indexes)

    def index_count(self, table: str) -> int:
        return len(self.tables[table].indexes)

    # -- DatabaseClient --------------------------------------------------

    @asynccontextmanager
    async def connection(self):
        if self.severed:
            raise DatabaseConnectionError("connection refused")
        self.open_connections += 1
        self.max_open_connections = max(self.max_open_connections, self.open_connections)
        try:
            yield FakeSession(self)
        finally:
            self.open_connections -= 1

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        async with self.connection() as session:
            return await session.fetch(sql, params)

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        async with self.connection() as session:
            async with session.transaction():
                await session.execute(sql, params)

    async def test_connection(self) -> bool:
        rows = await self.fetch("SELECT 1 AS ok")
        return bool(rows) and rows[0].get("ok") == 1

    async def close(self) -> None:
        self.closed = True

    # -- query interpretation -------------------------------------------

    async def _fetch(self, sql: str, params: dict[str, Any]) -> list[dict]:
        await asyncio.sleep(0)
        if self.severed:
            raise DatabaseConnectionError("server closed the connection unexpectedly")
        if self.fail_fetches > 0:
            self.fail_fetches -= 1
            raise DatabaseConnectionError("connection reset by peer")
        self.queries.append(sql)

        table = self.tables.get(params.get("table", ""))
        if "AS ok" in sql:
            return [{"ok": 1}]
        if "AS present" in sql:
            return [{"present": 1}] if table is not None else []
        if "AS index_count" in sql:
            return [{"index_count": len(table.indexes) if table else 0}]
        if "AS index_name" in sql:
            if table is None:
                return []
            return [
                {
                    "index_name": idx.name,
                    "columns": list(idx.columns),
                    "is_unique": idx.unique,
                    "is_constraint": idx.constraint,
                    "index_type": idx.method,
                    "predicate": idx.predicate,
                    "has_expressions": idx.expressions,
                }
                for idx in sorted(table.indexes.values(), key=lambda i: i.name)
                if not idx.primary
            ]
        if "information_schema.columns" in sql:
            if table is None:
                return []
            return [
                {
                    "column_name": name,
                    "data_type": col["data_type"],
                    "is_nullable": "YES" if col["is_nullable"] else "NO",
                    "column_default": col["default"],
                }
                for name, col in table.columns.items()
            ]
        if "information_schema.table_constraints" in sql:
            return self._constraint_rows(table) if table else []
        if "information_schema.tables" in sql:
            return [{"table_name": name} for name in sorted(self.tables)]
        match = re.search(r"FROM (\w+)", sql)
        if match and match.group(1) in self.tables:
            rows = self.tables[match.group(1)].rows
            return sorted((dict(r) for r in rows), key=lambda r: int(r.get("version", 0)))
        if match:
            raise SchemaError(f'relation "{match.group(1)}" does not exist')
        raise AssertionError(f"FakeDatabase cannot answer query: {sql}")

    def _constraint_rows(self, table: FakeTable) -> list[dict]:
        rows = []
        for idx in table.indexes.values():
            if idx.primary or idx.constraint:
                for col in idx.columns:
                    rows.append(
                        {
                            "constraint_name": idx.name,
                            "constraint_type": "PRIMARY KEY" if idx.primary else "UNIQUE",
                            "column_name": col,
                            "references_table": None,
                            "references_column": None,
                            "delete_rule": None,
                        }
                    )
        for col, (ref_table, ref_col) in table.foreign_keys.items():
            rows.append(
                {
                    "constraint_name": f"{table.name}_{col}_fkey",
                    "constraint_type": "FOREIGN KEY",
                    "column_name": col,
                    "references_table": ref_table,
                    "references_column": ref_col,
                    "delete_rule": "NO ACTION",
                }
            )
        return rows

    async def _execute(self, sql: str, params: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        if self.severed:
            raise DatabaseConnectionError("server closed the connection unexpectedly")
        self.executed.append(sql)
        stripped = sql.strip()

        for prefix, error in self.reject.items():
            if stripped.startswith(prefix):
                raise error

        if stripped.upper().startswith("BOGUS"):
            raise SchemaError(f'syntax error at or near "{stripped.split()[0]}"')

        if stripped == "SET session_replication_role = 'replica'":
            self.fk_checks = False
            return
        if stripped == "SET session_replication_role = 'origin'":
            self.fk_checks = True
            return

        if m := _DROP_INDEX.match(stripped):
            name = m.group(2)
            if name in self.fail_drops:
                raise DatabaseConnectionError(f"lost connection dropping {name}")
            for table in self.tables.values():
                table.indexes.pop(name, None)
            return

        if m := _CREATE_TABLE.match(stripped):
            self._create_table(m.group(1), m.group(2))
            return

        if m := _ADD_COLUMN.match(stripped):
            table = self._table(m.group(1))
            definition = m.group(3)
            table.columns.setdefault(
                m.group(2),
                {
                    "data_type": normalize_data_type(definition.split()[0]),
                    "is_nullable": "NOT NULL" not in definition.upper(),
                    "default": None,
                },
            )
            if ref := _REFERENCES.search(definition):
                table.foreign_keys[m.group(2)] = (ref.group(1), ref.group(2))
            return

        if m := _DROP_NOT_NULL.match(stripped):
            self._table(m.group(1)).columns[m.group(2)]["is_nullable"] = True
            return

        if m := _CREATE_INDEX.match(stripped):
            table = self._table(m.group(3))
            name = m.group(2)
            if name in table.indexes:
                return
            if self.max_indexes is not None and len(table.indexes) >= self.max_indexes:
                raise IndexLimitError(f"Too many keys specified; max {self.max_indexes} keys allowed")
            columns = [c.strip() for c in m.group(4).split(",")]
            table.indexes[name] = FakeIndex(name, columns, unique=bool(m.group(1)))
            return

        if m := _INSERT.match(stripped):
            table = self._table(m.group(1))
            row = dict(params)
            if self.fk_checks:
                for col, (ref_table, ref_col) in table.foreign_keys.items():
                    value = row.get(col)
                    parent = self.tables.get(ref_table)
                    if value is not None and (
                        parent is None or not any(r.get(ref_col) == value for r in parent.rows)
                    ):
                        raise ConstraintError(
                            f'insert or update on table "{table.name}" violates foreign key '
                            f'constraint "{table.name}_{col}_fkey"'
                        )
            table.rows.append(row)
            return

        raise SchemaError(f"FakeDatabase cannot execute: {sql}")

    def _table(self, name: str) -> FakeTable:
        if name not in self.tables:
            raise SchemaError(f'relation "{name}" does not exist')
        return self.tables[name]

    def _create_table(self, name: str, body: str) -> None:
        if name in self.tables:
            return
        table = FakeTable(name=name)
        for part in _split_top_level(body):
            tokens = part.split()
            if tokens[0].upper() in ("PRIMARY", "FOREIGN", "UNIQUE", "CONSTRAINT", "CHECK"):
                continue
            column, definition = tokens[0], part[len(tokens[0]):].strip()
            upper = definition.upper()
            table.columns[column] = {
                "data_type": normalize_data_type(tokens[1]),
                "is_nullable": "NOT NULL" not in upper and "PRIMARY KEY" not in upper,
                "default": None,
            }
            if "PRIMARY KEY" in upper:
                table.indexes[f"{name}_pkey"] = FakeIndex(
                    f"{name}_pkey", [column], unique=True, constraint=True, primary=True
                )
            elif "UNIQUE" in upper:
                table.indexes[f"{name}_{column}_key"] = FakeIndex(
                    f"{name}_{column}_key", [column], unique=True, constraint=True
                )
            if ref := _REFERENCES.search(definition):
                table.foreign_keys[column] = (ref.group(1), ref.group(2))
        self.tables[name] = table


# ------------------------------------------------------------------
# Fixtures and builders
# ------------------------------------------------------------------


def make_model(
    name: str,
    table: str,
    fields: list[str] | None = None,
    indexes: list[tuple[str, tuple[str, ...], bool]] | None = None,
    foreign_keys: list[tuple[str, str]] | None = None,
) -> ModelDescriptor:
    """Descriptor with an ``id`` primary key plus TEXT ``fields``."""
    specs = [FieldSpec(name="id", type="INT", primary_key=True)]
    specs += [FieldSpec(name=f, type="TEXT") for f in (fields or [])]
    specs += [FieldSpec(name=col, type="INT") for col, _ in (foreign_keys or []) if col not in (fields or [])]
    return ModelDescriptor(
        name=name,
        table=table,
        fields=specs,
        indexes=[IndexSpec(name=n, fields=f, unique=u) for n, f, u in (indexes or [])],
        foreign_keys=[
            ForeignKeySpec(field=col, references_table=ref) for col, ref in (foreign_keys or [])
        ],
    )


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def config(tmp_path) -> LifecycleConfig:
    return LifecycleConfig(
        migrations_dir=str(tmp_path / "migrations"),
        retry_base_delay_seconds=0,
        lock_timeout_seconds=1,
        start_health_monitor=False,
    )
