"""PostgreSQL schema introspection via information_schema and pg_catalog.

This module queries the live database to extract schema information:
- Tables, columns, data types, nullability, defaults
- Constraints (primary key, foreign key, unique, check)
- Secondary indexes (name, columns, uniqueness, constraint backing, type)
- Total index counts per table (for the index ceiling)

All queries are read-only and go through the shared ``DatabaseClient`` so
introspection uses the same pool as everything else.
"""

from db_lifecycle.adapters.base import DatabaseClient
from db_lifecycle.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    DatabaseSchema,
    IndexSchema,
    TableSchema,
)

_TYPE_MAP = {
    "character varying": "varchar",
    "character": "char",
    "timestamp with time zone": "timestamptz",
    "timestamp without time zone": "timestamp",
    "integer": "int",
    "int4": "int",
    "int8": "bigint",
    "boolean": "bool",
    "double precision": "float8",
    "serial": "int",
    "bigserial": "bigint",
}


def normalize_data_type(data_type: str) -> str:
    """Normalize PostgreSQL data type names.

    Maps verbose information_schema types (and declared types with length
    or precision) to standard names.

    Example:
        >>> normalize_data_type("character varying")
        'varchar'
        >>> normalize_data_type("VARCHAR(255)")
        'varchar'
    """
    base = data_type.lower().split("(")[0].strip()
    return _TYPE_MAP.get(base, base)


class SchemaIntrospector:
    """Introspects PostgreSQL database schema.

    Uses information_schema and pg_catalog for schema extraction.  Works with
    any PostgreSQL database (RDS, managed, local).

    Args:
        client: Shared database client.
        schema_name: PostgreSQL schema to introspect (default: public).
        excluded_tables: Tables to skip (system/bookkeeping tables).
            Defaults to ``DEFAULT_EXCLUDED_TABLES``.

    Usage:
        introspector = SchemaIntrospector(client)
        schema = await introspector.introspect(["users", "orders"])
        indexes = await introspector.get_indexes("users")
    """

    DEFAULT_EXCLUDED_TABLES = frozenset(
        {
            "schema_migrations",
            "pg_stat_statements",
            "spatial_ref_sys",
        }
    )

    def __init__(
        self,
        client: DatabaseClient,
        schema_name: str = "public",
        excluded_tables: set[str] | frozenset[str] | None = None,
    ):
        self._client = client
        self.schema_name = schema_name
        self.excluded_tables = frozenset(
            self.DEFAULT_EXCLUDED_TABLES if excluded_tables is None else excluded_tables
        )

    async def introspect(self, tables: list[str] | None = None) -> DatabaseSchema:
        """Introspect tables, columns, constraints, and indexes.

        Args:
            tables: Restrict to these tables.  Tables that do not exist are
                silently absent from the result.  ``None`` means every
                non-excluded table in the schema.

        Returns:
            DatabaseSchema with one TableSchema per existing table.
        """
        live_tables = await self.get_tables()
        if tables is not None:
            wanted = set(tables)
            live_tables = [t for t in live_tables if t in wanted]

        db_schema = DatabaseSchema()
        for table_name in live_tables:
            db_schema.tables[table_name] = TableSchema(
                name=table_name,
                columns=await self.get_columns(table_name),
                constraints=await self.get_constraints(table_name),
                indexes=await self.get_indexes(table_name),
            )
        return db_schema

    async def get_tables(self) -> list[str]:
        """Get all base table names in schema (minus excluded tables)."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = :schema
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        rows = await self._client.fetch(query, {"schema": self.schema_name})
        return [r["table_name"] for r in rows if r["table_name"] not in self.excluded_tables]

    async def table_exists(self, table_name: str) -> bool:
        query = """
            SELECT 1 AS present
            FROM information_schema.tables
            WHERE table_schema = :schema
              AND table_name = :table
              AND table_type = 'BASE TABLE'
        """
        rows = await self._client.fetch(
            query, {"schema": self.schema_name, "table": table_name}
        )
        return bool(rows)

    async def get_columns(self, table_name: str) -> dict[str, ColumnSchema]:
        """Get columns for a table in ordinal order."""
        query = """
            SELECT
                column_name,
                data_type,
                is_nullable,
                column_default
            FROM information_schema.columns
            WHERE table_schema = :schema
              AND table_name = :table
            ORDER BY ordinal_position
        """
        rows = await self._client.fetch(
            query, {"schema": self.schema_name, "table": table_name}
        )
        columns = {}
        for row in rows:
            columns[row["column_name"]] = ColumnSchema(
                name=row["column_name"],
                data_type=normalize_data_type(row["data_type"]),
                is_nullable=(row["is_nullable"] == "YES"),
                default=row["column_default"],
            )
        return columns

    async def get_constraints(self, table_name: str) -> dict[str, ConstraintSchema]:
        """Get constraints for a table."""
        query = """
            SELECT
                tc.constraint_name,
                tc.constraint_type,
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column,
                rc.delete_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            LEFT JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.constraint_type = 'FOREIGN KEY'
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
            WHERE tc.table_schema = :schema
              AND tc.table_name = :table
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        rows = await self._client.fetch(
            query, {"schema": self.schema_name, "table": table_name}
        )

        constraints: dict[str, ConstraintSchema] = {}
        for row in rows:
            name = row["constraint_name"]
            ctype = row["constraint_type"]
            if name not in constraints:
                ref_col = row["references_column"]
                constraints[name] = ConstraintSchema(
                    name=name,
                    constraint_type=ctype,
                    columns=[],
                    references_table=row["references_table"] if ctype == "FOREIGN KEY" else None,
                    references_columns=[ref_col] if ref_col else None,
                    on_delete=row["delete_rule"],
                )
            col_name = row["column_name"]
            if col_name not in constraints[name].columns:
                constraints[name].columns.append(col_name)

        return constraints

    async def get_indexes(self, table_name: str) -> dict[str, IndexSchema]:
        """Get secondary indexes for a table (excluding the primary key).

        Only key columns are listed (``INCLUDE`` columns are not part of the
        signature).  Expression keys appear as their definition text, e.g.
        ``lower(email)``.  Partial indexes carry their ``WHERE`` predicate.
        """
        query = """
            SELECT
                i.relname AS index_name,
                ARRAY(
                    SELECT pg_get_indexdef(ix.indexrelid, k.n, true)
                    FROM generate_series(1, ix.indnkeyatts::int) AS k(n)
                    ORDER BY k.n
                ) AS columns,
                ix.indisunique AS is_unique,
                EXISTS (
                    SELECT 1 FROM pg_constraint c
                    WHERE c.conindid = ix.indexrelid
                      AND c.contype IN ('p', 'u', 'x')
                ) AS is_constraint,
                am.amname AS index_type,
                pg_get_expr(ix.indpred, ix.indrelid, true) AS predicate,
                ix.indexprs IS NOT NULL AS has_expressions
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_am am ON am.oid = i.relam
            WHERE n.nspname = :schema
              AND t.relname = :table
              AND NOT ix.indisprimary
            ORDER BY i.relname
        """
        rows = await self._client.fetch(
            query, {"schema": self.schema_name, "table": table_name}
        )
        indexes = {}
        for row in rows:
            indexes[row["index_name"]] = IndexSchema(
                name=row["index_name"],
                columns=list(row["columns"]),
                is_unique=row["is_unique"],
                is_constraint=row["is_constraint"],
                index_type=row["index_type"],
                predicate=row["predicate"],
                has_expressions=row["has_expressions"],
            )
        return indexes

    async def count_indexes(self, table_name: str) -> int:
        """Count every index on a table, primary key included."""
        query = """
            SELECT count(*) AS index_count
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            WHERE n.nspname = :schema
              AND t.relname = :table
        """
        rows = await self._client.fetch(
            query, {"schema": self.schema_name, "table": table_name}
        )
        return int(rows[0]["index_count"]) if rows else 0
