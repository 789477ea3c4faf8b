"""Database client protocol definition.

Defines the ``DatabaseClient`` and ``DatabaseSession`` Protocols that every
adapter must implement.  All I/O methods are ``async def``.

The client owns the connection pool -- the one shared mutable resource.
Components never hold a connection across stages: one-shot calls
(``fetch``/``execute``) acquire and release internally, and multi-statement
work uses ``connection()``, which releases on every exit path.

Usage:
    from db_lifecycle.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.fetch("SELECT tablename FROM pg_tables")
        await client.execute("CREATE INDEX idx_name ON users (name)")

        async with client.connection() as session:
            async with session.transaction():
                await session.execute("ALTER TABLE users ADD COLUMN age INT")
                await session.execute("ALTER TABLE users ADD COLUMN bio TEXT")
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class DatabaseSession(Protocol):
    """A single pooled connection checked out for multi-statement work."""

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a query and return rows as dicts."""
        ...

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Run a statement.

        Outside ``transaction()`` the statement is committed immediately.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Open a transaction: commit on success, roll back on error."""
        ...


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    Attributes:
        dialect: Engine name (``"postgresql"``, ``"mysql"``, ...).  Used to
            pick dialect-specific statements such as foreign key toggles.

    Errors raised by implementations must already be mapped onto the
    ``db_lifecycle.errors`` taxonomy (see ``classify_database_error``).
    """

    dialect: str

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a read-only query and return rows as dicts.

        Args:
            sql: SQL text with ``:name`` placeholders.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.  Empty list if no rows.

        Raises:
            DatabaseConnectionError: On connection failure or timeout.
        """
        ...

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute a DDL or other non-query statement in its own transaction.

        Raises:
            DatabaseConnectionError: On connection failure or timeout.
            SchemaError: Malformed or conflicting DDL.
            IndexLimitError: The engine's per-table index ceiling was hit.
            ConstraintError: A constraint was violated.
        """
        ...

    def connection(self) -> AbstractAsyncContextManager[DatabaseSession]:
        """Check out one pooled connection for the duration of the block."""
        ...

    async def test_connection(self) -> bool:
        """Round-trip ``SELECT 1``.

        Raises:
            DatabaseConnectionError: If the database cannot be reached.
        """
        ...

    async def close(self) -> None:
        """Dispose of the connection pool."""
        ...
