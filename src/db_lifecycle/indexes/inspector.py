"""Index inspector: live index signatures per table.

Usage:
    from db_lifecycle.indexes.inspector import IndexInspector

    inspector = IndexInspector(client, introspector)
    signatures = await inspector.inspect("users")
"""

import logging

from db_lifecycle.adapters.base import DatabaseClient
from db_lifecycle.errors import TableNotFoundError
from db_lifecycle.indexes.locks import TableLocks
from db_lifecycle.indexes.models import IndexSignature
from db_lifecycle.retry import RetryPolicy, with_retry
from db_lifecycle.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class IndexInspector:
    """Reads and drops secondary indexes, one table at a time.

    ``inspect()`` takes the per-table lock, so it never observes a table
    while an optimization pass is dropping indexes from it.  The optimizer
    holds the same lock and calls ``read_indexes()`` / ``drop_index()``
    directly.

    Args:
        client: Shared database client (used for DROP INDEX).
        introspector: Catalog reader.
        locks: Per-table locks shared with the optimizer.
        retry_policy: Backoff for transient connection failures on reads.
    """

    def __init__(
        self,
        client: DatabaseClient,
        introspector: SchemaIntrospector,
        locks: TableLocks | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._client = client
        self._introspector = introspector
        self.locks = locks or TableLocks()
        self._retry_policy = retry_policy or RetryPolicy()

    async def inspect(self, table: str) -> frozenset[IndexSignature]:
        """Return the signatures of every secondary index on ``table``.

        Returns an empty set for a table with no secondary indexes.

        Raises:
            TableNotFoundError: The table does not exist.
            DatabaseConnectionError: After retries are exhausted.
            LockTimeoutError: An optimization of the same table held the
                lock for too long.
        """
        async with self.locks.hold(table):
            return await self.read_indexes(table)

    async def read_indexes(self, table: str) -> frozenset[IndexSignature]:
        """Like ``inspect()`` but without locking; caller holds the lock."""

        async def _read() -> frozenset[IndexSignature]:
            if not await self._introspector.table_exists(table):
                raise TableNotFoundError(table)
            indexes = await self._introspector.get_indexes(table)
            return frozenset(
                IndexSignature.from_schema(table, idx) for idx in indexes.values()
            )

        return await with_retry(
            _read, self._retry_policy, description=f"Index inspection of '{table}'"
        )

    async def index_count(self, table: str) -> int:
        """Total indexes on ``table``, primary key included."""
        return await with_retry(
            lambda: self._introspector.count_indexes(table),
            self._retry_policy,
            description=f"Index count of '{table}'",
        )

    async def drop_index(self, table: str, name: str) -> None:
        """Drop one index.  Idempotent (``IF EXISTS``)."""
        schema = self._introspector.schema_name
        await self._client.execute(
            f"DROP INDEX IF EXISTS {_quote_ident(schema)}.{_quote_ident(name)}"
        )
        logger.info("Removed index %s from %s", name, table)
