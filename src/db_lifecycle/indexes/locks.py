"""Per-table advisory locks.

Index inspection and index removal on the same table are mutually
exclusive.  Different tables never contend.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from db_lifecycle.errors import LockTimeoutError


class TableLocks:
    """Lazily-created ``asyncio.Lock`` per table name.

    Args:
        timeout: Seconds to wait for a lock before raising
            ``LockTimeoutError``.

    Example:
        locks = TableLocks(timeout=30)
        async with locks.hold("users"):
            ...
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, table: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is race-free on one loop
        lock = self._locks.get(table)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[table] = lock
        return lock

    def locked(self, table: str) -> bool:
        lock = self._locks.get(table)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, table: str) -> AsyncIterator[None]:
        """Hold the lock for ``table`` for the duration of the block.

        Raises:
            LockTimeoutError: The lock was not acquired within ``timeout``.
        """
        lock = self._lock_for(table)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except TimeoutError:
            raise LockTimeoutError(table, self.timeout) from None
        try:
            yield
        finally:
            lock.release()
