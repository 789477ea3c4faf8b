"""Database adapters package.

Provides the ``DatabaseClient`` / ``DatabaseSession`` Protocols and the
async PostgreSQL implementation.

Usage:
    from db_lifecycle.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_lifecycle.adapters.base import DatabaseClient, DatabaseSession
from db_lifecycle.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "DatabaseSession",
    "AsyncPostgresAdapter",
]
