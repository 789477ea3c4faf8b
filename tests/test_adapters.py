"""Tests for the async PostgreSQL adapter.

The engine factory is patched out so no database is needed.
"""

import inspect
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

from db_lifecycle.adapters import AsyncPostgresAdapter
from db_lifecycle.adapters.postgres import (
    _serialize_value,
    create_async_engine_pooled,
    normalize_url,
)


# ============================================================================
# URL normalization
# ============================================================================


class TestNormalizeUrl:
    """normalize_url() rewrites every accepted scheme to asyncpg."""

    def test_postgresql_to_asyncpg(self) -> None:
        assert normalize_url("postgresql://u:p@h:5432/db") == "postgresql+asyncpg://u:p@h:5432/db"

    def test_postgres_alias_to_asyncpg(self) -> None:
        assert normalize_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_asyncpg_url_unchanged(self) -> None:
        url = "postgresql+asyncpg://u:p@h/db"
        assert normalize_url(url) == url

    def test_adapter_passes_normalized_url(self) -> None:
        """The adapter hands the rewritten URL to the engine factory."""
        with patch("db_lifecycle.adapters.postgres.create_async_engine_pooled") as mock_create:
            mock_create.return_value = MagicMock()
            AsyncPostgresAdapter("postgres://u:p@h/db", pool_size=2)
            mock_create.assert_called_once_with("postgresql+asyncpg://u:p@h/db", pool_size=2)


# ============================================================================
# Engine factory
# ============================================================================


class TestCreateAsyncEnginePooled:
    """create_async_engine_pooled() applies pool defaults."""

    def test_defaults(self) -> None:
        with patch("db_lifecycle.adapters.postgres.create_async_engine") as mock_engine:
            create_async_engine_pooled("postgresql+asyncpg://h/db")
        kwargs = mock_engine.call_args.kwargs
        assert kwargs["pool_size"] == 5
        assert kwargs["max_overflow"] == 10
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["pool_timeout"] == 10

    def test_caller_overrides_defaults(self) -> None:
        with patch("db_lifecycle.adapters.postgres.create_async_engine") as mock_engine:
            create_async_engine_pooled("postgresql+asyncpg://h/db", pool_size=1, echo=True)
        kwargs = mock_engine.call_args.kwargs
        assert kwargs["pool_size"] == 1
        assert kwargs["echo"] is True


# ============================================================================
# Row serialization
# ============================================================================


class TestSerializeValue:
    def test_uuid_becomes_string(self) -> None:
        value = UUID("12345678-1234-5678-1234-567812345678")
        assert _serialize_value(value) == "12345678-1234-5678-1234-567812345678"

    def test_datetime_becomes_isoformat(self) -> None:
        assert _serialize_value(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"

    def test_other_values_unchanged(self) -> None:
        assert _serialize_value(42) == 42
        assert _serialize_value(None) is None


# ============================================================================
# Protocol conformance
# ============================================================================


class TestDatabaseClientProtocol:
    """The adapter implements every DatabaseClient member."""

    def test_adapter_has_protocol_members(self) -> None:
        with patch("db_lifecycle.adapters.postgres.create_async_engine_pooled"):
            adapter = AsyncPostgresAdapter("postgresql://h/db")
        for name in ("fetch", "execute", "connection", "test_connection", "close"):
            assert callable(getattr(adapter, name))
        assert adapter.dialect == "postgresql"

    def test_io_methods_are_async(self) -> None:
        for name in ("fetch", "execute", "test_connection", "close"):
            assert inspect.iscoroutinefunction(getattr(AsyncPostgresAdapter, name))

    async def test_close_disposes_engine(self) -> None:
        with patch("db_lifecycle.adapters.postgres.create_async_engine_pooled") as mock_create:
            engine = MagicMock()
            engine.dispose = AsyncMock()
            mock_create.return_value = engine
            adapter = AsyncPostgresAdapter("postgresql://h/db")
            await adapter.close()
        engine.dispose.assert_awaited_once()
