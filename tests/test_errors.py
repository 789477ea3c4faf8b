"""Tests for driver error classification and bounded retry."""

import pytest

from db_lifecycle.errors import (
    ConstraintError,
    DatabaseConnectionError,
    IndexLimitError,
    LockTimeoutError,
    MigrationError,
    ModelNotFoundError,
    SchemaError,
    classify_database_error,
)
from db_lifecycle.retry import RetryPolicy, with_retry


class DriverError(Exception):
    """Stand-in for an asyncpg/psycopg error carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


class WrappedError(Exception):
    """Stand-in for a SQLAlchemy DBAPIError wrapping a driver error."""

    def __init__(self, message: str, orig: Exception):
        super().__init__(message)
        self.orig = orig


class OperationalError(Exception):
    pass


# ============================================================================
# classify_database_error
# ============================================================================


class TestClassifyDatabaseError:
    """classify_database_error() maps driver errors onto the taxonomy."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (TimeoutError("pool timeout"), DatabaseConnectionError),
            (ConnectionRefusedError("refused"), DatabaseConnectionError),
            (DriverError("server closed the connection", "08006"), DatabaseConnectionError),
            (DriverError("terminating connection", "57P01"), DatabaseConnectionError),
            (DriverError("violates foreign key constraint", "23503"), ConstraintError),
            (DriverError("relation already exists", "42P07"), SchemaError),
            (DriverError("program limit exceeded", "54000"), IndexLimitError),
            (Exception("Too many keys specified; max 64 keys allowed"), IndexLimitError),
            (Exception(1069, "Too many keys"), IndexLimitError),
            (Exception(1452, "Cannot add or update a child row"), ConstraintError),
            (Exception(2013, "Lost connection to MySQL server"), DatabaseConnectionError),
            (OperationalError("could not connect"), DatabaseConnectionError),
            (Exception("something odd"), SchemaError),
        ],
    )
    def test_mapping(self, exc, expected) -> None:
        assert type(classify_database_error(exc)) is expected

    def test_wrapped_driver_error(self) -> None:
        """The SQLSTATE is read from the wrapped ``orig`` exception."""
        exc = WrappedError("(asyncpg) fk violation", DriverError("fk", "23503"))
        assert isinstance(classify_database_error(exc), ConstraintError)

    def test_already_classified_passthrough(self) -> None:
        original = SchemaError("bad DDL")
        assert classify_database_error(original) is original

    def test_message_preserved(self) -> None:
        err = classify_database_error(DriverError("relation \"users\" exists", "42P07"))
        assert str(err) == 'relation "users" exists'

    def test_empty_message_uses_type_name(self) -> None:
        assert str(classify_database_error(TimeoutError())) == "TimeoutError"


class TestErrorAttributes:
    def test_lock_timeout_carries_table(self) -> None:
        err = LockTimeoutError("users", 2.5)
        assert err.table == "users"
        assert "2.5s" in str(err)

    def test_migration_error_defaults(self) -> None:
        err = MigrationError("failed")
        assert err.last_applied_version is None
        assert err.change_set is None

    def test_model_not_found_is_key_error(self) -> None:
        """Catchable as KeyError without KeyError's quoting in the message."""
        err = ModelNotFoundError("No model named 'Ghost'")
        assert isinstance(err, KeyError)
        assert str(err) == "No model named 'Ghost'"


# ============================================================================
# with_retry
# ============================================================================


class Flaky:
    """Fails ``failures`` times with ``error`` before returning ``result``."""

    def __init__(self, failures: int, error: Exception, result: str = "ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class TestRetryPolicy:
    def test_delay_doubles_and_caps(self) -> None:
        policy = RetryPolicy(attempts=5, base_delay=0.5, max_delay=2.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 2.0]


class TestWithRetry:
    """Only DatabaseConnectionError is retried, and only up to the bound."""

    async def test_recovers_from_transient_failures(self) -> None:
        op = Flaky(2, DatabaseConnectionError("dropped"))
        assert await with_retry(op, RetryPolicy(attempts=3, base_delay=0)) == "ok"
        assert op.calls == 3

    async def test_gives_up_after_bound(self) -> None:
        op = Flaky(10, DatabaseConnectionError("down"))
        with pytest.raises(DatabaseConnectionError):
            await with_retry(op, RetryPolicy(attempts=3, base_delay=0))
        assert op.calls == 3

    async def test_other_errors_not_retried(self) -> None:
        op = Flaky(1, SchemaError("bad DDL"))
        with pytest.raises(SchemaError):
            await with_retry(op, RetryPolicy(attempts=5, base_delay=0))
        assert op.calls == 1

    async def test_zero_attempts_still_tries_once(self) -> None:
        op = Flaky(0, DatabaseConnectionError("unused"))
        assert await with_retry(op, RetryPolicy(attempts=0, base_delay=0)) == "ok"
        assert op.calls == 1

    async def test_retries_are_logged(self, caplog) -> None:
        op = Flaky(1, DatabaseConnectionError("blip"))
        with caplog.at_level("WARNING", logger="db_lifecycle.retry"):
            await with_retry(op, RetryPolicy(attempts=2, base_delay=0), description="ping")
        assert "ping failed (attempt 1/2)" in caplog.text
