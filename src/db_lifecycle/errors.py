"""Error taxonomy for the schema/index lifecycle core.

Every database-facing component raises one of these exceptions.  Driver and
SQLAlchemy exceptions are mapped onto the taxonomy by
``classify_database_error()`` so callers never need to know which driver is
underneath.

Usage:
    from db_lifecycle.errors import IndexLimitError, classify_database_error

    try:
        await client.execute(sql)
    except IndexLimitError:
        await optimizer.emergency_cleanup()
"""

from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    """Base class for all db-lifecycle errors."""


class DatabaseConnectionError(LifecycleError):
    """Connection failed, dropped, or a database call timed out.

    Transient: retried with bounded exponential backoff by ``with_retry()``.
    """


class LockTimeoutError(LifecycleError):
    """A per-table lock could not be acquired in time."""

    def __init__(self, table: str, timeout: float):
        super().__init__(
            f"Timed out after {timeout:.1f}s waiting for lock on table '{table}'"
        )
        self.table = table
        self.timeout = timeout


class TableNotFoundError(LifecycleError):
    """The requested table does not exist in the live database."""

    def __init__(self, table: str):
        super().__init__(f"Table '{table}' not found")
        self.table = table


class DuplicateModelError(LifecycleError):
    """Two model descriptors share the same name."""


class InvalidDescriptorError(LifecycleError):
    """A model descriptor is malformed."""


class ModelNotFoundError(LifecycleError, KeyError):
    """No model is registered under the requested name."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class SchemaError(LifecycleError):
    """Malformed or conflicting DDL."""


class IndexLimitError(LifecycleError):
    """The engine refused DDL because a table hit its index ceiling."""


class ConstraintError(LifecycleError):
    """A foreign key (or other integrity) constraint was violated."""


class NoMigrationPathError(LifecycleError):
    """Production has no migration files and schema sync is not allowed."""


class MigrationError(LifecycleError):
    """A migration file failed; the sequence halted at that point.

    Attributes:
        last_applied_version: Version of the last migration that committed
            successfully, or ``None`` if none did in this run.
        change_set: The partial ``AppliedChangeSet`` at the time of failure.
    """

    def __init__(
        self,
        message: str,
        last_applied_version: str | None = None,
        change_set: Any = None,
    ):
        super().__init__(message)
        self.last_applied_version = last_applied_version
        self.change_set = change_set


class SyncError(LifecycleError):
    """Direct schema synchronization failed."""

    def __init__(self, message: str, change_set: Any = None):
        super().__init__(message)
        self.change_set = change_set


class DestructiveOperationError(SyncError):
    """Refused a statement that would drop data-bearing structures."""


# ------------------------------------------------------------------
# Driver error classification
# ------------------------------------------------------------------

# SQLSTATE class 08 = connection exception, 57P01-57P03 = admin shutdown etc.
_CONNECTION_SQLSTATE_PREFIXES = ("08", "57P")
_FOREIGN_KEY_SQLSTATE = "23503"
# 54000 program_limit_exceeded, 54011 too_many_columns
_LIMIT_SQLSTATE_PREFIX = "54"
# 42xxx syntax error or access rule violation
_SCHEMA_SQLSTATE_PREFIX = "42"

# MySQL error codes (the motivating engine for the index ceiling)
_MYSQL_TOO_MANY_KEYS = 1069
_MYSQL_FK_CODES = {1451, 1452, 1216, 1217}
_MYSQL_CONNECTION_CODES = {2002, 2003, 2006, 2013}


def _sqlstate(exc: BaseException) -> str | None:
    for candidate in (exc, getattr(exc, "orig", None), getattr(exc, "__cause__", None)):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str) and value:
                return value
    return None


def _mysql_code(exc: BaseException) -> int | None:
    orig = getattr(exc, "orig", exc)
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def classify_database_error(exc: BaseException) -> LifecycleError:
    """Map a driver or SQLAlchemy exception onto the lifecycle taxonomy.

    Already-classified errors are returned unchanged.  Unknown errors become
    a plain ``SchemaError`` carrying the original message, since every
    statement the core issues is either a catalog read or DDL.

    Args:
        exc: The exception raised by the driver / SQLAlchemy.

    Returns:
        A ``LifecycleError`` instance (not raised).

    Example:
        >>> err = classify_database_error(TimeoutError("pool timeout"))
        >>> type(err).__name__
        'DatabaseConnectionError'
    """
    if isinstance(exc, LifecycleError):
        return exc

    message = str(exc).strip() or type(exc).__name__
    lowered = message.lower()

    if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
        return DatabaseConnectionError(message)

    state = _sqlstate(exc)
    code = _mysql_code(exc)

    if code == _MYSQL_TOO_MANY_KEYS or "too many keys" in lowered:
        return IndexLimitError(message)
    if state is not None:
        if state.startswith(_CONNECTION_SQLSTATE_PREFIXES):
            return DatabaseConnectionError(message)
        if state == _FOREIGN_KEY_SQLSTATE:
            return ConstraintError(message)
        if state.startswith(_LIMIT_SQLSTATE_PREFIX):
            return IndexLimitError(message)
        if state.startswith(_SCHEMA_SQLSTATE_PREFIX):
            return SchemaError(message)
    if code in _MYSQL_FK_CODES or "foreign key constraint" in lowered:
        return ConstraintError(message)
    if code in _MYSQL_CONNECTION_CODES:
        return DatabaseConnectionError(message)

    # SQLAlchemy wraps connectivity problems in these classes
    type_names = {cls.__name__ for cls in type(exc).__mro__}
    if type_names & {"OperationalError", "InterfaceError", "DisconnectionError"}:
        return DatabaseConnectionError(message)
    if "ForeignKeyViolationError" in type_names or "IntegrityError" in type_names:
        return ConstraintError(message)

    return SchemaError(message)
