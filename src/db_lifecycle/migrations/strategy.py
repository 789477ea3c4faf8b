"""Migration strategy selection.

Every environment-dependent decision about *how* schema changes reach the
database lives in ``select_strategy()``:

| environment       | migration files | allow sync | strategy          |
|-------------------|-----------------|------------|-------------------|
| production        | yes             | any        | MIGRATION_FILES   |
| production        | no              | true       | SCHEMA_SYNC (unsafe, logged) |
| production        | no              | false      | NoMigrationPathError |
| development/test  | yes             | any        | HYBRID            |
| development/test  | no              | any        | SCHEMA_SYNC       |
"""

import logging
from enum import Enum

from db_lifecycle.config.models import Environment, LifecycleConfig
from db_lifecycle.errors import NoMigrationPathError

logger = logging.getLogger(__name__)


class MigrationStrategy(str, Enum):
    """How declared schema changes are applied."""

    MIGRATION_FILES = "migration_files"
    SCHEMA_SYNC = "schema_sync"
    HYBRID = "hybrid"


def select_strategy(
    env: Environment | str,
    has_migration_files: bool,
    allow_sync: bool,
) -> MigrationStrategy:
    """Pick the migration strategy for one process lifetime.

    Deterministic: the same inputs always give the same strategy.

    Args:
        env: Deployment environment.
        has_migration_files: Whether usable migration files exist.
        allow_sync: Whether direct sync is unlocked in production.

    Returns:
        The selected ``MigrationStrategy``.

    Raises:
        NoMigrationPathError: Production, no migration files, sync not allowed.
        ValueError: Unknown environment name.

    Example:
        >>> select_strategy("development", has_migration_files=True, allow_sync=False)
        <MigrationStrategy.HYBRID: 'hybrid'>
    """
    env = Environment(env)

    if env is Environment.PRODUCTION:
        if has_migration_files:
            return MigrationStrategy.MIGRATION_FILES
        if allow_sync:
            logger.warning(
                "Production is using direct schema sync: no migration files are "
                "available and sync is explicitly allowed. This path is unsafe."
            )
            return MigrationStrategy.SCHEMA_SYNC
        raise NoMigrationPathError(
            "Production has no migration files and schema sync is not allowed. "
            "Add migration files or set allow_sync_in_production."
        )

    if has_migration_files:
        return MigrationStrategy.HYBRID
    return MigrationStrategy.SCHEMA_SYNC


def migration_files_available(config: LifecycleConfig, file_count: int) -> bool:
    """Whether migration files should count as present for strategy selection.

    Files only count in production, or elsewhere when
    ``use_migration_files`` is enabled.
    """
    if file_count <= 0:
        return False
    return config.is_production or config.use_migration_files
