"""Migration strategy selection, migration files, and change application.

Usage:
    from db_lifecycle.migrations import select_strategy, ChangeApplier
    from db_lifecycle.migrations import MigrationRunner, SqlDirectorySource
"""

from db_lifecycle.migrations.apply import AppliedChangeSet, ChangeApplier, ChangeSetState
from db_lifecycle.migrations.runner import MigrationRunner
from db_lifecycle.migrations.source import (
    Migration,
    MigrationSource,
    SqlDirectorySource,
    split_statements,
)
from db_lifecycle.migrations.strategy import (
    MigrationStrategy,
    migration_files_available,
    select_strategy,
)

__all__ = [
    "MigrationStrategy",
    "select_strategy",
    "migration_files_available",
    "Migration",
    "MigrationSource",
    "SqlDirectorySource",
    "split_statements",
    "MigrationRunner",
    "ChangeApplier",
    "AppliedChangeSet",
    "ChangeSetState",
]
