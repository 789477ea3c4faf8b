"""db-lifecycle: Async schema and index lifecycle manager.

Reconciles declared models against a live PostgreSQL database at startup
(migration files, direct schema sync, or both), removes redundant indexes
before they hit the engine's per-table ceiling, and reports health.

Usage:
    from db_lifecycle import create_manager, connect_manager, LifecycleConfig
    from db_lifecycle import ModelDescriptor, FieldSpec, IndexSpec, ForeignKeySpec
    from db_lifecycle import OptimizationPolicy, MigrationStrategy, select_strategy
"""

__version__ = "0.1.0"

# Adapters
from db_lifecycle.adapters.base import DatabaseClient, DatabaseSession
from db_lifecycle.adapters.postgres import AsyncPostgresAdapter

# Config
from db_lifecycle.config.loader import (
    ProfileNotFoundError,
    load_db_config,
    load_model_descriptors,
    resolve_url,
)
from db_lifecycle.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    Environment,
    LifecycleConfig,
)

# Errors
from db_lifecycle.errors import (
    ConstraintError,
    DatabaseConnectionError,
    DestructiveOperationError,
    DuplicateModelError,
    IndexLimitError,
    InvalidDescriptorError,
    LifecycleError,
    LockTimeoutError,
    MigrationError,
    ModelNotFoundError,
    NoMigrationPathError,
    SchemaError,
    SyncError,
    TableNotFoundError,
)

# Health
from db_lifecycle.health import HealthReport, HealthStatus, QueryLatencyTracker

# Indexes
from db_lifecycle.indexes import IndexSignature, OptimizationPolicy, OptimizationResult

# Manager
from db_lifecycle.manager import (
    DatabaseManager,
    SetupResult,
    connect_manager,
    create_manager,
)

# Migrations
from db_lifecycle.migrations import AppliedChangeSet, MigrationStrategy, select_strategy

# Schema
from db_lifecycle.schema import (
    FieldSpec,
    ForeignKeySpec,
    IndexSpec,
    ModelDescriptor,
    ModelRegistry,
    SeedStep,
    TableInfo,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "DatabaseSession",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "load_model_descriptors",
    "resolve_url",
    "ProfileNotFoundError",
    "DatabaseProfile",
    "DatabaseConfig",
    "LifecycleConfig",
    "Environment",
    # Errors
    "LifecycleError",
    "DatabaseConnectionError",
    "LockTimeoutError",
    "TableNotFoundError",
    "DuplicateModelError",
    "InvalidDescriptorError",
    "ModelNotFoundError",
    "SchemaError",
    "IndexLimitError",
    "ConstraintError",
    "NoMigrationPathError",
    "MigrationError",
    "SyncError",
    "DestructiveOperationError",
    # Health
    "HealthReport",
    "HealthStatus",
    "QueryLatencyTracker",
    # Indexes
    "IndexSignature",
    "OptimizationPolicy",
    "OptimizationResult",
    # Manager
    "DatabaseManager",
    "SetupResult",
    "create_manager",
    "connect_manager",
    # Migrations
    "MigrationStrategy",
    "AppliedChangeSet",
    "select_strategy",
    # Schema
    "ModelRegistry",
    "ModelDescriptor",
    "FieldSpec",
    "IndexSpec",
    "ForeignKeySpec",
    "SeedStep",
    "TableInfo",
]
