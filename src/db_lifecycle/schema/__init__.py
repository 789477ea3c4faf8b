"""Declared models, schema introspection, drift detection, and repair.

Provides the model registry (``ModelRegistry``), live database
introspection (``SchemaIntrospector``), drift detection
(``compare_schema``), additive schema sync (``SchemaSynchronizer``), and
seed constraint repair (``ConstraintFixer``).

Usage:
    from db_lifecycle.schema import ModelRegistry, SchemaIntrospector
    from db_lifecycle.schema import compare_schema, SchemaSynchronizer
    from db_lifecycle.schema import ConstraintFixer, SeedStep
"""

from db_lifecycle.schema.comparator import compare_schema
from db_lifecycle.schema.fix import (
    ConstraintFixer,
    SeedStep,
    dependency_order,
    order_seed_steps,
)
from db_lifecycle.schema.introspector import SchemaIntrospector
from db_lifecycle.schema.models import (
    ColumnDiff,
    ColumnSchema,
    ConstraintSchema,
    DatabaseSchema,
    FieldSpec,
    ForeignKeySpec,
    IndexDiff,
    IndexSchema,
    IndexSpec,
    ModelDescriptor,
    SchemaDrift,
    TableInfo,
    TableSchema,
)
from db_lifecycle.schema.registry import ModelRegistry
from db_lifecycle.schema.sync import (
    SchemaSynchronizer,
    SyncPlan,
    SyncResult,
    guard_statement,
    plan_sync,
)

__all__ = [
    "ModelRegistry",
    "ModelDescriptor",
    "FieldSpec",
    "IndexSpec",
    "ForeignKeySpec",
    "SchemaIntrospector",
    "ColumnSchema",
    "ConstraintSchema",
    "IndexSchema",
    "TableSchema",
    "DatabaseSchema",
    "TableInfo",
    "compare_schema",
    "SchemaDrift",
    "ColumnDiff",
    "IndexDiff",
    "plan_sync",
    "guard_statement",
    "SchemaSynchronizer",
    "SyncPlan",
    "SyncResult",
    "ConstraintFixer",
    "SeedStep",
    "dependency_order",
    "order_seed_steps",
]
