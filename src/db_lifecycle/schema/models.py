"""Pydantic models for declared and live schema.

This module contains schema-domain models:
- Declared models: FieldSpec, IndexSpec, ForeignKeySpec, ModelDescriptor
- Introspection models: ColumnSchema, ConstraintSchema, IndexSchema,
  TableSchema, DatabaseSchema
- Drift models: ColumnDiff, IndexDiff, SchemaDrift
- Reporting: TableInfo

Configuration models (DatabaseProfile, LifecycleConfig) live in
db_lifecycle.config.models.
"""

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Declared Models (static configuration supplied by the caller)
# ============================================================================


class FieldSpec(BaseModel):
    """A declared column.

    Example:
        >>> f = FieldSpec(name="email", type="VARCHAR(255)", nullable=False)
        >>> f.unique
        False
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "TEXT"
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default: str | None = None

    def column_definition(self) -> str:
        """SQL column definition used in CREATE TABLE."""
        parts = [self.type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        elif not self.nullable:
            parts.append("NOT NULL")
        if self.unique and not self.primary_key:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


class IndexSpec(BaseModel):
    """A declared secondary index."""

    model_config = ConfigDict(frozen=True)

    name: str
    fields: tuple[str, ...]
    unique: bool = False


class ForeignKeySpec(BaseModel):
    """A declared foreign key from ``field`` to ``references_table``."""

    model_config = ConfigDict(frozen=True)

    field: str
    references_table: str
    references_field: str = "id"
    on_delete: str | None = None


class ModelDescriptor(BaseModel):
    """Declared shape of one model / table.

    Immutable once constructed; validated on registration by
    ``ModelRegistry``.

    Example:
        >>> users = ModelDescriptor(
        ...     name="User",
        ...     table="users",
        ...     fields=[FieldSpec(name="id", type="SERIAL", primary_key=True)],
        ... )
        >>> users.field_names
        ('id',)
    """

    model_config = ConfigDict(frozen=True)

    name: str
    table: str
    fields: tuple[FieldSpec, ...] = ()
    indexes: tuple[IndexSpec, ...] = ()
    foreign_keys: tuple[ForeignKeySpec, ...] = ()

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def primary_key(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.primary_key)

    def get_field(self, name: str) -> FieldSpec | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnSchema(name="id", data_type="uuid")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None


class ConstraintSchema(BaseModel):
    """Schema for a database constraint."""

    name: str
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK
    columns: list[str] = Field(default_factory=list)
    references_table: str | None = None
    references_columns: list[str] | None = None
    on_delete: str | None = None


class IndexSchema(BaseModel):
    """Schema for a live secondary index."""

    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_constraint: bool = False  # backs a PRIMARY KEY / UNIQUE constraint
    index_type: str = "btree"
    predicate: str | None = None  # WHERE clause of a partial index
    has_expressions: bool = False


class TableSchema(BaseModel):
    """Schema for a database table."""

    name: str
    columns: dict[str, ColumnSchema] = Field(default_factory=dict)
    constraints: dict[str, ConstraintSchema] = Field(default_factory=dict)
    indexes: dict[str, IndexSchema] = Field(default_factory=dict)


class DatabaseSchema(BaseModel):
    """Live database schema for the introspected tables."""

    tables: dict[str, TableSchema] = Field(default_factory=dict)


# ============================================================================
# Drift Models
# ============================================================================


class ColumnDiff(BaseModel):
    """A column-level difference between declared and live shape."""

    table: str
    column: str
    message: str = ""


class IndexDiff(BaseModel):
    """A declared index that does not exist in the live table."""

    table: str
    index: str
    message: str = ""


class SchemaDrift(BaseModel):
    """Divergence between the model registry and the live database.

    ``missing_*`` and ``relaxable_not_null`` are repaired by schema sync.
    ``type_mismatches`` and ``extra_tables`` are reported only: repairing
    them would alter or drop data-bearing structures.

    Example:
        >>> drift = SchemaDrift()
        >>> drift.has_drift
        False
        >>> drift.format_report()
        'No schema drift'
    """

    missing_tables: list[str] = Field(default_factory=list)
    missing_columns: list[ColumnDiff] = Field(default_factory=list)
    missing_indexes: list[IndexDiff] = Field(default_factory=list)
    relaxable_not_null: list[ColumnDiff] = Field(default_factory=list)
    type_mismatches: list[ColumnDiff] = Field(default_factory=list)
    extra_tables: list[str] = Field(default_factory=list)  # Warning only

    @property
    def has_drift(self) -> bool:
        """True if anything schema sync could repair is missing."""
        return bool(
            self.missing_tables
            or self.missing_columns
            or self.missing_indexes
            or self.relaxable_not_null
        )

    @property
    def error_count(self) -> int:
        """Count of repairable differences."""
        return (
            len(self.missing_tables)
            + len(self.missing_columns)
            + len(self.missing_indexes)
            + len(self.relaxable_not_null)
        )

    def format_report(self) -> str:
        """Format drift as a human-readable report."""
        if not self.has_drift and not self.type_mismatches:
            return "No schema drift"

        lines = ["Schema drift detected:"]

        if self.missing_tables:
            lines.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            for table in self.missing_tables:
                lines.append(f"    - {table}")

        if self.missing_columns:
            lines.append(f"\n  Missing columns ({len(self.missing_columns)}):")
            for diff in self.missing_columns:
                lines.append(f"    - {diff.table}.{diff.column}")

        if self.missing_indexes:
            lines.append(f"\n  Missing indexes ({len(self.missing_indexes)}):")
            for diff in self.missing_indexes:
                lines.append(f"    - {diff.table}.{diff.index}")

        if self.relaxable_not_null:
            lines.append(f"\n  NOT NULL to relax ({len(self.relaxable_not_null)}):")
            for diff in self.relaxable_not_null:
                lines.append(f"    - {diff.table}.{diff.column}")

        if self.type_mismatches:
            lines.append(f"\n  Type mismatches (not repaired) ({len(self.type_mismatches)}):")
            for diff in self.type_mismatches:
                lines.append(f"    - {diff.table}.{diff.column}: {diff.message}")

        if self.extra_tables:
            lines.append(f"\n  Extra tables (warning): {', '.join(self.extra_tables)}")

        return "\n".join(lines)


# ============================================================================
# Reporting
# ============================================================================


class TableInfo(BaseModel):
    """Read-only metadata snapshot of one table."""

    table: str
    exists: bool
    model: str | None = None
    columns: list[ColumnSchema] = Field(default_factory=list)
    primary_key: list[str] = Field(default_factory=list)
    foreign_keys: list[ConstraintSchema] = Field(default_factory=list)
    indexes: list[IndexSchema] = Field(default_factory=list)
    index_count: int = 0  # includes the primary key index
    index_ceiling: int = 64

    @property
    def headroom(self) -> int:
        """Indexes that can still be added before hitting the ceiling."""
        return self.index_ceiling - self.index_count
