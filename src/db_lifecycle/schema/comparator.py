"""Schema comparison using set operations.

Compares the declared shape in a ``ModelRegistry`` against an introspected
``DatabaseSchema``.  Pure logic -- no I/O, no database connections.

Usage:
    from db_lifecycle.schema.comparator import compare_schema
    from db_lifecycle.schema.introspector import SchemaIntrospector

    live = await SchemaIntrospector(client).introspect(registry.tables())
    drift = compare_schema(registry, live)
    if drift.has_drift:
        print(drift.format_report())
"""

from db_lifecycle.schema.introspector import normalize_data_type
from db_lifecycle.schema.models import (
    ColumnDiff,
    DatabaseSchema,
    IndexDiff,
    ModelDescriptor,
    SchemaDrift,
    TableSchema,
)
from db_lifecycle.schema.registry import ModelRegistry


def _has_equivalent_index(table: TableSchema, fields: tuple[str, ...], unique: bool) -> bool:
    return any(
        tuple(idx.columns) == fields and idx.is_unique == unique
        for idx in table.indexes.values()
    )


def _compare_table(descriptor: ModelDescriptor, table: TableSchema, drift: SchemaDrift) -> None:
    name = descriptor.table
    expected_cols = set(descriptor.field_names)
    actual_cols = set(table.columns)

    # Keep declaration order in the report
    for field in descriptor.fields:
        if field.name not in expected_cols - actual_cols:
            continue
        drift.missing_columns.append(
            ColumnDiff(
                table=name,
                column=field.name,
                message=f"Column '{field.name}' missing from table '{name}'",
            )
        )

    for field in descriptor.fields:
        live = table.columns.get(field.name)
        if live is None:
            continue
        declared_type = normalize_data_type(field.type)
        if declared_type != live.data_type:
            drift.type_mismatches.append(
                ColumnDiff(
                    table=name,
                    column=field.name,
                    message=f"declared {declared_type}, live {live.data_type}",
                )
            )
        if field.nullable and not field.primary_key and not live.is_nullable:
            drift.relaxable_not_null.append(
                ColumnDiff(
                    table=name,
                    column=field.name,
                    message=f"Column '{field.name}' is NOT NULL but declared nullable",
                )
            )

    for index in descriptor.indexes:
        if index.name in table.indexes:
            continue
        if _has_equivalent_index(table, index.fields, index.unique):
            continue
        drift.missing_indexes.append(
            IndexDiff(
                table=name,
                index=index.name,
                message=f"Index '{index.name}' missing from table '{name}'",
            )
        )


def compare_schema(
    registry: ModelRegistry,
    live: DatabaseSchema,
    tables: list[str] | None = None,
) -> SchemaDrift:
    """Compare declared models against the live schema.

    Finds:
    - Missing tables: registered tables absent from ``live``
    - Missing columns: declared fields absent from an existing table
    - Missing indexes: declared indexes with neither the same name nor an
      equivalent (same ordered columns and uniqueness) live index
    - Relaxable NOT NULL: declared nullable, live NOT NULL
    - Type mismatches: reported only, never repaired
    - Extra tables: live tables with no model (warning only)

    Args:
        registry: Declared models.
        live: Introspected schema.
        tables: Restrict the comparison to these tables.

    Returns:
        ``SchemaDrift`` describing every difference.

    Examples:
        >>> from db_lifecycle.schema.models import FieldSpec
        >>> registry = ModelRegistry().register([
        ...     ModelDescriptor(name="User", table="users",
        ...                     fields=[FieldSpec(name="id", type="INT", primary_key=True)]),
        ... ])
        >>> compare_schema(registry, DatabaseSchema()).missing_tables
        ['users']
    """
    drift = SchemaDrift()
    wanted = set(tables) if tables is not None else None

    declared = [d for d in registry.all() if wanted is None or d.table in wanted]
    declared_tables: set[str] = {d.table for d in declared}
    actual_tables: set[str] = set(live.tables)

    drift.missing_tables = list(
        dict.fromkeys(d.table for d in declared if d.table not in actual_tables)
    )
    drift.extra_tables = sorted(actual_tables - set(registry.tables()))

    for descriptor in declared:
        if descriptor.table in actual_tables & declared_tables:
            _compare_table(descriptor, live.tables[descriptor.table], drift)

    return drift
