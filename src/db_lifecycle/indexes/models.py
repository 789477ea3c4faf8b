"""Pydantic models for index inspection and optimization."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from db_lifecycle.schema.models import IndexSchema


class OptimizationPolicy(str, Enum):
    """How aggressively redundant indexes are removed.

    - ``CONSERVATIVE``: only exact duplicates (same ordered fields and
      uniqueness).
    - ``AGGRESSIVE``: duplicates, plus non-unique indexes whose field list is
      a strict prefix of a surviving index, plus ceiling enforcement.  Used
      by emergency cleanup after an index-limit error.
    """

    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


class IndexSignature(BaseModel):
    """Semantic shape of a live secondary index, independent of its name.

    Field order is significant: ``(a, b)`` and ``(b, a)`` are different
    signatures.  Two indexes are duplicates only when their access method
    and partial-index predicate also match; an expression key such as
    ``lower(email)`` is compared by its definition text.

    Example:
        >>> a = IndexSignature(table="users", fields=("email",), unique=True, name="idx_email")
        >>> b = IndexSignature(table="users", fields=("email",), unique=True, name="idx_email_2")
        >>> a.duplicate_key == b.duplicate_key
        True
    """

    model_config = ConfigDict(frozen=True)

    table: str
    fields: tuple[str, ...]
    unique: bool = False
    name: str
    constraint: bool = False  # backs a PRIMARY KEY / UNIQUE constraint
    index_type: str = "btree"
    predicate: str | None = None
    expression: bool = False

    @property
    def duplicate_key(self) -> tuple:
        return (
            self.table,
            self.fields,
            self.unique,
            self.index_type,
            self.predicate,
            self.expression,
        )

    @property
    def is_plain(self) -> bool:
        """A full (non-partial) btree index over plain columns."""
        return self.index_type == "btree" and self.predicate is None and not self.expression

    @classmethod
    def from_schema(cls, table: str, index: IndexSchema) -> "IndexSignature":
        return cls(
            table=table,
            fields=tuple(index.columns),
            unique=index.is_unique,
            name=index.name,
            constraint=index.is_constraint,
            index_type=index.index_type,
            predicate=index.predicate,
            expression=index.has_expressions,
        )


class OptimizationResult(BaseModel):
    """Result of one ``IndexOptimizer.optimize()`` call.

    Attributes:
        table: Table that was optimized.
        policy: Policy used.
        inspected: Secondary indexes seen by the inspection.
        removed: Number of indexes actually dropped.
        removed_indexes: Names of dropped indexes, in drop order.
        remaining: Total indexes left on the table (primary key included).
        ceiling_exceeded: ``remaining`` is still above the configured
            ceiling (aggressive policy could not get below it).
        error: Set when a DROP failed; earlier drops are not rolled back.
    """

    table: str
    policy: OptimizationPolicy
    inspected: int = 0
    removed: int = 0
    removed_indexes: list[str] = Field(default_factory=list)
    remaining: int = 0
    ceiling_exceeded: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and not self.ceiling_exceeded


class CleanupSummary(BaseModel):
    """Aggregate of an emergency cleanup across every registered table."""

    results: list[OptimizationResult] = Field(default_factory=list)
    skipped_tables: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def total_removed(self) -> int:
        return sum(r.removed for r in self.results)

    @property
    def success(self) -> bool:
        return not self.errors and all(r.success for r in self.results)
