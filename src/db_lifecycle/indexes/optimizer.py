"""Index optimizer -- detect and remove redundant indexes.

Planning is pure logic (``plan_removals``); execution (``IndexOptimizer``)
holds the per-table lock across inspection and removal, so a concurrent
inspection never sees a half-optimized table.

Invariants:
- Indexes backing a PRIMARY KEY or UNIQUE constraint are never removed.
- A declared index is preferred as the survivor of its duplicate group;
  outside duplicate groups declared indexes are never removed.
- Unique indexes are only ever removed as exact duplicates of another
  unique index with the same signature, which survives.

Usage:
    from db_lifecycle.indexes.optimizer import IndexOptimizer
    from db_lifecycle.indexes.models import OptimizationPolicy

    optimizer = IndexOptimizer(inspector, registry, index_ceiling=64)
    result = await optimizer.optimize("users", OptimizationPolicy.CONSERVATIVE)
    summary = await optimizer.emergency_cleanup()
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable

from db_lifecycle.errors import LifecycleError, TableNotFoundError
from db_lifecycle.indexes.inspector import IndexInspector
from db_lifecycle.indexes.models import (
    CleanupSummary,
    IndexSignature,
    OptimizationPolicy,
    OptimizationResult,
)
from db_lifecycle.retry import RetryPolicy, with_retry
from db_lifecycle.schema.registry import ModelRegistry

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Planning
# ------------------------------------------------------------------


def find_duplicate_groups(
    signatures: Iterable[IndexSignature],
) -> list[list[IndexSignature]]:
    """Group signatures by (table, ordered fields, uniqueness).

    Returns only groups with more than one member, each sorted by name,
    groups ordered by their first name.
    """
    groups: dict[tuple, list[IndexSignature]] = defaultdict(list)
    for sig in signatures:
        groups[sig.duplicate_key].append(sig)
    duplicates = [sorted(g, key=lambda s: s.name) for g in groups.values() if len(g) > 1]
    return sorted(duplicates, key=lambda g: g[0].name)


def _survivor_rank(sig: IndexSignature, declared: frozenset[str]) -> tuple:
    # constraint-backed first, then declared, then lexicographic
    return (not sig.constraint, sig.name not in declared, sig.name)


def plan_removals(
    signatures: Iterable[IndexSignature],
    policy: OptimizationPolicy,
    declared_names: Iterable[str] = (),
    index_ceiling: int | None = None,
    baseline_count: int = 0,
) -> list[str]:
    """Decide which indexes to drop.  Pure: no I/O.

    1. Exact duplicates: within each group sharing ``duplicate_key`` keep
       exactly one survivor -- constraint-backed, else declared, else
       lexicographically first -- and drop the rest.  Constraint-backed
       indexes are never dropped, even when they are not the survivor.
    2. Aggressive only: drop non-unique, undeclared plain btree indexes
       whose field list is a strict prefix of another surviving plain btree
       index on the same table.
    3. Aggressive only: while the table is above ``index_ceiling``, drop
       undeclared non-unique indexes in reverse name order, skipping those
       that cover a prefix dropped in step 2.

    Args:
        signatures: Secondary indexes of one table.
        policy: Conservative or aggressive.
        declared_names: Index names declared by the table's model.
        index_ceiling: Engine ceiling; ``None`` disables step 3.
        baseline_count: Indexes not in ``signatures`` that count towards
            the ceiling (the primary key).

    Returns:
        Index names to drop, in drop order.

    Example:
        >>> sigs = [
        ...     IndexSignature(table="users", fields=("email",), unique=True, name="idx_email"),
        ...     IndexSignature(table="users", fields=("email",), unique=True, name="idx_email_2"),
        ...     IndexSignature(table="users", fields=("status",), name="idx_status"),
        ... ]
        >>> plan_removals(sigs, OptimizationPolicy.CONSERVATIVE)
        ['idx_email_2']
    """
    sigs = sorted(set(signatures), key=lambda s: s.name)
    declared = frozenset(declared_names)
    removals: list[str] = []
    removed: set[str] = set()

    for group in find_duplicate_groups(sigs):
        ranked = sorted(group, key=lambda s: _survivor_rank(s, declared))
        for sig in ranked[1:]:
            if sig.constraint:
                continue
            removals.append(sig.name)
            removed.add(sig.name)

    if policy is not OptimizationPolicy.AGGRESSIVE:
        return removals

    def expendable(sig: IndexSignature) -> bool:
        return not sig.unique and not sig.constraint and sig.name not in declared

    def covers(other: IndexSignature, sig: IndexSignature) -> bool:
        width = len(sig.fields)
        return (
            other.name != sig.name
            and other.is_plain
            and len(other.fields) > width
            and other.fields[:width] == sig.fields
        )

    survivors = [s for s in sigs if s.name not in removed]
    prefix_removed = []
    for sig in survivors:
        if not expendable(sig) or not sig.is_plain:
            continue
        if any(covers(other, sig) for other in survivors):
            removals.append(sig.name)
            removed.add(sig.name)
            prefix_removed.append(sig)

    if index_ceiling is not None:
        # Indexes now standing in for a dropped prefix must stay
        covering = {
            other.name
            for sig in prefix_removed
            for other in sigs
            if other.name not in removed and covers(other, sig)
        }
        remaining = baseline_count + len(sigs) - len(removed)
        candidates = sorted(
            (
                s
                for s in sigs
                if s.name not in removed and s.name not in covering and expendable(s)
            ),
            key=lambda s: s.name,
            reverse=True,
        )
        for sig in candidates:
            if remaining <= index_ceiling:
                break
            removals.append(sig.name)
            removed.add(sig.name)
            remaining -= 1

    return removals


# ------------------------------------------------------------------
# Execution
# ------------------------------------------------------------------


class IndexOptimizer:
    """Applies ``plan_removals`` against the live database.

    Args:
        inspector: Index inspector (shares its per-table locks).
        registry: Model registry; supplies declared index names and the
            table list for emergency cleanup.
        index_ceiling: Maximum indexes per table, primary key included.
        max_concurrency: Tables optimized at once by ``emergency_cleanup``.
        retry_policy: Backoff for transient failures of DROP INDEX.
    """

    def __init__(
        self,
        inspector: IndexInspector,
        registry: ModelRegistry,
        index_ceiling: int = 64,
        max_concurrency: int = 4,
        retry_policy: RetryPolicy | None = None,
    ):
        self._inspector = inspector
        self._registry = registry
        self.index_ceiling = index_ceiling
        self.max_concurrency = max(max_concurrency, 1)
        self._retry_policy = retry_policy or RetryPolicy()

    async def optimize(
        self,
        table: str,
        policy: OptimizationPolicy = OptimizationPolicy.CONSERVATIVE,
    ) -> OptimizationResult:
        """Inspect ``table`` and drop its redundant indexes.

        On a failed DROP the pass stops and the partial result is returned
        with ``error`` set.  Already-dropped indexes are not restored:
        dropping an index does not touch data and retrying is idempotent.

        Raises:
            TableNotFoundError: The table does not exist.
            DatabaseConnectionError: Inspection failed after retries.
            LockTimeoutError: Another pass held the table lock too long.
        """
        async with self._inspector.locks.hold(table):
            signatures = await self._inspector.read_indexes(table)
            total = await self._inspector.index_count(table)
            baseline = max(total - len(signatures), 0)
            declared = self._registry.declared_index_names(table)

            plan = plan_removals(
                signatures,
                policy,
                declared_names=declared,
                index_ceiling=self.index_ceiling,
                baseline_count=baseline,
            )
            for name in sorted(declared.intersection(plan)):
                logger.warning(
                    "Declared index %s on %s duplicates another declared index "
                    "and will be dropped; remove it from the model",
                    name,
                    table,
                )

            result = OptimizationResult(
                table=table,
                policy=policy,
                inspected=len(signatures),
            )

            for name in plan:
                try:
                    await with_retry(
                        lambda name=name: self._inspector.drop_index(table, name),
                        self._retry_policy,
                        description=f"DROP INDEX {name}",
                    )
                except LifecycleError as e:
                    result.error = f"Failed to drop index {name} on {table}: {e}"
                    logger.error(result.error)
                    break
                result.removed += 1
                result.removed_indexes.append(name)

            result.remaining = total - result.removed
            if result.remaining > self.index_ceiling:
                result.ceiling_exceeded = True
                logger.warning(
                    "Table %s still has %d indexes (ceiling %d) after %s optimization",
                    table,
                    result.remaining,
                    self.index_ceiling,
                    policy.value,
                )

        if result.removed:
            logger.info(
                "Optimized %s (%s): removed %d of %d indexes",
                table,
                policy.value,
                result.removed,
                result.inspected,
            )
        return result

    async def emergency_cleanup(self) -> CleanupSummary:
        """Aggressive optimization of every registered table.

        Tables run concurrently, bounded by ``max_concurrency`` so the pool
        is not exhausted.  Tables that do not exist yet are skipped.
        """
        logger.warning(
            "Starting emergency index cleanup across %d tables",
            len(self._registry.tables()),
        )
        semaphore = asyncio.Semaphore(self.max_concurrency)
        summary = CleanupSummary()

        async def _one(table: str) -> None:
            async with semaphore:
                try:
                    result = await self.optimize(table, OptimizationPolicy.AGGRESSIVE)
                except TableNotFoundError:
                    summary.skipped_tables.append(table)
                    return
                except LifecycleError as e:
                    summary.errors.append(f"{table}: {e}")
                    logger.error("Emergency cleanup of %s failed: %s", table, e)
                    return
                summary.results.append(result)
                if result.error:
                    summary.errors.append(result.error)

        await asyncio.gather(*(_one(t) for t in self._registry.tables()))

        summary.results.sort(key=lambda r: r.table)
        logger.warning(
            "Emergency cleanup removed %d indexes (%d tables processed, %d skipped, %d errors)",
            summary.total_removed,
            len(summary.results),
            len(summary.skipped_tables),
            len(summary.errors),
        )
        return summary
