"""Constraint fixer -- repair foreign key ordering problems in seed data.

Bulk seed loads fail when a child row is inserted before the parent row it
references.  ``ConstraintFixer`` re-orders the seed steps so tables with no
outbound foreign keys load first, and runs them with foreign key
enforcement disabled on one pooled connection.  Enforcement is always
re-enabled, including when a step fails.

Usage:
    from db_lifecycle.schema.fix import ConstraintFixer, SeedStep

    fixer = ConstraintFixer(client, registry)
    ok = await fixer.fix_seeding_constraints([
        SeedStep(table="books", rows=[{"id": 1, "author_id": 1, "title": "Dune"}]),
        SeedStep(table="authors", rows=[{"id": 1, "name": "Herbert"}]),
    ])
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from db_lifecycle.adapters.base import DatabaseClient, DatabaseSession
from db_lifecycle.errors import LifecycleError
from db_lifecycle.schema.registry import ModelRegistry

logger = logging.getLogger(__name__)

# (disable, enable) statements per dialect
FK_TOGGLES: dict[str, tuple[str, str]] = {
    "postgresql": (
        "SET session_replication_role = 'replica'",
        "SET session_replication_role = 'origin'",
    ),
    "mysql": (
        "SET FOREIGN_KEY_CHECKS = 0",
        "SET FOREIGN_KEY_CHECKS = 1",
    ),
}


# ------------------------------------------------------------------
# Dependency ordering
# ------------------------------------------------------------------


def _topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Tables not in the dependency graph keep their relative input order.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: List of table names to sort.

    Returns:
        Tables sorted so that parent tables come before child tables.
    """
    # Filter dependencies to only include relevant tables
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()  # For cycle detection

    def visit(table: str) -> None:
        if table in visited:
            return
        if table in visiting:
            # Cycle detected -- break it by just adding the table
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


def dependency_order(dependencies: dict[str, set[str]], tables: Iterable[str]) -> list[str]:
    """Order ``tables`` parents first; duplicates collapse to first occurrence.

    Cycles are broken deterministically (by input order, then name).

    Example:
        >>> dependency_order({"books": {"authors"}, "authors": set()}, ["books", "authors"])
        ['authors', 'books']
    """
    return _topological_sort(dependencies, list(dict.fromkeys(tables)))


# ------------------------------------------------------------------
# Seed steps
# ------------------------------------------------------------------


@dataclass
class SeedStep:
    """Rows to insert into one table.

    Example:
        step = SeedStep(table="authors", rows=[{"id": 1, "name": "Herbert"}])
        step.statements()
        # [('INSERT INTO authors (id, name) VALUES (:id, :name)', {'id': 1, 'name': 'Herbert'})]
    """

    table: str
    rows: list[dict[str, Any]] = field(default_factory=list)

    def statements(self) -> list[tuple[str, dict[str, Any]]]:
        statements = []
        for row in self.rows:
            columns = list(row)
            sql = (
                f"INSERT INTO {self.table} ({', '.join(columns)}) "
                f"VALUES ({', '.join(':' + c for c in columns)})"
            )
            statements.append((sql, dict(row)))
        return statements


def order_seed_steps(
    steps: list[SeedStep],
    dependencies: dict[str, set[str]],
) -> list[SeedStep]:
    """Stable re-ordering of ``steps`` so referenced tables load first."""
    order = dependency_order(dependencies, (s.table for s in steps))
    rank = {table: i for i, table in enumerate(order)}
    return sorted(steps, key=lambda s: rank[s.table])


async def run_seed_steps(session: DatabaseSession, steps: list[SeedStep]) -> int:
    """Insert every row of ``steps`` on ``session``; returns rows inserted."""
    inserted = 0
    for step in steps:
        for sql, params in step.statements():
            await session.execute(sql, params)
            inserted += 1
    return inserted


# ------------------------------------------------------------------
# Fixer
# ------------------------------------------------------------------


class ConstraintFixer:
    """Runs seed steps in dependency order with FK enforcement disabled.

    Args:
        client: Shared database client; ``client.dialect`` picks the
            enforcement toggle statements.
        registry: Source of the foreign key graph.
    """

    def __init__(self, client: DatabaseClient, registry: ModelRegistry):
        self._client = client
        self._registry = registry

    async def fix_seeding_constraints(self, steps: list[SeedStep]) -> bool:
        """Re-order ``steps`` by dependency and load them.

        Returns:
            True if every row was inserted and enforcement was restored.
            False otherwise; the failure is logged.
        """
        toggles = FK_TOGGLES.get(self._client.dialect)
        if toggles is None:
            logger.error(
                "Cannot toggle foreign key enforcement for dialect '%s'",
                self._client.dialect,
            )
            return False
        disable, enable = toggles

        ordered = order_seed_steps(steps, self._registry.dependencies())
        logger.info(
            "Fixing seeding constraints: %d steps in order %s",
            len(ordered),
            " -> ".join(dict.fromkeys(s.table for s in ordered)),
        )

        try:
            async with self._client.connection() as session:
                await session.execute(disable)
                try:
                    async with session.transaction():
                        inserted = await run_seed_steps(session, ordered)
                finally:
                    await session.execute(enable)
        except LifecycleError as e:
            logger.error("Seeding constraint fix failed: %s", e)
            return False

        logger.info("Seeding constraint fix inserted %d rows", inserted)
        return True
