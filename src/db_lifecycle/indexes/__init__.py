"""Index inspection and redundant-index removal.

Usage:
    from db_lifecycle.indexes import IndexInspector, IndexOptimizer, OptimizationPolicy
"""

from db_lifecycle.indexes.inspector import IndexInspector
from db_lifecycle.indexes.locks import TableLocks
from db_lifecycle.indexes.models import (
    CleanupSummary,
    IndexSignature,
    OptimizationPolicy,
    OptimizationResult,
)
from db_lifecycle.indexes.optimizer import (
    IndexOptimizer,
    find_duplicate_groups,
    plan_removals,
)

__all__ = [
    "IndexInspector",
    "IndexOptimizer",
    "TableLocks",
    "IndexSignature",
    "OptimizationPolicy",
    "OptimizationResult",
    "CleanupSummary",
    "find_duplicate_groups",
    "plan_removals",
]
