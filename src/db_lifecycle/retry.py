"""Bounded retry with exponential backoff for transient database failures.

Only ``DatabaseConnectionError`` is retried.  Everything else (schema errors,
lock timeouts, constraint violations) propagates on the first failure.

Usage:
    from db_lifecycle.retry import RetryPolicy, with_retry

    rows = await with_retry(
        lambda: client.fetch("SELECT 1"),
        RetryPolicy(attempts=3, base_delay=0.5),
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from db_lifecycle.errors import DatabaseConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between.

    ``attempts`` counts the first try, so ``attempts=1`` disables retrying.
    The delay before retry *n* (1-based) is ``base_delay * 2 ** (n - 1)``,
    capped at ``max_delay``.
    """

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, retry_number: int) -> float:
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    description: str = "database operation",
) -> T:
    """Run ``operation``, retrying on ``DatabaseConnectionError``.

    Args:
        operation: Zero-argument callable returning a fresh awaitable on
            every call.
        policy: Retry bounds.  Defaults to ``RetryPolicy()``.
        description: Used in log messages.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        DatabaseConnectionError: After the final attempt fails.
    """
    policy = policy or RetryPolicy()
    attempts = max(policy.attempts, 1)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except DatabaseConnectionError as e:
            if attempt >= attempts:
                logger.error(
                    "%s failed after %d attempts: %s", description, attempts, e
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                description,
                attempt,
                attempts,
                delay,
                e,
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("with_retry exhausted without result")
