"""Rolling window of query latencies recorded by the caller.

The lifecycle core does not observe application queries itself; callers
record latencies (directly or via ``measure()``) and the health monitor
reads the rolling average.

Usage:
    tracker = QueryLatencyTracker(window=200)

    async with tracker.measure():
        await client.fetch("SELECT * FROM users")

    tracker.record(12.5)
    print(tracker.average_ms)
"""

import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class QueryLatencyTracker:
    """Keeps the most recent ``window`` latencies in milliseconds."""

    def __init__(self, window: int = 100):
        if window <= 0:
            raise ValueError("window must be positive")
        self._samples: deque[float] = deque(maxlen=window)

    def record(self, latency_ms: float) -> None:
        if latency_ms < 0:
            raise ValueError(f"latency must be non-negative, got {latency_ms}")
        self._samples.append(float(latency_ms))

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def average_ms(self) -> float:
        """Mean of the window; ``0.0`` when nothing was recorded yet."""
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    @asynccontextmanager
    async def measure(self) -> AsyncIterator[None]:
        """Record the wall time of the block, even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record((time.perf_counter() - start) * 1000)
