from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
import time

from .rate_limit import AsyncRateLimiter, LimiterStats


SimulationCallback = Callable[[int, int], None] | None


@dataclass(slots=True)
class SimulationResult:
    request_limit: int
    window_seconds: float
    offsets: list[float] = field(default_factory=list)
    stats: LimiterStats = field(default_factory=LimiterStats)

    @property
    def elapsed_seconds(self) -> float:
        return max(self.offsets, default=0.0)

    @property
    def peak_in_window(self) -> int:
        return max_calls_in_window(self.offsets, self.window_seconds)


def max_calls_in_window(offsets: Sequence[float], window_seconds: float) -> int:
    """Largest number of admissions inside any half-open interval of one window."""
    ordered = sorted(offsets)
    peak = 0
    start = 0
    for end, stamp in enumerate(ordered):
        while stamp - ordered[start] >= window_seconds:
            start += 1
        peak = max(peak, end - start + 1)
    return peak


async def run_simulation(
    *,
    calls: int,
    request_limit: int,
    window_seconds: float,
    concurrency: int = 0,
    callback: SimulationCallback = None,
) -> SimulationResult:
    """Fire ``calls`` acquisitions at one limiter and record admission offsets.

    ``concurrency`` caps how many callers wait at once; 0 starts them all.
    """
    limiter = AsyncRateLimiter(max_calls=request_limit, period_seconds=window_seconds)
    result = SimulationResult(request_limit=request_limit, window_seconds=window_seconds)
    semaphore = asyncio.Semaphore(concurrency if concurrency > 0 else calls)
    started_at = time.monotonic()
    offsets: list[float | None] = [None] * calls

    async def caller(index: int) -> None:
        async with semaphore:
            await limiter.acquire()
            offsets[index] = time.monotonic() - started_at
            if callback:
                callback(sum(1 for offset in offsets if offset is not None), calls)

    await asyncio.gather(*(caller(index) for index in range(calls)))
    result.offsets = [offset for offset in offsets if offset is not None]
    result.stats = limiter.stats
    return result
