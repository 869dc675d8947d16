"""Sliding-window admission gates.

A gate admits at most ``max_calls`` callers within any ``period_seconds``
interval ending now. Callers that arrive while the window is full are
queued in arrival order and suspended on a condition variable until the
oldest admission ages out; every state change wakes all waiters, which then
re-check the window under the gate's lock.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
import itertools
import logging
import math
import threading
import time

from .config import TimeUnit


logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Period = float | int | timedelta | TimeUnit


class RateLimitConfigError(ValueError):
    pass


class AdmissionCancelledError(Exception):
    """A caller stopped waiting before it was admitted."""


class AdmissionTimeoutError(AdmissionCancelledError):
    pass


class RateLimiterClosedError(AdmissionCancelledError):
    pass


@dataclass(slots=True)
class LimiterStats:
    admitted: int = 0
    immediate: int = 0
    delayed: int = 0
    cancelled: int = 0
    total_wait_seconds: float = 0.0
    max_wait_seconds: float = 0.0

    @property
    def mean_wait_ms(self) -> float:
        if self.admitted == 0:
            return 0.0
        return (self.total_wait_seconds / self.admitted) * 1000.0


def period_to_seconds(period: Period) -> float:
    if isinstance(period, TimeUnit):
        return period.seconds
    if isinstance(period, timedelta):
        return period.total_seconds()
    if isinstance(period, bool) or not isinstance(period, (int, float)):
        raise RateLimitConfigError(f"Unsupported period type: {type(period).__name__}")
    return float(period)


def _validate(max_calls: int, period_seconds: Period) -> tuple[int, float]:
    if isinstance(max_calls, bool) or not isinstance(max_calls, int):
        raise RateLimitConfigError("max_calls must be an integer")
    if max_calls <= 0:
        raise RateLimitConfigError("max_calls must be positive")
    seconds = period_to_seconds(period_seconds)
    if not math.isfinite(seconds) or seconds <= 0:
        raise RateLimitConfigError("period_seconds must be positive")
    return max_calls, seconds


class TimestampLedger:
    """Admission instants still inside the window, oldest first.

    Not synchronized; the owning gate serializes access.
    """

    def __init__(self, max_calls: int, period_seconds: float) -> None:
        self.max_calls = max_calls
        self.period_seconds = period_seconds
        self._calls: deque[float] = deque()

    def __len__(self) -> int:
        return len(self._calls)

    def snapshot(self) -> tuple[float, ...]:
        return tuple(self._calls)

    def purge(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.period_seconds:
            self._calls.popleft()

    def active(self, now: float) -> int:
        return sum(1 for stamp in self._calls if now - stamp < self.period_seconds)

    def delay(self, now: float) -> float:
        """Seconds until a slot frees up, 0.0 if one is free now.

        Clamped to one window so an entry stamped "in the future" by a clock
        that stepped backwards delays admission instead of expiring early.
        """
        self.purge(now)
        if len(self._calls) < self.max_calls:
            return 0.0
        wait = self.period_seconds - (now - self._calls[0])
        return min(max(wait, 0.0), self.period_seconds)

    def reserve(self, now: float) -> float:
        """Record an admission at ``now`` if a slot is free.

        Returns 0.0 on success, otherwise the delay before trying again.
        """
        wait = self.delay(now)
        if wait > 0.0:
            return wait
        # keep the deque ordered even if the clock went backwards
        stamp = max(now, self._calls[-1]) if self._calls else now
        self._calls.append(stamp)
        return 0.0


class _SlidingWindowGate:
    def __init__(
        self,
        max_calls: int,
        period_seconds: Period = 1.0,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        max_calls, seconds = _validate(max_calls, period_seconds)
        self._ledger = TimestampLedger(max_calls, seconds)
        self._clock = clock
        self._tickets = itertools.count()
        self._queue: deque[int] = deque()
        self._closed = False
        self.stats = LimiterStats()

    @property
    def max_calls(self) -> int:
        return self._ledger.max_calls

    @property
    def period_seconds(self) -> float:
        return self._ledger.period_seconds

    @property
    def waiting(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def in_flight(self) -> int:
        return self._ledger.active(self._clock())

    def _enqueue(self) -> int:
        if self._closed:
            raise RateLimiterClosedError("rate limiter is closed")
        ticket = next(self._tickets)
        self._queue.append(ticket)
        return ticket

    def _next_wait(self, ticket: int, now: float) -> float:
        if self._closed:
            raise RateLimiterClosedError("rate limiter is closed")
        wait = self._ledger.delay(now)
        if self._queue[0] == ticket:
            return wait
        # behind an earlier caller: sleep until the next expiry or a notify
        return wait or self._ledger.period_seconds

    def _admit(self, ticket: int, now: float, waited: float) -> bool:
        self._ledger.reserve(now)
        self._queue.popleft()
        self.stats.admitted += 1
        if waited > 0.0:
            self.stats.delayed += 1
            self.stats.total_wait_seconds += waited
            self.stats.max_wait_seconds = max(self.stats.max_wait_seconds, waited)
            logger.debug(
                "Admitted ticket %d after %.3fs (%d/%d in window)",
                ticket,
                waited,
                len(self._ledger),
                self.max_calls,
            )
        else:
            self.stats.immediate += 1
        return bool(self._queue)

    def _withdraw(self, ticket: int) -> None:
        try:
            self._queue.remove(ticket)
        except ValueError:
            return
        self.stats.cancelled += 1
        logger.debug("Ticket %d left the queue without admission", ticket)

    def _timeout_remaining(self, deadline: float | None, now: float, wait: float) -> float:
        if deadline is None:
            return wait
        remaining = deadline - now
        if remaining <= 0:
            raise AdmissionTimeoutError(f"not admitted within the timeout ({self.waiting} queued)")
        return min(wait, remaining)


class AsyncRateLimiter(_SlidingWindowGate):
    """Sliding-window limiter for asyncio tasks.

    Cancelling a task blocked in ``acquire`` propagates ``CancelledError``
    and leaves the window untouched.
    """

    def __init__(
        self,
        max_calls: int,
        period_seconds: Period = 1.0,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(max_calls, period_seconds, clock=clock)
        self._condition = asyncio.Condition()

    async def __aenter__(self) -> AsyncRateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def acquire(self, timeout: float | None = None) -> None:
        deadline = None if timeout is None else self._clock() + timeout
        async with self._condition:
            ticket = self._enqueue()
            arrived_at = now = self._clock()
            try:
                while True:
                    wait = self._next_wait(ticket, now)
                    if wait == 0.0:
                        if self._admit(ticket, now, now - arrived_at):
                            self._condition.notify_all()
                        return
                    wait = self._timeout_remaining(deadline, now, wait)
                    try:
                        await asyncio.wait_for(self._condition.wait(), timeout=wait)
                    except TimeoutError:
                        pass
                    now = self._clock()
            except BaseException:
                self._withdraw(ticket)
                self._condition.notify_all()
                raise

    async def close(self) -> None:
        async with self._condition:
            self._closed = True
            self._condition.notify_all()


class RateLimiter(_SlidingWindowGate):
    """Thread-safe sliding-window limiter for blocking callers."""

    def __init__(
        self,
        max_calls: int,
        period_seconds: Period = 1.0,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(max_calls, period_seconds, clock=clock)
        self._condition = threading.Condition(threading.Lock())

    def __enter__(self) -> RateLimiter:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def in_flight(self) -> int:
        with self._condition:
            return super().in_flight()

    def acquire(self, timeout: float | None = None) -> None:
        deadline = None if timeout is None else self._clock() + timeout
        with self._condition:
            ticket = self._enqueue()
            arrived_at = now = self._clock()
            try:
                while True:
                    wait = self._next_wait(ticket, now)
                    if wait == 0.0:
                        if self._admit(ticket, now, now - arrived_at):
                            self._condition.notify_all()
                        return
                    wait = self._timeout_remaining(deadline, now, wait)
                    self._condition.wait(timeout=wait)
                    now = self._clock()
            except BaseException:
                self._withdraw(ticket)
                self._condition.notify_all()
                raise

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()
