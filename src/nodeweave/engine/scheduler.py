# src/nodeweave/engine/scheduler.py
"""Schedulers: time access, timers and background tasks.

Every deferred action in the engine goes through a Scheduler:

- batch flush timers (cleared and rescheduled on each new directive)
- retry backoff sleeps
- sync re-queue delays

AsyncioScheduler runs on the current event loop. VirtualScheduler runs on a
MockClock and only fires timers when a test calls ``advance()``, which makes
timing behaviour deterministic.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Protocol

import structlog

from nodeweave.engine.clock import DEFAULT_CLOCK, Clock, MockClock

logger = structlog.get_logger(__name__)


class TimerHandle(Protocol):
    """Handle returned by call_later."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Time and timer access for the engine."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def timestamp(self) -> str:
        """ISO-8601 UTC wall-clock timestamp for records."""
        ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds.

        If the callback returns an awaitable it is run as a tracked task.
        """
        ...

    async def sleep(self, delay: float) -> None:
        """Suspend the current coroutine for ``delay`` seconds."""
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run ``coro`` as a tracked background task."""
        ...

    async def drain(self, timeout: float) -> bool:
        """Wait for tracked tasks. Returns False if the timeout expired first."""
        ...


class _TaskTracker:
    """Keeps strong references to background tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("background_task_failed", error=str(task.exception()), exc_info=task.exception())

    @property
    def pending(self) -> set[asyncio.Task[Any]]:
        return set(self._tasks)

    async def drain(self, timeout: float) -> bool:
        """Wait for tracked tasks, including ones spawned while draining."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            pending = {task for task in self._tasks if not task.done()}
            if not pending:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            _done, still_pending = await asyncio.wait(pending, timeout=remaining)
            if still_pending:
                return False

    def cancel_all(self) -> None:
        for task in self.pending:
            task.cancel()


class AsyncioScheduler(_TaskTracker):
    """Scheduler on the running asyncio event loop."""

    def __init__(self, clock: Clock = DEFAULT_CLOCK) -> None:
        super().__init__()
        self._clock = clock

    def now(self) -> float:
        return self._clock.monotonic()

    def timestamp(self) -> str:
        return self._clock.utcnow().isoformat()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), self._fire, callback)

    def _fire(self, callback: Callable[[], Any]) -> None:
        result = callback()
        if inspect.isawaitable(result):
            self.spawn(_as_coroutine(result))

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


class _VirtualTimer:
    def __init__(self, deadline: float, callback: Callable[[], Any]) -> None:
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler(_TaskTracker):
    """Deterministic scheduler over a MockClock.

    Timers fire only inside ``advance()``, in deadline order (ties in
    scheduling order). Awaitables returned by timer callbacks are awaited
    inline, so when ``advance()`` returns every due callback has finished.

    ``sleep()`` moves the clock forward without firing timers, which lets
    retry backoff run without waiting in real time.

    Example:
        scheduler = VirtualScheduler()
        scheduler.call_later(5.0, flush)
        await scheduler.advance(5.0)  # flush has run
    """

    def __init__(self, clock: MockClock | None = None) -> None:
        super().__init__()
        self.clock = clock or MockClock()
        self._timers: list[tuple[float, int, _VirtualTimer]] = []
        self._sequence = itertools.count()
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.clock.monotonic()

    def timestamp(self) -> str:
        return self.clock.utcnow().isoformat()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        timer = _VirtualTimer(self.now() + max(0.0, delay), callback)
        heapq.heappush(self._timers, (timer.deadline, next(self._sequence), timer))
        return timer

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.clock.advance(max(0.0, delay))
        await asyncio.sleep(0)

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, timer in self._timers if not timer.cancelled)

    async def advance(self, seconds: float) -> None:
        """Advance virtual time, firing every timer that becomes due."""
        target = self.now() + seconds
        while self._timers and self._timers[0][0] <= target:
            deadline, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.clock.set(max(self.now(), deadline))
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        self.clock.set(max(self.now(), target))
        # Let tasks spawned by callbacks make progress
        await asyncio.sleep(0)

    async def run_pending(self) -> None:
        """Fire timers that are already due without moving the clock."""
        await self.advance(0.0)


async def _as_coroutine(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
