"""
Scheduler abstraction for the countdown state machines.

The idle monitor, the test clock, the cache sweeper and the connectivity
monitor never touch asyncio timers directly. They ask a Scheduler for
one-shot and repeating callbacks and for background tasks:

    handle = scheduler.call_later(120, on_window_elapsed)
    handle.cancel()

LoopScheduler runs on the running asyncio loop with wall-clock time.
VirtualScheduler keeps its own clock, so tests drive time explicitly:

    scheduler = VirtualScheduler()
    clock.start()
    scheduler.advance(5)
    await scheduler.drain()
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine

from loguru import logger

Callback = Callable[[], Any]


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self, callback: Callback, interval: float | None = None):
        self.callback = callback
        self.interval = interval
        self._cancelled = False
        self._loop_handle: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
            self._loop_handle = None


class Scheduler(ABC):
    """Clock, timers and background tasks."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @abstractmethod
    def now(self) -> float:
        """Current time in epoch seconds."""

    def now_ms(self) -> int:
        return int(self.now() * 1000)

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled."""

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Start ``coro`` as a tracked background task on the running loop."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                    logger.error(f"Background task failed: {result!r}")


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(callback)
        handle._loop_handle = asyncio.get_running_loop().call_later(delay, self._fire_once, handle)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(callback, interval)
        self._arm(handle)
        return handle

    def _arm(self, handle: TimerHandle) -> None:
        handle._loop_handle = asyncio.get_running_loop().call_later(
            handle.interval, self._fire_repeating, handle
        )

    @staticmethod
    def _fire_once(handle: TimerHandle) -> None:
        if not handle.cancelled:
            handle._loop_handle = None
            handle.callback()

    def _fire_repeating(self, handle: TimerHandle) -> None:
        if handle.cancelled:
            return
        # Re-arm first so the callback may cancel its own handle
        self._arm(handle)
        handle.callback()


class VirtualScheduler(Scheduler):
    """Deterministic scheduler whose clock only moves on advance()."""

    def __init__(self, start: float = 1_700_000_000.0):
        super().__init__()
        self._now = start
        self._queue: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(callback)
        self._push(self._now + max(0.0, delay), handle)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(callback, interval)
        self._push(self._now + interval, handle)
        return handle

    def _push(self, when: float, handle: TimerHandle) -> None:
        heapq.heappush(self._queue, (when, next(self._seq), handle))

    @property
    def active_timers(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in time order."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = when
            if handle.repeating:
                self._push(when + handle.interval, handle)
            handle.callback()
        self._now = target
