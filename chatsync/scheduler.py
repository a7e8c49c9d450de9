"""Scheduled-task abstraction used for the bootstrap timeout and debounce.

``schedule(delay, callback)`` returns a handle that can be cancelled.
Callbacks may be plain functions or coroutine functions; coroutines are run
as tasks on the event loop.
"""

import asyncio
import heapq
import inspect
import itertools
from abc import ABC, abstractmethod
from typing import Any, Callable

Callback = Callable[[], Any]


class ScheduledTask(ABC):
    """Handle for a pending scheduled callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the callback if it has not run yet."""
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Scheduler(ABC):
    """Runs callbacks after a delay."""

    @abstractmethod
    def schedule(self, delay: float, callback: Callback) -> ScheduledTask:
        """Schedule ``callback`` to run after ``delay`` seconds."""
        pass


class _AsyncioTask(ScheduledTask):
    def __init__(self) -> None:
        self.handle: asyncio.TimerHandle | None = None
        self.task: asyncio.Task | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    @property
    def cancelled(self) -> bool:
        return self.handle is not None and self.handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Scheduler backed by ``loop.call_later``."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, delay: float, callback: Callback) -> ScheduledTask:
        loop = self._get_loop()
        scheduled = _AsyncioTask()

        def _fire() -> None:
            result = callback()
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                scheduled.task = task
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        scheduled.handle = loop.call_later(delay, _fire)
        return scheduled


class _VirtualTask(ScheduledTask):
    def __init__(self, due: float, callback: Callback):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """Deterministic scheduler driven by ``advance()`` instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, _VirtualTask]] = []
        self._counter = itertools.count()

    def schedule(self, delay: float, callback: Callback) -> ScheduledTask:
        task = _VirtualTask(self.now + delay, callback)
        heapq.heappush(self._queue, (task.due, next(self._counter), task))
        return task

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that are still live."""
        return sum(1 for _, _, task in self._queue if not task.cancelled)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due.

        Coroutine callbacks are awaited in order.
        """
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, task = heapq.heappop(self._queue)
            self.now = due
            if task.cancelled:
                continue
            result = task.callback()
            if inspect.isawaitable(result):
                await result
        self.now = target
