"""Coalesces log mutations into infrequent history snapshot writes."""

import asyncio
import logging
from typing import Awaitable, Callable

from .errors import PersistenceError
from .models import Message, persistable
from .scheduler import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_DELAY = 1.5

Writer = Callable[[list[Message]], Awaitable[None]]
Clearer = Callable[[], Awaitable[None]]


class PersistenceDebouncer:
    """Debounced writer for history snapshots.

    Each ``schedule()`` call replaces the pending write, so a burst of
    mutations produces a single write once things go quiet. Nothing is
    scheduled until ``is_ready()`` says the initial snapshot has been
    settled, otherwise an empty local log could overwrite real history.

    Writes run one at a time in request order. A write that was requested
    before one that has already run is dropped, so the newest snapshot is
    always the last one to land.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        write: Writer,
        is_ready: Callable[[], bool],
        delay: float = DEFAULT_DEBOUNCE_DELAY,
        clear: Clearer | None = None,
    ):
        self._scheduler = scheduler
        self._write = write
        self._clear = clear
        self._is_ready = is_ready
        self._delay = delay
        self._pending: ScheduledTask | None = None
        self._lock = asyncio.Lock()
        self._requested = 0
        self._last_run = 0
        self._stopped = False
        self.writes = 0
        self.failures = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def is_writing(self) -> bool:
        return self._lock.locked()

    def schedule(self, log: list[Message]) -> None:
        """Schedule a write of ``log`` after the quiet period."""
        if self._stopped:
            return
        if not self._is_ready():
            logger.debug("History not loaded yet, skipping persistence")
            return

        self.cancel()
        snapshot = persistable(log)
        generation = self._next_generation()

        async def _fire() -> None:
            self._pending = None
            await self._run(generation, lambda: self._write(snapshot), len(snapshot))

        self._pending = self._scheduler.schedule(self._delay, _fire)

    async def flush(self, log: list[Message]) -> bool:
        """Write ``log`` now, dropping any pending write.

        A write that is already running is waited for first.

        Returns:
            True if the write succeeded.
        """
        self.cancel()
        if self._stopped or not self._is_ready():
            logger.debug("History not loaded yet, skipping final flush")
            return False
        snapshot = persistable(log)
        return await self._run(
            self._next_generation(), lambda: self._write(snapshot), len(snapshot)
        )

    async def clear(self) -> bool:
        """Write the cleared history now, superseding pending and running writes."""
        self.cancel()
        if self._clear is None or self._stopped or not self._is_ready():
            return False
        return await self._run(self._next_generation(), self._clear, 0)

    def cancel(self) -> None:
        """Drop the pending write, if any."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def shutdown(self) -> None:
        """Drop the pending write and refuse any further ones.

        Writes still waiting for their turn are dropped too.
        """
        self._stopped = True
        self.cancel()

    def _next_generation(self) -> int:
        self._requested += 1
        return self._requested

    async def _run(
        self,
        generation: int,
        operation: Callable[[], Awaitable[None]],
        count: int,
    ) -> bool:
        async with self._lock:
            if self._stopped:
                logger.debug("Persistence stopped, dropping write")
                return False
            if generation < self._last_run:
                logger.debug(f"Dropping stale history write #{generation}")
                return False
            self._last_run = generation

            try:
                await operation()
            except PersistenceError as e:
                # Retried by the next natural debounce cycle only
                self.failures += 1
                logger.warning(f"Failed to persist history: {e}")
                return False

        self.writes += 1
        logger.debug(f"Persisted {count} messages")
        return True
