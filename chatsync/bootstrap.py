"""History bootstrap state machine.

Races the snapshot channel against a timeout. Whichever comes first moves
the session to LIVE; the transition happens exactly once.
"""

import logging
from enum import Enum
from typing import Callable

from .actions import Snapshot
from .models import Message
from .scheduler import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TIMEOUT = 4.0


class BootstrapState(Enum):
    AWAITING_SNAPSHOT = "awaiting_snapshot"
    LIVE = "live"


class HistoryBootstrap:
    """Governs the move from loading a snapshot to live updates.

    A snapshot arriving after the transition (a late retained message, or a
    slow remote load losing the race to the timer) is ignored.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_live: Callable[[list[Message]], None],
        timeout: float = DEFAULT_HISTORY_TIMEOUT,
    ):
        """Initialize the bootstrap.

        Args:
            scheduler: Scheduler for the timeout.
            on_live: Called once with the initial log on transition to LIVE.
            timeout: Seconds to wait for a snapshot before going live empty.
        """
        self._scheduler = scheduler
        self._on_live = on_live
        self._timeout = timeout
        self._state = BootstrapState.AWAITING_SNAPSHOT
        self._received = False
        self._timer: ScheduledTask | None = None

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state is BootstrapState.LIVE

    def begin(self) -> None:
        """Start the timeout. Calling again while a timer is pending is a no-op."""
        if self.is_live or self._timer is not None:
            return
        self._timer = self._scheduler.schedule(self._timeout, self._on_timeout)
        logger.debug(f"Waiting up to {self._timeout}s for history snapshot")

    def offer_snapshot(self, snapshot: Snapshot) -> bool:
        """Offer a snapshot to the state machine.

        Returns:
            True if the snapshot was accepted as the initial log.
        """
        if self._received or self.is_live:
            logger.debug("Ignoring snapshot received after bootstrap completed")
            return False

        self._received = True
        if snapshot.cleared:
            logger.info("History snapshot was explicitly cleared")
        else:
            logger.info(f"Received history snapshot with {len(snapshot.messages)} messages")
        self._go_live(list(snapshot.messages))
        return True

    def cancel(self) -> None:
        """Cancel the pending timeout, if any."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        if self._received or self.is_live:
            return
        self._received = True
        logger.info("No history received, proceeding with empty log")
        self._go_live([])

    def _go_live(self, messages: list[Message]) -> None:
        self.cancel()
        self._state = BootstrapState.LIVE
        self._on_live(messages)
