"""Tests for the scheduler, history bootstrap and persistence debouncer."""

import asyncio
import pytest

from chatsync.actions import Snapshot
from chatsync.bootstrap import BootstrapState, HistoryBootstrap
from chatsync.debouncer import PersistenceDebouncer
from chatsync.errors import PersistenceError
from chatsync.models import Message
from chatsync.scheduler import AsyncioScheduler, VirtualScheduler


@pytest.fixture
def scheduler():
    return VirtualScheduler()


class TestVirtualScheduler:
    """Tests for the virtual clock."""

    @pytest.mark.asyncio
    async def test_runs_due_callbacks_in_order(self, scheduler):
        """Test callbacks fire in due-time order."""
        fired = []
        scheduler.schedule(2.0, lambda: fired.append("late"))
        scheduler.schedule(1.0, lambda: fired.append("early"))

        await scheduler.advance(1.5)
        assert fired == ["early"]

        await scheduler.advance(1.0)
        assert fired == ["early", "late"]

    @pytest.mark.asyncio
    async def test_cancelled_callback_skipped(self, scheduler):
        """Test a cancelled task never runs."""
        fired = []
        task = scheduler.schedule(1.0, lambda: fired.append(True))
        task.cancel()

        await scheduler.advance(5.0)

        assert fired == []
        assert task.cancelled
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_awaits_coroutine_callbacks(self, scheduler):
        """Test coroutine callbacks complete within advance()."""
        fired = []

        async def callback():
            await asyncio.sleep(0)
            fired.append(True)

        scheduler.schedule(1.0, callback)
        await scheduler.advance(1.0)

        assert fired == [True]


class TestAsyncioScheduler:
    """Tests for the event loop scheduler."""

    @pytest.mark.asyncio
    async def test_fires_after_delay(self):
        """Test a callback runs on the loop after its delay."""
        fired = asyncio.Event()
        AsyncioScheduler().schedule(0.01, fired.set)

        await asyncio.wait_for(fired.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test cancelling prevents the callback."""
        fired = []
        task = AsyncioScheduler().schedule(0.01, lambda: fired.append(True))
        task.cancel()

        await asyncio.sleep(0.05)

        assert fired == []
        assert task.cancelled


class TestHistoryBootstrap:
    """Tests for the AwaitingSnapshot -> Live state machine."""

    @pytest.fixture
    def transitions(self):
        return []

    @pytest.fixture
    def bootstrap(self, scheduler, transitions):
        return HistoryBootstrap(scheduler, transitions.append, timeout=4.0)

    def test_initial_state(self, bootstrap):
        """Test the machine starts awaiting a snapshot."""
        assert bootstrap.state is BootstrapState.AWAITING_SNAPSHOT
        assert bootstrap.is_live is False

    @pytest.mark.asyncio
    async def test_snapshot_before_timeout(self, bootstrap, scheduler, transitions):
        """Test a snapshot moves to live and cancels the timer."""
        bootstrap.begin()
        msg = Message(id="m1", text="hi", sender_id="A")

        accepted = bootstrap.offer_snapshot(Snapshot(messages=[msg]))

        assert accepted is True
        assert bootstrap.state is BootstrapState.LIVE
        assert transitions == [[msg]]
        assert scheduler.pending == 0

        await scheduler.advance(10.0)
        assert len(transitions) == 1

    @pytest.mark.asyncio
    async def test_timeout_goes_live_empty_once(self, bootstrap, scheduler, transitions):
        """Test the timeout transitions exactly once with an empty log."""
        bootstrap.begin()

        await scheduler.advance(3.9)
        assert transitions == []

        await scheduler.advance(0.2)
        assert transitions == [[]]
        assert bootstrap.is_live

    @pytest.mark.asyncio
    async def test_late_snapshot_ignored(self, bootstrap, scheduler, transitions):
        """Test a snapshot after the timeout is ignored."""
        bootstrap.begin()
        await scheduler.advance(4.0)

        accepted = bootstrap.offer_snapshot(
            Snapshot(messages=[Message(id="m1", text="late", sender_id="A")])
        )

        assert accepted is False
        assert transitions == [[]]

    def test_second_snapshot_ignored(self, bootstrap, transitions):
        """Test only the first snapshot is used."""
        bootstrap.begin()
        first = Message(id="m1", text="first", sender_id="A")

        bootstrap.offer_snapshot(Snapshot(messages=[first]))
        bootstrap.offer_snapshot(Snapshot(messages=[]))

        assert transitions == [[first]]

    def test_cleared_snapshot_goes_live_empty(self, bootstrap, transitions):
        """Test the cleared sentinel yields an empty initial log."""
        bootstrap.begin()

        bootstrap.offer_snapshot(Snapshot(messages=[], cleared=True))

        assert transitions == [[]]

    @pytest.mark.asyncio
    async def test_cancel_stops_timer(self, bootstrap, scheduler, transitions):
        """Test teardown cancels the pending timeout."""
        bootstrap.begin()
        bootstrap.cancel()

        await scheduler.advance(10.0)

        assert transitions == []
        assert bootstrap.state is BootstrapState.AWAITING_SNAPSHOT

    def test_begin_twice_schedules_once(self, bootstrap, scheduler):
        """Test begin() is idempotent."""
        bootstrap.begin()
        bootstrap.begin()

        assert scheduler.pending == 1


class TestPersistenceDebouncer:
    """Tests for debounced snapshot writes."""

    @pytest.fixture
    def writes(self):
        return []

    @pytest.fixture
    def ready(self):
        return {"value": True}

    @pytest.fixture
    def debouncer(self, scheduler, writes, ready):
        async def write(messages):
            writes.append(messages)

        return PersistenceDebouncer(
            scheduler, write, lambda: ready["value"], delay=1.5
        )

    @pytest.mark.asyncio
    async def test_coalesces_bursts(self, debouncer, scheduler, writes):
        """Test rapid mutations produce a single write of the latest log."""
        a = Message(id="a", text="1", sender_id="A")
        b = Message(id="b", text="2", sender_id="A")

        debouncer.schedule([a])
        await scheduler.advance(1.0)
        debouncer.schedule([a, b])
        await scheduler.advance(1.0)

        assert writes == []

        await scheduler.advance(0.5)
        assert writes == [[a, b]]
        assert debouncer.writes == 1

    @pytest.mark.asyncio
    async def test_not_ready_skips(self, debouncer, scheduler, writes, ready):
        """Test nothing is scheduled while the snapshot is still loading."""
        ready["value"] = False

        debouncer.schedule([Message(id="a", text="1", sender_id="A")])
        await scheduler.advance(5.0)

        assert writes == []
        assert debouncer.has_pending is False

    @pytest.mark.asyncio
    async def test_filters_transient_messages(self, debouncer, scheduler, writes):
        """Test error and system messages are not persisted."""
        real = Message(id="a", text="1", sender_id="A")

        debouncer.schedule([
            real,
            Message(id="e", text="failed", sender_id="A", is_error=True),
            Message(id="s", text="notice", sender_id="system"),
        ])
        await scheduler.advance(1.5)

        assert writes == [[real]]

    @pytest.mark.asyncio
    async def test_flush_writes_now(self, debouncer, scheduler, writes):
        """Test flush writes immediately and drops the pending write."""
        a = Message(id="a", text="1", sender_id="A")
        debouncer.schedule([a])

        assert await debouncer.flush([a]) is True
        await scheduler.advance(5.0)

        assert writes == [[a]]

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_retried(self, scheduler):
        """Test a failed write waits for the next natural cycle."""
        attempts = []

        async def write(messages):
            attempts.append(messages)
            raise PersistenceError("broker said no")

        debouncer = PersistenceDebouncer(scheduler, write, lambda: True, delay=1.5)
        debouncer.schedule([])
        await scheduler.advance(30.0)

        assert len(attempts) == 1
        assert debouncer.failures == 1
        assert debouncer.writes == 0

    @pytest.mark.asyncio
    async def test_writes_run_one_at_a_time(self, scheduler):
        """Test a flush waits for the running write and lands after it."""
        landed = []
        release = asyncio.Event()

        async def write(messages):
            if not landed and not release.is_set():
                await release.wait()
            landed.append([m.id for m in messages])

        debouncer = PersistenceDebouncer(scheduler, write, lambda: True, delay=1.5)
        a = Message(id="a", text="1", sender_id="A")
        b = Message(id="b", text="2", sender_id="A")

        debouncer.schedule([a])
        firing = asyncio.ensure_future(scheduler.advance(1.5))
        await asyncio.sleep(0)
        assert debouncer.is_writing

        flushing = asyncio.ensure_future(debouncer.flush([a, b]))
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(firing, flushing)

        assert landed == [["a"], ["a", "b"]]

    @pytest.mark.asyncio
    async def test_shutdown_refuses_writes(self, debouncer, scheduler, writes):
        """Test nothing is written once persistence is shut down."""
        debouncer.schedule([])
        debouncer.shutdown()
        debouncer.schedule([Message(id="a", text="1", sender_id="A")])

        assert await debouncer.flush([]) is False
        await scheduler.advance(5.0)

        assert writes == []
        assert debouncer.has_pending is False

    @pytest.mark.asyncio
    async def test_clear_supersedes_pending(self, scheduler, writes):
        """Test clear drops the pending write and runs the clear callback."""
        cleared = []

        async def write(messages):
            writes.append(messages)

        async def clear():
            cleared.append(True)

        debouncer = PersistenceDebouncer(
            scheduler, write, lambda: True, delay=1.5, clear=clear
        )
        debouncer.schedule([Message(id="a", text="1", sender_id="A")])

        assert await debouncer.clear() is True
        await scheduler.advance(5.0)

        assert cleared == [True]
        assert writes == []

    @pytest.mark.asyncio
    async def test_cancel(self, debouncer, scheduler, writes):
        """Test cancel drops the pending write."""
        debouncer.schedule([])
        debouncer.cancel()

        await scheduler.advance(5.0)

        assert writes == []
