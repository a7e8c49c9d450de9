"""Live sync controller: owns the transport session and the message log."""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable

from .actions import (
    Action,
    ClearAllHistory,
    DeleteMessage,
    HistoryCleared,
    NewMessage,
    Snapshot,
    ToggleReaction,
    decode_action,
    decode_snapshot,
    encode_action,
)
from .bootstrap import BootstrapState, HistoryBootstrap
from .config import Config
from .debouncer import PersistenceDebouncer
from .errors import DecodeError, PersistenceError, TransportError
from .history_store import HistoryStore, RemoteHistoryStore, RetainedHistoryStore
from .identity import resolve_client_id
from .models import SYSTEM_SENDER_ID, Message, ReplyReference
from .policy import AccessPolicy
from .reducer import apply_action
from .scheduler import AsyncioScheduler, Scheduler
from .transport import MQTTTransport, Transport, TransportHandler

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Session connection status, driven only by transport events."""

    CONNECTING = "Connecting..."
    CONNECTED = "Connected"
    RECONNECTING = "Reconnecting..."
    DISCONNECTED = "Disconnected"
    ERROR = "Connection Error"


LogListener = Callable[[list[Message]], None]
StatusListener = Callable[[ConnectionStatus], None]


class LiveSyncController(TransportHandler):
    """Reconciles the local message log with the live and snapshot channels.

    All log mutations happen on the event loop thread, one reducer call at a
    time. Local actions are applied optimistically and then published; while
    not connected the publish is dropped, not queued, and the local copy is
    kept.

    Usable as an async context manager: the transport is connected on entry
    and released on every exit path.
    """

    def __init__(
        self,
        transport: Transport,
        client_id: str,
        config: Config | None = None,
        scheduler: Scheduler | None = None,
        history_store: HistoryStore | None = None,
        policy: AccessPolicy | None = None,
        on_change: LogListener | None = None,
        on_status: StatusListener | None = None,
    ):
        """Initialize the controller.

        Args:
            transport: Transport session, owned by this controller from now on.
            client_id: Local actor id.
            config: Configuration; defaults are used if None.
            scheduler: Timer source. Defaults to the asyncio loop.
            history_store: Snapshot target. Built from ``config.history`` if None.
            policy: Local access policy for user actions.
            on_change: Called with the new log after every mutation.
            on_status: Called when the connection status changes.
        """
        self.config = config or Config()
        self.client_id = client_id
        self._transport = transport
        self._scheduler = scheduler or AsyncioScheduler()
        self._policy = policy or AccessPolicy()
        self._on_change = on_change
        self._on_status = on_status

        self._chat_topic = self.config.topics.chat
        self._history_topic = self.config.topics.history

        self._store = history_store or self._create_store()
        self._bootstrap = HistoryBootstrap(
            self._scheduler,
            self._on_live,
            timeout=self.config.sync.history_timeout_seconds,
        )
        self._debouncer = PersistenceDebouncer(
            self._scheduler,
            self._store.save,
            lambda: self._bootstrap.is_live,
            delay=self.config.sync.persist_debounce_seconds,
            clear=self._store.clear,
        )

        self._messages: list[Message] = []
        self._status = ConnectionStatus.CONNECTING
        self._started = False
        self._closed = False
        self._snapshot_subscribed = False
        self._live_subscribed = False
        self._tasks: set[asyncio.Task] = set()
        self.decode_failures = 0

        self._transport.bind(self)

    def _create_store(self) -> HistoryStore:
        history = self.config.history
        if history.backend == "remote":
            return RemoteHistoryStore(
                history.remote_url,
                timeout=history.timeout_seconds,
                max_retries=history.load_retry_attempts,
            )
        return RetainedHistoryStore(self._publish_raw, self._history_topic)

    # ==================== State ====================

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def bootstrap_state(self) -> BootstrapState:
        return self._bootstrap.state

    @property
    def is_loading_history(self) -> bool:
        return not self._bootstrap.is_live

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_message(self, message_id: str) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    # ==================== Lifecycle ====================

    async def start(self) -> bool:
        """Start bootstrap and connect the transport.

        Returns:
            True if the transport connected.
        """
        if self._started:
            return self._transport.is_connected
        self._started = True

        self._bootstrap.begin()
        if not self._store.uses_snapshot_channel:
            self._spawn(self._load_remote_history())

        connected = await self._transport.connect()
        if not connected:
            logger.warning("Transport did not connect, staying offline")
        return connected

    async def close(self) -> None:
        """Flush history once and release the transport."""
        if self._closed:
            return
        self._closed = True
        self._bootstrap.cancel()

        try:
            if self._bootstrap.is_live:
                # Waits for a write already in flight, so this one lands last
                await self._debouncer.flush(self._messages)
                # Let the final publish leave before the socket goes away
                if self.config.sync.exit_grace_seconds > 0:
                    await asyncio.sleep(self.config.sync.exit_grace_seconds)
        finally:
            self._debouncer.shutdown()
            await self._release()

    async def wait_idle(self) -> None:
        """Wait for background subscribe/publish work to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def __aenter__(self) -> "LiveSyncController":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def _release(self) -> None:
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()
        try:
            await self._transport.disconnect()
        except (TransportError, OSError) as e:
            logger.error(f"Error releasing transport: {e}")

    async def _force_close(self) -> None:
        """Close without flushing; the transport is already unusable."""
        if self._closed:
            return
        self._closed = True
        self._bootstrap.cancel()
        self._debouncer.shutdown()
        await self._release()

    # ==================== Local actions ====================

    async def dispatch_local(self, action: Action) -> bool:
        """Apply a locally originated action, then publish it.

        Returns:
            True if the action was handed to the transport.
        """
        self._apply(action)
        return await self._publish_action(action)

    async def send_message(
        self,
        text: str,
        reply_to: Message | ReplyReference | None = None,
    ) -> Message | None:
        """Send a new message, optionally quoting another one.

        Returns:
            The new message, or None if the text was empty.
        """
        if not self._policy.can_send(text):
            return None

        if isinstance(reply_to, Message):
            reply_to = reply_to.quote()

        message = Message(
            id=str(uuid.uuid4()),
            text=text,
            sender_id=self.client_id,
            reply_to=reply_to,
        )
        await self.dispatch_local(NewMessage(message))
        return message

    async def delete_message(self, message_id: str) -> bool:
        """Delete one of the local actor's own messages."""
        message = self.get_message(message_id)
        if not self._policy.can_delete(message, self.client_id):
            logger.debug(f"Not allowed to delete message {message_id}")
            return False
        await self.dispatch_local(DeleteMessage(message_id))
        return True

    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        """Toggle the local actor's reaction on a message."""
        message = self.get_message(message_id)
        if not self._policy.can_react(message, emoji, self.client_id):
            logger.debug(f"Not allowed to react with {emoji!r} on {message_id}")
            return False
        await self.dispatch_local(ToggleReaction(message_id, emoji, self.client_id))
        return True

    async def clear_history(self) -> bool:
        """Clear the log for everyone and wipe the persisted snapshot."""
        if not self._policy.can_clear_history(self.client_id):
            return False

        await self.dispatch_local(ClearAllHistory())

        # The empty snapshot is written straight away rather than debounced
        await self._debouncer.clear()
        return True

    def add_system_notice(self, text: str, is_error: bool = False) -> Message:
        """Append a local-only notice. It is never published or persisted."""
        message = Message(
            id=str(uuid.uuid4()),
            text=text,
            sender_id=SYSTEM_SENDER_ID,
            is_error=is_error,
        )
        self._apply(NewMessage(message))
        return message

    # ==================== Transport events ====================

    def on_connected(self) -> None:
        self._set_status(ConnectionStatus.CONNECTED)
        # Subscriptions do not survive a new connection
        self._snapshot_subscribed = False
        self._live_subscribed = False
        self._spawn(self._sync_subscriptions())

    def on_reconnecting(self) -> None:
        self._set_status(ConnectionStatus.RECONNECTING)

    def on_disconnected(self) -> None:
        if self._status is ConnectionStatus.ERROR:
            return
        self._set_status(ConnectionStatus.DISCONNECTED)

    def on_error(self, error: TransportError) -> None:
        logger.error(f"Connection error: {error}")
        self._set_status(ConnectionStatus.ERROR)
        self._spawn(self._force_close())

    def on_message(self, topic: str, payload: bytes) -> None:
        if topic == self._history_topic:
            self._handle_snapshot(payload)
        elif topic == self._chat_topic:
            self._handle_live(payload)
        else:
            logger.debug(f"Ignoring message on unexpected topic {topic}")

    def _handle_snapshot(self, payload: bytes) -> None:
        if self._bootstrap.is_live:
            logger.debug("Ignoring late history snapshot")
            return

        try:
            snapshot = decode_snapshot(payload)
        except DecodeError as e:
            self.decode_failures += 1
            logger.error(f"Error parsing history snapshot: {e}")
            snapshot = Snapshot(messages=[])
        self._bootstrap.offer_snapshot(snapshot)

    def _handle_live(self, payload: bytes) -> None:
        try:
            action = decode_action(payload)
        except DecodeError as e:
            self.decode_failures += 1
            logger.warning(f"Discarding malformed live payload: {e}")
            return

        if isinstance(action, HistoryCleared):
            logger.debug("Ignoring empty payload on the live channel")
            return

        if isinstance(action, NewMessage) and action.message.sender_id == self.client_id:
            logger.debug(f"Ignoring echo of own message {action.message.id}")
            return

        self._apply(action)

    # ==================== Internals ====================

    def _apply(self, action: Action) -> bool:
        updated = apply_action(self._messages, action, self.client_id)
        if updated is self._messages:
            return False
        self._messages = updated
        if self._on_change:
            self._on_change(list(updated))
        self._debouncer.schedule(updated)
        return True

    def _on_live(self, initial: list[Message]) -> None:
        # Keep anything applied locally while the snapshot was loading
        known = {m.id for m in initial}
        pending = [m for m in self._messages if m.id not in known]
        self._messages = initial + pending
        logger.info(
            f"History loaded with {len(self._messages)} messages, going live",
            extra={"client_id": self.client_id},
        )
        if self._on_change:
            self._on_change(list(self._messages))
        if any(m.is_persistable for m in pending):
            self._debouncer.schedule(self._messages)
        self._spawn(self._enter_live())

    async def _enter_live(self) -> None:
        if self._snapshot_subscribed:
            self._snapshot_subscribed = False
            if self._status is ConnectionStatus.CONNECTED:
                await self._transport.unsubscribe(self._history_topic)
        await self._sync_subscriptions()

    async def _sync_subscriptions(self) -> None:
        """Subscribe to whichever channel the bootstrap state needs."""
        if self._status is not ConnectionStatus.CONNECTED or self._closed:
            return

        if self._bootstrap.is_live:
            if not self._live_subscribed:
                self._live_subscribed = True
                if not await self._transport.subscribe(self._chat_topic):
                    self._live_subscribed = False
                    logger.error("Subscription to live channel failed")
        elif self._store.uses_snapshot_channel and not self._snapshot_subscribed:
            self._snapshot_subscribed = True
            if not await self._transport.subscribe(self._history_topic):
                self._snapshot_subscribed = False
                logger.error("Subscription to history channel failed")

    async def _load_remote_history(self) -> None:
        try:
            messages = await self._store.load()
        except (PersistenceError, DecodeError) as e:
            logger.warning(f"Could not load history from store: {e}")
            return
        if messages is not None:
            self._bootstrap.offer_snapshot(Snapshot(messages=messages))

    async def _publish_action(self, action: Action) -> bool:
        if self._status is not ConnectionStatus.CONNECTED:
            logger.warning(
                f"Not connected ({self._status.value}), dropping outbound {type(action).__name__}"
            )
            return False

        try:
            accepted = await self._transport.publish(self._chat_topic, encode_action(action))
        except TransportError as e:
            logger.error(f"Failed to publish {type(action).__name__}: {e}")
            return False

        if not accepted:
            logger.warning(f"Transport rejected {type(action).__name__}")
        return accepted

    async def _publish_raw(self, topic: str, payload: bytes, retain: bool) -> bool:
        if self._status is not ConnectionStatus.CONNECTED:
            return False
        try:
            return await self._transport.publish(topic, payload, retain=retain)
        except TransportError as e:
            logger.error(f"Failed to publish to {topic}: {e}")
            return False

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        logger.info(
            f"Connection status: {status.value}", extra={"client_id": self.client_id}
        )
        self._status = status
        if self._on_status:
            self._on_status(status)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")


def create_controller(config: Config, **kwargs: Any) -> LiveSyncController:
    """Build a controller over an MQTT transport with the configured identity.

    Extra keyword arguments are passed to LiveSyncController.
    """
    client_id = resolve_client_id(
        config.client.identity_path, ephemeral=config.client.ephemeral
    )
    transport = MQTTTransport(config.mqtt, client_id)
    return LiveSyncController(transport, client_id, config=config, **kwargs)
