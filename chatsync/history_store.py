"""Pluggable targets for history snapshots.

Both targets are last-write-wins: a save replaces the whole history and no
merge is attempted.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import httpx

from .actions import encode_snapshot, messages_from_json
from .errors import DecodeError, PersistenceError
from .models import Message

logger = logging.getLogger(__name__)

# (topic, payload, retain) -> accepted
Publisher = Callable[[str, bytes, bool], Awaitable[bool]]


class HistoryStore(ABC):
    """Where the persisted history lives."""

    @property
    @abstractmethod
    def uses_snapshot_channel(self) -> bool:
        """True if the snapshot is delivered on the snapshot channel instead of ``load()``."""
        pass

    @abstractmethod
    async def load(self) -> list[Message] | None:
        """Fetch the persisted history.

        Returns:
            The messages, or None when the snapshot arrives some other way.
        """
        pass

    @abstractmethod
    async def save(self, messages: list[Message]) -> None:
        """Replace the persisted history.

        Raises:
            PersistenceError: The write failed.
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Explicitly clear the persisted history.

        Raises:
            PersistenceError: The write failed.
        """
        pass


class RetainedHistoryStore(HistoryStore):
    """History kept as a retained message on the snapshot channel.

    Writes go through the publisher handed in by the session controller, which
    owns the transport.
    """

    def __init__(self, publish: Publisher, topic: str):
        self._publish = publish
        self.topic = topic

    @property
    def uses_snapshot_channel(self) -> bool:
        return True

    async def load(self) -> list[Message] | None:
        return None

    async def save(self, messages: list[Message]) -> None:
        await self._write(encode_snapshot(messages))

    async def clear(self) -> None:
        # An empty retained payload is the "cleared" sentinel
        await self._write(b"")

    async def _write(self, payload: bytes) -> None:
        if not await self._publish(self.topic, payload, True):
            raise PersistenceError(f"Retained publish to {self.topic} was not accepted")


class RemoteHistoryStore(HistoryStore):
    """History kept in a remote key-value store behind ``GET/POST /history``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the remote store client.

        Args:
            base_url: Base URL of the store (e.g., "http://host:8000").
            timeout: Request timeout in seconds.
            max_retries: Attempts for ``load()``. Saves are never retried.
            transport: Optional httpx transport, mainly for tests.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    @property
    def uses_snapshot_channel(self) -> bool:
        return False

    @property
    def url(self) -> str:
        return f"{self.base_url}/history"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def load(self) -> list[Message] | None:
        """Fetch history, retrying server and network errors with backoff.

        Raises:
            PersistenceError: The history could not be fetched.
            DecodeError: The store returned something that isn't a message list.
        """
        backoff = 1.0

        async with self._client() as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.get(self.url)

                    if response.status_code == 200:
                        return messages_from_json(response.json())

                    elif response.status_code >= 500:
                        # Server error, retry
                        logger.warning(
                            f"History store error {response.status_code}, "
                            f"attempt {attempt + 1}/{self.max_retries}"
                        )
                    else:
                        # Client error, don't retry
                        raise PersistenceError(
                            f"HTTP {response.status_code}: {response.text}"
                        )

                except httpx.TransportError as e:
                    logger.warning(
                        f"History store unreachable ({type(e).__name__}), "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                except ValueError as e:
                    raise DecodeError(f"History store returned invalid JSON: {e}") from e

                # Exponential backoff
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        raise PersistenceError(f"Max retries ({self.max_retries}) exceeded loading history")

    async def save(self, messages: list[Message]) -> None:
        await self._post([m.to_dict() for m in messages])

    async def clear(self) -> None:
        await self._post([])

    async def _post(self, body: list[dict[str, Any]]) -> None:
        try:
            async with self._client() as client:
                response = await client.post(self.url, json=body)
        except httpx.HTTPError as e:
            raise PersistenceError(f"Failed to reach history store: {e}") from e

        if response.status_code != 200:
            raise PersistenceError(f"HTTP {response.status_code}: {response.text}")
