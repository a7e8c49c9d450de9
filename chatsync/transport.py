"""Pub/sub transport interface and the MQTT driver behind it."""

import asyncio
import logging
import ssl
from abc import ABC, abstractmethod
from typing import Any

import paho.mqtt.client as mqtt

from .config import MQTTConfig
from .errors import TransportError

logger = logging.getLogger(__name__)

# At-least-once delivery for both channels
QOS_AT_LEAST_ONCE = 1


class TransportHandler(ABC):
    """Receives transport events. Always called on the asyncio loop thread."""

    @abstractmethod
    def on_connected(self) -> None:
        pass

    @abstractmethod
    def on_reconnecting(self) -> None:
        pass

    @abstractmethod
    def on_disconnected(self) -> None:
        pass

    @abstractmethod
    def on_message(self, topic: str, payload: bytes) -> None:
        pass

    @abstractmethod
    def on_error(self, error: TransportError) -> None:
        pass


class Transport(ABC):
    """The operations the sync core needs from a pub/sub broker."""

    @abstractmethod
    def bind(self, handler: TransportHandler) -> None:
        """Register the handler that receives transport events."""
        pass

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the broker.

        Returns:
            True if the connection was established.
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def subscribe(self, topic: str) -> bool:
        pass

    @abstractmethod
    async def unsubscribe(self, topic: str) -> bool:
        pass

    @abstractmethod
    async def publish(self, topic: str, payload: bytes, retain: bool = False) -> bool:
        """Publish with at-least-once delivery.

        Returns:
            True if the broker client accepted the message.
        """
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass


class MQTTTransport(Transport):
    """Transport over paho-mqtt.

    Paho runs its network loop on its own thread; every callback is handed
    over to the asyncio loop with ``call_soon_threadsafe`` so the handler only
    ever runs on the loop thread.
    """

    def __init__(
        self,
        config: MQTTConfig,
        client_id: str,
        connect_timeout: float = 5.0,
    ):
        self.config = config
        self.client_id = client_id
        self._connect_timeout = connect_timeout
        self._handler: TransportHandler | None = None

        # Paho MQTT client
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            transport=config.transport,
        )
        if config.transport == "websockets":
            self._client.ws_set_options(path=config.websocket_path)
        if config.tls:
            self._client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_connect_fail = self._handle_connect_fail

        # Connection state
        self._connected = False
        self._closing = False
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, handler: TransportHandler) -> None:
        self._handler = handler

    def _dispatch(self, method: str, *args: Any) -> None:
        """Run a handler method on the asyncio loop."""
        if self._handler is None or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(getattr(self._handler, method), *args)

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")
            self._dispatch("on_connected")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            self._dispatch("on_error", TransportError(f"Connection refused: {reason_code}"))

    def _handle_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        """Handle a failed (re)connection attempt."""
        logger.warning("MQTT connection attempt failed")
        if not self._closing:
            self._dispatch("on_reconnecting")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Handle incoming message."""
        logger.debug(f"Received message on {msg.topic}: {msg.payload[:100]!r}")
        self._dispatch("on_message", msg.topic, bytes(msg.payload))

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        if self._closing:
            logger.info("Disconnected from MQTT broker")
            self._dispatch("on_disconnected")
        else:
            # Paho's network loop reconnects on its own
            logger.warning(f"Lost connection to MQTT broker ({reason_code}), reconnecting")
            self._dispatch("on_reconnecting")

    async def connect(self) -> bool:
        """Connect to the MQTT broker.

        Returns:
            True if connection successful.
        """
        self._loop = asyncio.get_running_loop()
        self._closing = False

        # Set credentials if configured
        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(
                self.config.broker, self.config.port, keepalive=self.config.keepalive
            )
            self._client.loop_start()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self._dispatch("on_error", TransportError(str(e)))
            return False

        # Wait for connection
        steps = max(1, int(self._connect_timeout / 0.1))
        for _ in range(steps):
            if self._connected:
                return True
            await asyncio.sleep(0.1)

        logger.error("Timeout waiting for MQTT connection")
        return False

    async def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        self._closing = True
        self._client.disconnect()
        self._client.loop_stop()
        self._connected = False

    async def subscribe(self, topic: str) -> bool:
        result, _ = self._client.subscribe(topic, qos=QOS_AT_LEAST_ONCE)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to subscribe to {topic}: {mqtt.error_string(result)}")
            return False
        logger.info(f"Subscribed to topic: {topic}")
        return True

    async def unsubscribe(self, topic: str) -> bool:
        result, _ = self._client.unsubscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to unsubscribe from {topic}: {mqtt.error_string(result)}")
            return False
        logger.info(f"Unsubscribed from topic: {topic}")
        return True

    async def publish(self, topic: str, payload: bytes, retain: bool = False) -> bool:
        """Publish a message to a topic.

        Args:
            topic: Topic to publish to.
            payload: Message payload.
            retain: Ask the broker to keep this as the topic's last value.

        Returns:
            True if publish successful.
        """
        if not self._connected:
            logger.error("Cannot publish: not connected to broker")
            return False

        result = self._client.publish(
            topic, payload, qos=QOS_AT_LEAST_ONCE, retain=retain
        )
        return result.rc == mqtt.MQTT_ERR_SUCCESS

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected
