"""Tests for the MQTT transport."""

import asyncio
import pytest
from unittest.mock import MagicMock, patch

import paho.mqtt.client as mqtt

from chatsync.config import MQTTConfig
from chatsync.errors import TransportError
from chatsync.transport import QOS_AT_LEAST_ONCE, MQTTTransport, TransportHandler


class RecordingHandler(TransportHandler):
    """Handler that records every event it sees."""

    def __init__(self):
        self.events = []

    def on_connected(self):
        self.events.append(("connected",))

    def on_reconnecting(self):
        self.events.append(("reconnecting",))

    def on_disconnected(self):
        self.events.append(("disconnected",))

    def on_message(self, topic, payload):
        self.events.append(("message", topic, payload))

    def on_error(self, error):
        self.events.append(("error", error))


@pytest.fixture
def mock_client():
    with patch("chatsync.transport.mqtt.Client") as client_cls:
        yield client_cls


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def transport(mock_client, handler):
    transport = MQTTTransport(MQTTConfig(), "chat-client-test", connect_timeout=0.2)
    transport.bind(handler)

    # Simulate the broker accepting the connection straight away
    mock_client.return_value.connect.side_effect = (
        lambda *args, **kwargs: transport._handle_connect(None, None, {}, 0)
    )
    return transport


class TestMQTTTransport:
    """Tests for MQTTTransport."""

    def test_client_setup(self, mock_client):
        """Test the paho client is built with the v2 callback API."""
        MQTTTransport(
            MQTTConfig(transport="websockets", websocket_path="/ws"), "chat-client-x"
        )

        args, kwargs = mock_client.call_args
        assert args == (mqtt.CallbackAPIVersion.VERSION2,)
        assert kwargs["client_id"] == "chat-client-x"
        assert kwargs["transport"] == "websockets"
        mock_client.return_value.ws_set_options.assert_called_once_with(path="/ws")

    @pytest.mark.asyncio
    async def test_connect(self, transport, handler, mock_client):
        """Test a successful connect reaches the handler on the loop."""
        assert await transport.connect() is True
        await asyncio.sleep(0)

        assert transport.is_connected
        assert handler.events == [("connected",)]
        mock_client.return_value.connect.assert_called_once_with(
            "localhost", 1883, keepalive=60
        )
        mock_client.return_value.loop_start.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_refused(self, transport, handler, mock_client):
        """Test a rejected CONNACK is reported as a transport error."""
        mock_client.return_value.connect.side_effect = (
            lambda *args, **kwargs: transport._handle_connect(None, None, {}, 5)
        )

        assert await transport.connect() is False
        await asyncio.sleep(0)

        assert len(handler.events) == 1
        kind, error = handler.events[0]
        assert kind == "error"
        assert isinstance(error, TransportError)

    @pytest.mark.asyncio
    async def test_connect_socket_error(self, transport, handler, mock_client):
        """Test a socket failure is reported as a transport error."""
        mock_client.return_value.connect.side_effect = OSError("unreachable")

        assert await transport.connect() is False
        await asyncio.sleep(0)

        assert handler.events[0][0] == "error"
        mock_client.return_value.loop_start.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_dispatch(self, transport, handler):
        """Test inbound messages are handed to the handler as bytes."""
        await transport.connect()
        msg = MagicMock(topic="chat", payload=b'{"type":"clear_all_history"}')

        transport._handle_message(None, None, msg)
        await asyncio.sleep(0)

        assert handler.events[-1] == ("message", "chat", b'{"type":"clear_all_history"}')

    @pytest.mark.asyncio
    async def test_unexpected_disconnect_reconnects(self, transport, handler):
        """Test a dropped connection reports reconnecting."""
        await transport.connect()

        transport._handle_disconnect(None, None, {}, 7)
        await asyncio.sleep(0)

        assert handler.events[-1] == ("reconnecting",)
        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_requested_disconnect(self, transport, handler, mock_client):
        """Test a disconnect we asked for reports disconnected."""
        await transport.connect()
        await transport.disconnect()

        transport._handle_disconnect(None, None, {}, 0)
        await asyncio.sleep(0)

        assert handler.events[-1] == ("disconnected",)
        mock_client.return_value.loop_stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_publish(self, transport, mock_client):
        """Test publish uses at-least-once delivery."""
        mock_client.return_value.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
        await transport.connect()

        ok = await transport.publish("history", b"[]", retain=True)

        assert ok is True
        mock_client.return_value.publish.assert_called_once_with(
            "history", b"[]", qos=QOS_AT_LEAST_ONCE, retain=True
        )

    @pytest.mark.asyncio
    async def test_publish_not_connected(self, transport, mock_client):
        """Test publish is refused before connecting."""
        assert await transport.publish("chat", b"{}") is False
        mock_client.return_value.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_subscribe(self, transport, mock_client):
        """Test subscribe reports the broker client result."""
        mock_client.return_value.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 1)
        assert await transport.subscribe("chat") is True
        mock_client.return_value.subscribe.assert_called_once_with(
            "chat", qos=QOS_AT_LEAST_ONCE
        )

        mock_client.return_value.subscribe.return_value = (mqtt.MQTT_ERR_NO_CONN, None)
        assert await transport.subscribe("chat") is False
