"""Configuration loading for chatsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ClientConfig:
    identity_path: str = "~/.chatsync/client_id"
    ephemeral: bool = False  # Fresh id per session, never persisted


@dataclass
class MQTTConfig:
    broker: str = "localhost"
    port: int = 1883
    transport: str = "tcp"  # "tcp" or "websockets"
    websocket_path: str = "/mqtt"
    tls: bool = False
    keepalive: int = 60
    username: str | None = None
    password: str | None = None


@dataclass
class TopicsConfig:
    chat: str = "chatsync/realtime-chat"
    history: str = "chatsync/history"


@dataclass
class SyncConfig:
    """Timing for bootstrap and persistence."""

    history_timeout_seconds: float = 4.0
    persist_debounce_seconds: float = 1.5
    exit_grace_seconds: float = 0.2


@dataclass
class HistoryConfig:
    """Where history snapshots are written.

    ``retained`` republishes the log as a retained message on the history
    topic; ``remote`` talks to an HTTP store at ``remote_url``.
    """

    backend: str = "retained"
    remote_url: str = ""
    timeout_seconds: float = 10.0
    load_retry_attempts: int = 3


@dataclass
class ServerConfig:
    """Configuration for the reference history store server."""

    db_path: str = "~/.chatsync/history.db"
    history_key: str = "global-chat-history"


@dataclass
class Config:
    client: ClientConfig = field(default_factory=ClientConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    topics: TopicsConfig = field(default_factory=TopicsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


HISTORY_BACKENDS = ("retained", "remote")
MQTT_TRANSPORTS = ("tcp", "websockets")


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CHATSYNC_ prefix."""
    return os.environ.get(f"CHATSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Client overrides
    if identity_path := _get_env("IDENTITY_PATH"):
        config.client.identity_path = identity_path
    if ephemeral := _get_env("EPHEMERAL"):
        config.client.ephemeral = _is_true(ephemeral)

    # MQTT overrides
    if broker := _get_env("MQTT_BROKER"):
        config.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.mqtt.port = int(port)
    if transport := _get_env("MQTT_TRANSPORT"):
        config.mqtt.transport = transport
    if username := _get_env("MQTT_USERNAME"):
        config.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.mqtt.password = password

    # Topic overrides
    if chat_topic := _get_env("CHAT_TOPIC"):
        config.topics.chat = chat_topic
    if history_topic := _get_env("HISTORY_TOPIC"):
        config.topics.history = history_topic

    # History overrides
    if backend := _get_env("HISTORY_BACKEND"):
        config.history.backend = backend
    if history_url := _get_env("HISTORY_URL"):
        config.history.remote_url = history_url

    # Server overrides
    if db_path := _get_env("SERVER_DB_PATH"):
        config.server.db_path = db_path

    return config


def _validate(config: Config) -> None:
    if config.history.backend not in HISTORY_BACKENDS:
        raise ValueError(
            f"Unknown history backend {config.history.backend!r}, "
            f"expected one of {HISTORY_BACKENDS}"
        )
    if config.history.backend == "remote" and not config.history.remote_url:
        raise ValueError("history.remote_url is required for the remote backend")
    if config.mqtt.transport not in MQTT_TRANSPORTS:
        raise ValueError(
            f"Unknown MQTT transport {config.mqtt.transport!r}, "
            f"expected one of {MQTT_TRANSPORTS}"
        )
    if config.topics.chat == config.topics.history:
        raise ValueError("Chat and history topics must differ")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: The resulting configuration is inconsistent.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse client config
            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    identity_path=client_data.get(
                        "identity_path", config.client.identity_path
                    ),
                    ephemeral=client_data.get("ephemeral", config.client.ephemeral),
                )

            # Parse MQTT config
            if "mqtt" in data:
                mqtt_data = data["mqtt"]
                config.mqtt = MQTTConfig(
                    broker=mqtt_data.get("broker", config.mqtt.broker),
                    port=mqtt_data.get("port", config.mqtt.port),
                    transport=mqtt_data.get("transport", config.mqtt.transport),
                    websocket_path=mqtt_data.get(
                        "websocket_path", config.mqtt.websocket_path
                    ),
                    tls=mqtt_data.get("tls", config.mqtt.tls),
                    keepalive=mqtt_data.get("keepalive", config.mqtt.keepalive),
                    username=mqtt_data.get("username"),
                    password=mqtt_data.get("password"),
                )

            # Parse topics config
            if "topics" in data:
                topics_data = data["topics"]
                config.topics = TopicsConfig(
                    chat=topics_data.get("chat", config.topics.chat),
                    history=topics_data.get("history", config.topics.history),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    history_timeout_seconds=sync_data.get(
                        "history_timeout_seconds", config.sync.history_timeout_seconds
                    ),
                    persist_debounce_seconds=sync_data.get(
                        "persist_debounce_seconds", config.sync.persist_debounce_seconds
                    ),
                    exit_grace_seconds=sync_data.get(
                        "exit_grace_seconds", config.sync.exit_grace_seconds
                    ),
                )

            # Parse history config
            if "history" in data:
                history_data = data["history"]
                config.history = HistoryConfig(
                    backend=history_data.get("backend", config.history.backend),
                    remote_url=history_data.get("remote_url", config.history.remote_url),
                    timeout_seconds=history_data.get(
                        "timeout_seconds", config.history.timeout_seconds
                    ),
                    load_retry_attempts=history_data.get(
                        "load_retry_attempts", config.history.load_retry_attempts
                    ),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    db_path=server_data.get("db_path", config.server.db_path),
                    history_key=server_data.get(
                        "history_key", config.server.history_key
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)
    _validate(config)

    return config
