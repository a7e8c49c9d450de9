"""chatsync: keeps a local chat log in sync over MQTT.

Provides:
- An action codec and pure log reducer
- History bootstrap from a retained snapshot or a remote store
- A live sync controller owning the transport session
- Debounced snapshot persistence
"""

from .actions import (
    Action,
    ActionType,
    ClearAllHistory,
    DeleteMessage,
    HistoryCleared,
    NewMessage,
    NoOp,
    Snapshot,
    ToggleReaction,
    decode_action,
    decode_snapshot,
    encode_action,
    encode_snapshot,
)
from .bootstrap import BootstrapState, HistoryBootstrap
from .config import Config, load_config
from .controller import ConnectionStatus, LiveSyncController, create_controller
from .debouncer import PersistenceDebouncer
from .errors import ChatSyncError, DecodeError, PersistenceError, TransportError
from .history_store import HistoryStore, RemoteHistoryStore, RetainedHistoryStore
from .identity import IdentityStore, resolve_client_id
from .logs import JSONFormatter, setup_logging
from .models import Message, ReplyReference
from .reducer import apply_action, replay

__all__ = [
    "Action",
    "ActionType",
    "ClearAllHistory",
    "DeleteMessage",
    "HistoryCleared",
    "NewMessage",
    "NoOp",
    "Snapshot",
    "ToggleReaction",
    "decode_action",
    "decode_snapshot",
    "encode_action",
    "encode_snapshot",
    "BootstrapState",
    "HistoryBootstrap",
    "Config",
    "load_config",
    "ConnectionStatus",
    "LiveSyncController",
    "create_controller",
    "PersistenceDebouncer",
    "ChatSyncError",
    "DecodeError",
    "PersistenceError",
    "TransportError",
    "HistoryStore",
    "RemoteHistoryStore",
    "RetainedHistoryStore",
    "IdentityStore",
    "resolve_client_id",
    "JSONFormatter",
    "setup_logging",
    "Message",
    "ReplyReference",
    "apply_action",
    "replay",
]
