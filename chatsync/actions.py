"""Action codec for the live and snapshot channels.

Live channel payloads are JSON objects of the form ``{"type": ..., "payload": ...}``.
Snapshot channel payloads are JSON arrays of messages, or an empty payload
meaning the history was explicitly cleared.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import DecodeError
from .models import Message

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """Wire tags for the known action kinds."""

    NEW_MESSAGE = "new_message"
    DELETE_MESSAGE = "delete_message"
    TOGGLE_REACTION = "toggle_reaction"
    CLEAR_ALL_HISTORY = "clear_all_history"


@dataclass(frozen=True)
class NewMessage:
    message: Message


@dataclass(frozen=True)
class DeleteMessage:
    message_id: str


@dataclass(frozen=True)
class ToggleReaction:
    message_id: str
    emoji: str
    actor_id: str


@dataclass(frozen=True)
class ClearAllHistory:
    pass


@dataclass(frozen=True)
class NoOp:
    """An action with a tag this client does not understand."""

    type: str
    payload: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class HistoryCleared:
    """The empty-payload sentinel.

    Only meaningful on the snapshot channel. Seen on the live channel it
    changes nothing; a real clear is always sent as ``clear_all_history``.
    """


Action = Union[
    NewMessage, DeleteMessage, ToggleReaction, ClearAllHistory, HistoryCleared, NoOp
]


@dataclass(frozen=True)
class Snapshot:
    """A decoded snapshot channel payload."""

    messages: list[Message]
    cleared: bool = False


def _to_bytes(payload: bytes | str) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def _parse_json(payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e


def _require_str(data: Any, key: str) -> str:
    if not isinstance(data, dict):
        raise DecodeError(f"Action payload must be an object, got {type(data).__name__}")
    value = data.get(key)
    if not isinstance(value, str):
        raise DecodeError(f"Action payload field '{key}' must be a string")
    return value


def _decode_message(data: Any) -> Message:
    if not isinstance(data, dict):
        raise DecodeError(f"Message must be an object, got {type(data).__name__}")
    try:
        return Message.from_dict(data)
    except (KeyError, TypeError) as e:
        raise DecodeError(f"Invalid message: {e}") from e


def encode_action(action: Action) -> bytes:
    """Serialize an action for the live channel.

    Raises:
        ValueError: The action is a NoOp or HistoryCleared. Neither is published.
    """
    if isinstance(action, NewMessage):
        body = {"type": ActionType.NEW_MESSAGE.value, "payload": action.message.to_dict()}
    elif isinstance(action, DeleteMessage):
        body = {
            "type": ActionType.DELETE_MESSAGE.value,
            "payload": {"messageId": action.message_id},
        }
    elif isinstance(action, ToggleReaction):
        # The reacting actor travels as senderId on the wire
        body = {
            "type": ActionType.TOGGLE_REACTION.value,
            "payload": {
                "messageId": action.message_id,
                "emoji": action.emoji,
                "senderId": action.actor_id,
            },
        }
    elif isinstance(action, ClearAllHistory):
        body = {"type": ActionType.CLEAR_ALL_HISTORY.value}
    else:
        raise ValueError(f"Cannot encode action: {action!r}")

    return json.dumps(body, ensure_ascii=False).encode("utf-8")


def decode_action(payload: bytes | str) -> Action:
    """Deserialize a live channel payload.

    An empty payload is the reserved "cleared" sentinel and decodes to
    HistoryCleared, which leaves the log alone. Unknown tags decode to NoOp.

    Raises:
        DecodeError: The payload is malformed.
    """
    raw = _to_bytes(payload)
    if not raw.strip():
        return HistoryCleared()

    data = _parse_json(raw)
    if not isinstance(data, dict):
        raise DecodeError(f"Action must be a JSON object, got {type(data).__name__}")

    action_type = data.get("type")
    if not isinstance(action_type, str):
        raise DecodeError("Action is missing a string 'type'")
    body = data.get("payload")

    if action_type == ActionType.NEW_MESSAGE:
        return NewMessage(_decode_message(body))
    if action_type == ActionType.DELETE_MESSAGE:
        return DeleteMessage(_require_str(body, "messageId"))
    if action_type == ActionType.TOGGLE_REACTION:
        return ToggleReaction(
            message_id=_require_str(body, "messageId"),
            emoji=_require_str(body, "emoji"),
            actor_id=_require_str(body, "senderId"),
        )
    if action_type == ActionType.CLEAR_ALL_HISTORY:
        return ClearAllHistory()

    logger.debug(f"Unknown action type {action_type!r}, treating as no-op")
    return NoOp(type=action_type, payload=body)


def encode_snapshot(messages: list[Message]) -> bytes:
    """Serialize a message list for the snapshot channel or history store."""
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False).encode("utf-8")


def decode_snapshot(payload: bytes | str) -> Snapshot:
    """Deserialize a snapshot channel payload.

    Raises:
        DecodeError: The payload is not a JSON array of messages.
    """
    raw = _to_bytes(payload)
    if not raw.strip():
        return Snapshot(messages=[], cleared=True)

    data = _parse_json(raw)
    return Snapshot(messages=messages_from_json(data))


def messages_from_json(data: Any) -> list[Message]:
    """Build a message list from already-parsed JSON.

    ``None`` is read as an empty history.

    Raises:
        DecodeError: The data is not a list of valid messages.
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise DecodeError(f"Snapshot must be a JSON array, got {type(data).__name__}")
    return [_decode_message(item) for item in data]
