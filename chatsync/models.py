"""Data model for the chat log: messages, reactions and reply quotes."""

from dataclasses import dataclass, field
from typing import Any

# Messages from this sender are transient local notices and never persisted.
SYSTEM_SENDER_ID = "system"

Reactions = dict[str, list[str]]


@dataclass(frozen=True)
class ReplyReference:
    """Frozen quote of another message, captured when the reply was written."""

    id: str
    text: str
    sender_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "senderId": self.sender_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReplyReference":
        """Create from the JSON wire form.

        Raises:
            KeyError: A required field is missing.
            TypeError: The quote is not an object or a field is not a string.
        """
        if not isinstance(data, dict):
            raise TypeError("Message field 'replyTo' must be an object")
        for key in ("id", "text", "senderId"):
            if not isinstance(data[key], str):
                raise TypeError(f"Reply field '{key}' must be a string")

        return cls(
            id=data["id"],
            text=data["text"],
            sender_id=data["senderId"],
        )


@dataclass
class Message:
    """A single chat message.

    The id is caller-generated (uuid4) and never changes once created.
    ``is_error`` marks a locally synthesized diagnostic which is neither
    published nor persisted.
    """

    id: str
    text: str
    sender_id: str
    is_error: bool = False
    reactions: Reactions = field(default_factory=dict)
    reply_to: ReplyReference | None = None

    @property
    def is_persistable(self) -> bool:
        """Whether this message belongs in a history snapshot."""
        return not self.is_error and self.sender_id != SYSTEM_SENDER_ID

    def quote(self) -> ReplyReference:
        """Capture this message as a reply reference."""
        return ReplyReference(id=self.id, text=self.text, sender_id=self.sender_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire form.

        Optional fields are only emitted when set.
        """
        data: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "senderId": self.sender_id,
        }
        if self.is_error:
            data["isError"] = True
        if self.reactions:
            data["reactions"] = {
                emoji: list(reactors) for emoji, reactors in self.reactions.items()
            }
        if self.reply_to is not None:
            data["replyTo"] = self.reply_to.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Create from the JSON wire form.

        Raises:
            KeyError: A required field is missing.
            TypeError: A field has the wrong type.
        """
        for key in ("id", "text", "senderId"):
            if not isinstance(data[key], str):
                raise TypeError(f"Message field '{key}' must be a string")

        reactions: Reactions = {}
        raw_reactions = data.get("reactions") or {}
        if not isinstance(raw_reactions, dict):
            raise TypeError("Message field 'reactions' must be an object")
        for emoji, reactors in raw_reactions.items():
            if not isinstance(reactors, list):
                raise TypeError(f"Reactors for {emoji!r} must be a list")
            # Empty reactor lists never exist in a well-formed log
            if reactors:
                reactions[emoji] = [str(r) for r in reactors]

        reply_data = data.get("replyTo")
        return cls(
            id=data["id"],
            text=data["text"],
            sender_id=data["senderId"],
            is_error=bool(data.get("isError", False)),
            reactions=reactions,
            reply_to=ReplyReference.from_dict(reply_data) if reply_data else None,
        )


def persistable(messages: list[Message]) -> list[Message]:
    """Filter out error and system messages before snapshotting."""
    return [m for m in messages if m.is_persistable]
