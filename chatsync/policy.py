"""Local access policy for user-originated actions.

Remote actions are always applied by the reducer. These checks only decide
what the local user may originate.
"""

from .models import Message

# Reaction palette offered to users
EMOJI_REACTIONS = ("👍", "❤️", "😂", "😮", "😢", "🙏")


class AccessPolicy:
    """Delete is sender-only; reactions are open to every actor."""

    def __init__(self, allowed_emoji: tuple[str, ...] | None = EMOJI_REACTIONS):
        """Initialize the policy.

        Args:
            allowed_emoji: Emoji a user may react with. None allows any.
        """
        self.allowed_emoji = allowed_emoji

    def can_send(self, text: str) -> bool:
        return bool(text.strip())

    def can_delete(self, message: Message | None, actor_id: str) -> bool:
        return message is not None and message.sender_id == actor_id

    def can_react(self, message: Message | None, emoji: str, actor_id: str) -> bool:
        if message is None:
            return False
        if self.allowed_emoji is not None and emoji not in self.allowed_emoji:
            return False
        return True

    def can_clear_history(self, actor_id: str) -> bool:
        return True
