"""Session identity: a stable or ephemeral actor id."""

import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

CLIENT_ID_PREFIX = "chat-client-"
DEFAULT_IDENTITY_PATH = "~/.chatsync/client_id"


def generate_client_id() -> str:
    """Create a new client id of the form ``chat-client-<uuid4>``."""
    return f"{CLIENT_ID_PREFIX}{uuid.uuid4()}"


class IdentityStore:
    """Get-or-create storage for the local client id."""

    def __init__(self, path: str | Path = DEFAULT_IDENTITY_PATH):
        self.path = Path(path).expanduser()

    def load(self) -> str | None:
        """Read the stored id, or None if there isn't one."""
        if not self.path.exists():
            return None
        client_id = self.path.read_text(encoding="utf-8").strip()
        return client_id or None

    def get_or_create(self) -> str:
        """Return the stored id, creating and saving one if absent."""
        client_id = self.load()
        if client_id:
            return client_id

        client_id = generate_client_id()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(client_id + "\n", encoding="utf-8")
        logger.info(f"Created new client id {client_id} at {self.path}")
        return client_id


def resolve_client_id(
    path: str | Path | None = None, ephemeral: bool = False
) -> str:
    """Resolve the actor id for this session.

    Args:
        path: Where the persistent id lives. Defaults to ~/.chatsync/client_id.
        ephemeral: Generate a fresh id for this session only.

    Returns:
        The client id.
    """
    if ephemeral:
        return generate_client_id()
    return IdentityStore(path or DEFAULT_IDENTITY_PATH).get_or_create()
