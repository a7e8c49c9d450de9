"""Error taxonomy for the chat sync engine."""


class ChatSyncError(Exception):
    """Base class for all chatsync errors."""


class DecodeError(ChatSyncError):
    """A payload could not be decoded into an action or snapshot.

    Discarded by the controller and logged; never fatal to the session.
    """


class TransportError(ChatSyncError):
    """Connection-level failure of the pub/sub transport.

    Forces the session closed. Re-establishing a session is up to the owner.
    """


class PersistenceError(ChatSyncError):
    """Writing a history snapshot failed.

    Only logged; the next debounce cycle is the retry.
    """
