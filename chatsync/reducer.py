"""Log reducer.

Pure function: (log, action, self_actor_id) -> log'
No I/O, no hidden state. The input log and its messages are never modified;
changed messages are replaced with copies.
"""

import logging
from dataclasses import replace
from typing import Callable, Iterable

from .actions import (
    Action,
    ClearAllHistory,
    DeleteMessage,
    HistoryCleared,
    NewMessage,
    NoOp,
    ToggleReaction,
)
from .models import Message, Reactions

logger = logging.getLogger(__name__)

Log = list[Message]


def apply_action(log: Log, action: Action, self_actor_id: str) -> Log:
    """Apply one action to the log.

    Echo suppression and authorization are the caller's concern; every
    action handed in is applied. Missing target ids are a no-op, never an
    error.

    Args:
        log: Current message log, in local arrival order.
        action: Action to apply.
        self_actor_id: Id of the local actor.

    Returns:
        The new log. May be the same list object when nothing changed.
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        logger.debug(f"No reducer for {type(action).__name__}, passing through")
        return log
    return handler(log, action, self_actor_id)


def replay(
    actions: Iterable[Action], self_actor_id: str, log: Log | None = None
) -> Log:
    """Fold a sequence of actions over a log (empty by default)."""
    current = list(log) if log is not None else []
    for action in actions:
        current = apply_action(current, action, self_actor_id)
    return current


def toggle_reactor(reactions: Reactions, emoji: str, actor_id: str) -> Reactions:
    """Return a copy of ``reactions`` with the actor's membership flipped.

    An emoji whose reactor list becomes empty is dropped.
    """
    updated = {e: list(r) for e, r in reactions.items()}
    reactors = updated.get(emoji, [])
    if actor_id in reactors:
        reactors = [r for r in reactors if r != actor_id]
    else:
        reactors = reactors + [actor_id]

    if reactors:
        updated[emoji] = reactors
    else:
        updated.pop(emoji, None)
    return updated


def _apply_new_message(log: Log, action: NewMessage, self_actor_id: str) -> Log:
    message = action.message
    # Redelivery of an id already in the log is idempotent
    if any(m.id == message.id for m in log):
        logger.debug(f"Message {message.id} already in log, skipping")
        return log
    return log + [message]


def _apply_delete(log: Log, action: DeleteMessage, self_actor_id: str) -> Log:
    remaining = [m for m in log if m.id != action.message_id]
    if len(remaining) == len(log):
        return log
    return remaining


def _apply_toggle(log: Log, action: ToggleReaction, self_actor_id: str) -> Log:
    for index, message in enumerate(log):
        if message.id == action.message_id:
            updated = replace(
                message,
                reactions=toggle_reactor(message.reactions, action.emoji, action.actor_id),
            )
            return log[:index] + [updated] + log[index + 1 :]
    return log


def _apply_clear(log: Log, action: ClearAllHistory, self_actor_id: str) -> Log:
    return []


def _apply_noop(log: Log, action: HistoryCleared | NoOp, self_actor_id: str) -> Log:
    return log


_HANDLERS: dict[type, Callable[[Log, Action, str], Log]] = {
    NewMessage: _apply_new_message,
    DeleteMessage: _apply_delete,
    ToggleReaction: _apply_toggle,
    ClearAllHistory: _apply_clear,
    HistoryCleared: _apply_noop,
    NoOp: _apply_noop,
}
