"""Tests for the log reducer."""

import copy
import pytest

from chatsync.actions import (
    ClearAllHistory,
    DeleteMessage,
    HistoryCleared,
    NewMessage,
    NoOp,
    ToggleReaction,
)
from chatsync.models import Message
from chatsync.reducer import apply_action, replay, toggle_reactor


@pytest.fixture
def log():
    """A small log with two messages."""
    return [
        Message(id="m1", text="hi", sender_id="A"),
        Message(id="m2", text="hello", sender_id="B", reactions={"❤️": ["A"]}),
    ]


class TestNewMessage:
    """Tests for applying NewMessage."""

    def test_appends_in_arrival_order(self, log):
        """Test new messages go to the end."""
        msg = Message(id="m3", text="new", sender_id="C")

        result = apply_action(log, NewMessage(msg), "A")

        assert [m.id for m in result] == ["m1", "m2", "m3"]

    def test_appends_own_message(self):
        """Test the reducer appends even when the sender is the local actor."""
        msg = Message(id="m1", text="hi", sender_id="A")

        result = apply_action([], NewMessage(msg), "A")

        assert result == [msg]

    def test_redelivery_is_idempotent(self):
        """Test the same NewMessage twice yields one entry."""
        msg = Message(id="m1", text="hi", sender_id="A")

        result = replay([NewMessage(msg), NewMessage(msg)], "B")

        assert [m.id for m in result] == ["m1"]

    def test_does_not_mutate_input(self, log):
        """Test the input log is left untouched."""
        before = copy.deepcopy(log)

        apply_action(log, NewMessage(Message(id="m3", text="x", sender_id="C")), "A")

        assert log == before


class TestDeleteMessage:
    """Tests for applying DeleteMessage."""

    def test_removes_by_id(self, log):
        """Test the matching message is removed."""
        result = apply_action(log, DeleteMessage("m1"), "A")

        assert [m.id for m in result] == ["m2"]

    def test_absent_id_is_noop(self, log):
        """Test deleting an unknown id returns the log unchanged."""
        result = apply_action(log, DeleteMessage("nope"), "A")

        assert result == log

    def test_delete_before_insert(self):
        """Test a delete racing ahead of its insert does not fail."""
        msg = Message(id="m1", text="hi", sender_id="A")

        result = replay([DeleteMessage("m1"), NewMessage(msg)], "B")

        assert [m.id for m in result] == ["m1"]


class TestToggleReaction:
    """Tests for applying ToggleReaction."""

    def test_adds_reactor(self, log):
        """Test the first toggle adds the actor."""
        result = apply_action(log, ToggleReaction("m1", "👍", "A"), "A")

        assert result[0].reactions == {"👍": ["A"]}

    def test_toggle_twice_removes_key(self, log):
        """Test toggling twice drops the emoji key entirely."""
        once = apply_action(log, ToggleReaction("m1", "👍", "A"), "A")
        twice = apply_action(once, ToggleReaction("m1", "👍", "A"), "A")

        assert "👍" not in twice[0].reactions
        assert twice[0].reactions == {}

    def test_toggle_is_self_inverse(self, log):
        """Test toggling twice restores the original membership."""
        action = ToggleReaction("m2", "❤️", "A")

        result = apply_action(apply_action(log, action, "A"), action, "A")

        assert result[1].reactions == {"❤️": ["A"]}

    def test_other_actors_kept(self, log):
        """Test removing one reactor keeps the others."""
        with_b = apply_action(log, ToggleReaction("m2", "❤️", "B"), "A")
        without_a = apply_action(with_b, ToggleReaction("m2", "❤️", "A"), "A")

        assert without_a[1].reactions == {"❤️": ["B"]}

    def test_missing_message_is_noop(self, log):
        """Test reacting on an unknown id is a no-op."""
        result = apply_action(log, ToggleReaction("nope", "👍", "A"), "A")

        assert result == log

    def test_does_not_mutate_input(self, log):
        """Test the original message's reactions are not changed."""
        apply_action(log, ToggleReaction("m2", "❤️", "B"), "A")

        assert log[1].reactions == {"❤️": ["A"]}

    def test_toggle_reactor_helper(self):
        """Test the reactions helper returns a new dict."""
        reactions = {"👍": ["A"]}

        result = toggle_reactor(reactions, "👍", "A")

        assert result == {}
        assert reactions == {"👍": ["A"]}


class TestClearAndNoOp:
    """Tests for ClearAllHistory and NoOp."""

    def test_clear_all(self):
        """Test clearing a log of ten messages."""
        log = [Message(id=f"m{i}", text=str(i), sender_id="A") for i in range(10)]

        assert apply_action(log, ClearAllHistory(), "B") == []

    def test_noop_passes_through(self, log):
        """Test unknown actions leave the log as is."""
        result = apply_action(log, NoOp(type="edit_message"), "A")

        assert result is log

    def test_empty_payload_sentinel_keeps_log(self, log):
        """Test the empty-payload sentinel is not a clear."""
        assert apply_action(log, HistoryCleared(), "A") is log

    def test_replay_sequence(self):
        """Test folding a mixed action sequence."""
        a = Message(id="a", text="one", sender_id="A")
        b = Message(id="b", text="two", sender_id="B")

        result = replay(
            [
                NewMessage(a),
                NewMessage(b),
                ToggleReaction("a", "😂", "B"),
                DeleteMessage("b"),
            ],
            "A",
        )

        assert [m.id for m in result] == ["a"]
        assert result[0].reactions == {"😂": ["B"]}
