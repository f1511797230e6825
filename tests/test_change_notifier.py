"""
Tests for change notifier filters and subscriptions
"""

import pytest

from support_chat.change_notifier import ChangeEvent, ChangeFilter, ChangeNotifier
from support_chat.schemas import ChangeType

from helpers import run


def message_event(session_id="s-1", role="customer"):
    return ChangeEvent(
        table="chat_messages",
        type=ChangeType.INSERT,
        new={"id": "m-1", "session_id": session_id, "role": role, "content": "hi"},
    )


class TestChangeFilter:
    """Wire-form parsing and matching"""

    def test_parse_equality_filter(self):
        f = ChangeFilter.parse("chat_messages", "INSERT", "session_id=eq.s-1")
        assert f.table == "chat_messages"
        assert f.events == frozenset({"INSERT"})
        assert f.column == "session_id"
        assert f.value == "s-1"

    def test_star_matches_all_events(self):
        f = ChangeFilter.parse("chat_sessions", "*")
        insert = ChangeEvent(table="chat_sessions", type=ChangeType.INSERT, new={"id": "a"})
        update = ChangeEvent(table="chat_sessions", type=ChangeType.UPDATE, new={"id": "a"})
        assert f.matches(insert)
        assert f.matches(update)

    def test_filter_on_value(self):
        f = ChangeFilter.parse("chat_messages", "INSERT", "session_id=eq.s-1")
        assert f.matches(message_event("s-1"))
        assert not f.matches(message_event("s-2"))

    def test_other_table_or_event_does_not_match(self):
        f = ChangeFilter.parse("chat_messages", "UPDATE")
        assert not f.matches(message_event())
        assert not ChangeFilter.parse("chat_sessions").matches(message_event())

    @pytest.mark.parametrize("event,expr", [
        ("DELETE", None),
        ("INSERT", "session_id"),
        ("INSERT", "session_id=gt.5"),
        ("INSERT", "=eq.5"),
    ])
    def test_invalid_input_rejected(self, event, expr):
        with pytest.raises(ValueError):
            ChangeFilter.parse("chat_messages", event, expr)

    def test_table_required(self):
        with pytest.raises(ValueError):
            ChangeFilter.parse("")


class TestChangeNotifier:
    def setup_method(self):
        self.notifier = ChangeNotifier()

    def test_subscribe_requires_filter(self):
        with pytest.raises(ValueError):
            self.notifier.subscribe()

    def test_delivers_to_matching_subscriptions_only(self):
        async def scenario():
            mine = self.notifier.subscribe(ChangeFilter.parse("chat_messages", "INSERT", "session_id=eq.s-1"))
            other = self.notifier.subscribe(ChangeFilter.parse("chat_messages", "INSERT", "session_id=eq.s-2"))

            delivered = self.notifier.publish(message_event("s-1"))

            return delivered, mine.drain(), other.drain()

        delivered, mine, other = run(scenario())
        assert delivered == 1
        assert len(mine) == 1
        assert mine[0].new["session_id"] == "s-1"
        assert other == []

    def test_no_delivery_after_close(self):
        async def scenario():
            sub = self.notifier.subscribe(ChangeFilter.parse("chat_messages"))
            self.notifier.publish(message_event())
            sub.close()
            delivered = self.notifier.publish(message_event())
            return sub, delivered

        sub, delivered = run(scenario())
        assert delivered == 0
        assert sub.closed
        assert sub.drain() == []
        assert self.notifier.subscription_count == 0

    def test_close_is_idempotent(self):
        sub = self.notifier.subscribe(ChangeFilter.parse("chat_messages"))
        sub.close()
        sub.close()
        assert self.notifier.subscription_count == 0

    def test_async_iteration_stops_on_close(self):
        async def scenario():
            sub = self.notifier.subscribe(ChangeFilter.parse("chat_messages"))
            self.notifier.publish(message_event("s-1"))
            self.notifier.publish(message_event("s-2"))

            received = []
            async for event in sub:
                received.append(event.new["session_id"])
                if len(received) == 2:
                    sub.close()
            return received

        assert run(scenario()) == ["s-1", "s-2"]

    def test_context_manager_closes(self):
        async def scenario():
            async with self.notifier.subscribe(ChangeFilter.parse("chat_sessions")) as sub:
                assert self.notifier.subscription_count == 1
            return sub

        sub = run(scenario())
        assert sub.closed
        assert self.notifier.subscription_count == 0

    def test_event_to_dict(self):
        data = message_event().to_dict()
        assert data["table"] == "chat_messages"
        assert data["event"] == "INSERT"
        assert data["old"] is None
        assert "commit_timestamp" in data
