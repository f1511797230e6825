"""
Tests for realtime connection bookkeeping and event forwarding
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from support_chat.change_notifier import ChangeEvent, ChangeFilter
from support_chat.errors import StoreError
from support_chat.realtime import RealtimeConnectionManager
from support_chat.router import _pump
from support_chat.schemas import ChangeType

from helpers import make_context, make_customer, run, settle


def fake_websocket():
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


class TestRealtimeConnectionManager:
    def setup_method(self):
        self.ctx = make_context()
        self.manager = RealtimeConnectionManager()

    def test_disconnect_waits_for_forwarders(self):
        async def scenario():
            customer = await make_customer(self.ctx)
            conn = await self.manager.connect(fake_websocket(), customer.user_id)
            subscription = self.ctx.notifier.subscribe(ChangeFilter.parse("chat_sessions", "*"))
            task = asyncio.create_task(_pump(self.ctx, customer, conn, "sessions", subscription))
            await self.manager.attach(conn, "sessions", subscription, task)
            await settle()
            status = self.manager.get_status()

            await self.manager.disconnect(conn)
            return status, task, subscription

        status, task, subscription = run(scenario())
        assert status == {"connections": 1, "subscriptions": 1, "user_ids": ["user-1"]}
        assert task.done()
        assert subscription.closed
        assert self.manager.get_status()["connections"] == 0
        assert self.ctx.notifier.subscription_count == 0

    def test_resubscribe_replaces_channel(self):
        async def scenario():
            conn = await self.manager.connect(fake_websocket(), "user-1")
            first = self.ctx.notifier.subscribe(ChangeFilter.parse("chat_sessions", "*"))
            await self.manager.attach(conn, "sessions", first)
            second = self.ctx.notifier.subscribe(ChangeFilter.parse("chat_sessions", "UPDATE"))
            await self.manager.attach(conn, "sessions", second)
            await self.manager.detach(conn, "sessions")
            return conn, first, second

        conn, first, second = run(scenario())
        assert first.closed
        assert second.closed
        assert conn.channels == {}

    def test_store_failure_ends_forwarder_quietly(self):
        self.ctx.store.get_session = AsyncMock(side_effect=StoreError("database is down"))

        async def scenario():
            customer = await make_customer(self.ctx)
            websocket = fake_websocket()
            conn = await self.manager.connect(websocket, customer.user_id)
            subscription = self.ctx.notifier.subscribe(ChangeFilter.parse("chat_sessions", "*"))
            task = asyncio.create_task(_pump(self.ctx, customer, conn, "sessions", subscription))
            await self.manager.attach(conn, "sessions", subscription, task)
            await settle()

            self.ctx.notifier.publish(
                ChangeEvent(table="chat_sessions", type=ChangeType.UPDATE, new={"id": "s-1"})
            )
            await settle()
            finished = task.done()
            await self.manager.disconnect(conn)
            return finished, task, websocket

        finished, task, websocket = run(scenario())
        assert finished
        assert task.exception() is None
        websocket.send_json.assert_not_called()
