"""
Realtime Manager - Track WebSocket change-feed connections

File: support_chat/realtime.py

Each connection owns at most one subscription per channel name; all of
them are released when the connection goes away.
"""

from typing import Dict, List, Optional
import asyncio
import itertools
import logging

from fastapi import WebSocket

from .change_notifier import Subscription

logger = logging.getLogger(__name__)


class RealtimeConnection:
    def __init__(self, conn_id: int, websocket: WebSocket, user_id: str):
        self.id = conn_id
        self.websocket = websocket
        self.user_id = user_id
        # channel -> (subscription, forwarding task)
        self.channels: Dict[str, tuple] = {}

    def release(self, channel: str) -> Optional[asyncio.Task]:
        """Close the channel's subscription; returns the cancelled task, if any"""
        entry = self.channels.pop(channel, None)
        if entry is None:
            return None
        subscription, task = entry
        subscription.close()
        if task is not None:
            task.cancel()
        return task

    def release_all(self) -> List[asyncio.Task]:
        tasks = [self.release(channel) for channel in list(self.channels)]
        return [t for t in tasks if t is not None]


async def _reap(tasks: List[Optional[asyncio.Task]]):
    """Wait for cancelled forwarding tasks so their outcome is retrieved"""
    pending = [t for t in tasks if t is not None]
    if not pending:
        return
    results = await asyncio.gather(*pending, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.warning(f"⚠️ Realtime forwarder ended with error: {result}")


class RealtimeConnectionManager:
    """
    Manages realtime WebSocket connections untuk customer dan employee
    """

    def __init__(self):
        self._connections: Dict[int, RealtimeConnection] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str) -> RealtimeConnection:
        """Accept and store WebSocket connection"""
        await websocket.accept()
        async with self._lock:
            conn = RealtimeConnection(next(self._ids), websocket, user_id)
            self._connections[conn.id] = conn
        logger.info(f"🟢 User {user_id} connected to realtime (conn {conn.id})")
        return conn

    async def disconnect(self, conn: RealtimeConnection):
        await _reap(conn.release_all())
        async with self._lock:
            self._connections.pop(conn.id, None)
        logger.info(f"🔴 User {conn.user_id} disconnected from realtime (conn {conn.id})")

    async def attach(self, conn: RealtimeConnection, channel: str, subscription: Subscription,
                     task: Optional[asyncio.Task] = None):
        """Bind a subscription to a channel, replacing any previous one"""
        stale = conn.release(channel)
        conn.channels[channel] = (subscription, task)
        await _reap([stale])

    async def detach(self, conn: RealtimeConnection, channel: Optional[str] = None):
        """Release one channel, or every channel when none is given"""
        if channel:
            await _reap([conn.release(channel)])
        else:
            await _reap(conn.release_all())

    def get_status(self) -> dict:
        return {
            "connections": len(self._connections),
            "subscriptions": sum(len(c.channels) for c in self._connections.values()),
            "user_ids": sorted({c.user_id for c in self._connections.values()}),
        }
