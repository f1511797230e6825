"""
Change Notifier - In-process change feed untuk chat_sessions / chat_messages

File: support_chat/change_notifier.py

Usage:
    sub = notifier.subscribe(
        ChangeFilter.parse("chat_messages", "INSERT", f"session_id=eq.{sid}"),
    )
    async for event in sub:
        ...
    sub.close()
"""

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from .schemas import ChangeType

logger = logging.getLogger(__name__)


ALL_EVENTS: FrozenSet[str] = frozenset(t.value for t in ChangeType)


@dataclass(frozen=True)
class ChangeEvent:
    """One row change in the store"""
    table: str
    type: ChangeType
    new: Dict[str, Any]
    old: Optional[Dict[str, Any]] = None
    commit_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "event": self.type.value,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ChangeFilter:
    """
    Matches events by table, event type and one optional equality predicate.
    """
    table: str
    events: FrozenSet[str] = ALL_EVENTS
    column: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def parse(cls, table: str, event: str = "*", filter_expr: Optional[str] = None) -> "ChangeFilter":
        """
        Build from the wire form: event "INSERT" / "UPDATE" / "*" and an
        optional "column=eq.value" filter.
        """
        if not table:
            raise ValueError("table is required")

        event = (event or "*").upper()
        if event == "*":
            events = ALL_EVENTS
        elif event in ALL_EVENTS:
            events = frozenset({event})
        else:
            raise ValueError(f"Unsupported event: {event}")

        column = value = None
        if filter_expr:
            column, sep, rest = filter_expr.partition("=")
            if not sep or not rest.startswith("eq."):
                raise ValueError(f"Unsupported filter: {filter_expr}")
            column, value = column.strip(), rest[3:]
            if not column:
                raise ValueError(f"Unsupported filter: {filter_expr}")

        return cls(table=table, events=events, column=column, value=value)

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type.value not in self.events:
            return False
        if self.column is None:
            return True
        row_value = event.new.get(self.column)
        return row_value is not None and str(row_value) == self.value


class Subscription:
    """
    Async stream of ChangeEvent for a set of filters.

    close() is final: queued events are dropped and nothing else is
    delivered.
    """

    def __init__(self, notifier: "ChangeNotifier", sub_id: int, filters: Iterable[ChangeFilter]):
        self.id = sub_id
        self.filters = tuple(filters)
        self._notifier = notifier
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    def _deliver(self, event: ChangeEvent):
        if self._closed:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            self._queue.put_nowait(event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._queue.put_nowait(event)
        else:
            loop.call_soon_threadsafe(self._put_if_open, event)

    def _put_if_open(self, event: ChangeEvent):
        if not self._closed:
            self._queue.put_nowait(event)

    def drain(self) -> List[ChangeEvent]:
        """Return all queued events without waiting"""
        events = []
        while not self._closed:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return events

    async def get(self) -> Optional[ChangeEvent]:
        """Wait for the next event; None once closed"""
        if self._closed:
            return None
        event = await self._queue.get()
        if self._closed or event is None:
            return None
        return event

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._notifier._remove(self.id)
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        # Wake a pending get()
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class ChangeNotifier:
    """
    Registry of subscriptions; the store publishes after each commit.
    """

    def __init__(self):
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, *filters: ChangeFilter) -> Subscription:
        if not filters:
            raise ValueError("At least one filter is required")
        with self._lock:
            sub = Subscription(self, next(self._ids), filters)
            self._subscriptions[sub.id] = sub
        logger.debug(f"🟢 Subscription {sub.id} opened ({', '.join(f.table for f in filters)})")
        return sub

    def _remove(self, sub_id: int):
        with self._lock:
            self._subscriptions.pop(sub_id, None)
        logger.debug(f"🔴 Subscription {sub_id} closed")

    def publish(self, event: ChangeEvent) -> int:
        """Deliver event to matching subscriptions; returns delivery count"""
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.matches(event)]
        for sub in targets:
            sub._deliver(event)
        return len(targets)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
