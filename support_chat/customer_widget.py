"""
Customer Chat Widget - Client-side controller for the customer chat

File: support_chat/customer_widget.py

States:
    collapsed -> open_bot -> open_escalated -> open_resolved

Pre-escalation messages go through the Bot Responder; afterwards they are
written straight into the session store and employee replies arrive via
the change notifier.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .bot_gateway import BotGateway
from .change_notifier import ChangeEvent, ChangeFilter, ChangeNotifier, Subscription
from .errors import BotCallError, SupportChatError
from .schemas import (
    Actor,
    ChangeType,
    MessageRole,
    Notice,
    SessionStatus,
    TranscriptEntry,
    parse_timestamp,
)
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class WidgetState(str, Enum):
    COLLAPSED = "collapsed"
    OPEN_BOT = "open_bot"
    OPEN_ESCALATED = "open_escalated"
    OPEN_RESOLVED = "open_resolved"


class CustomerChatWidget:
    """
    One instance per open widget. Holds only a transient transcript; the
    store stays the source of truth.
    """

    def __init__(
        self,
        actor: Actor,
        store: SessionStore,
        notifier: ChangeNotifier,
        bot: BotGateway,
        session_id: Optional[str] = None,
    ):
        self.actor = actor
        self.store = store
        self.notifier = notifier
        self.bot = bot

        self.session_id = session_id
        self.messages: List[TranscriptEntry] = []
        self.notices: List[Notice] = []

        self.is_open = False
        self.escalated = False
        self.resolved = False
        self.waiting_for_employee = False
        self.escalation_suggested = False
        self.loading = False

        self._subscription: Optional[Subscription] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> WidgetState:
        if not self.is_open:
            return WidgetState.COLLAPSED
        if self.resolved:
            return WidgetState.OPEN_RESOLVED
        if self.escalated:
            return WidgetState.OPEN_ESCALATED
        return WidgetState.OPEN_BOT

    @property
    def input_enabled(self) -> bool:
        return not self.loading and not self.waiting_for_employee

    @property
    def can_request_human(self) -> bool:
        return not self.escalated and bool(self.messages) and self.session_id is not None

    def _notify(self, title: str, description: str, variant: str = "default"):
        self.notices.append(Notice(title=title, description=description, variant=variant))

    def _append(self, role: MessageRole, content: str, timestamp: Optional[datetime] = None,
                message_id: Optional[str] = None):
        self.messages.append(TranscriptEntry(
            role=role,
            content=content,
            timestamp=timestamp or datetime.now(timezone.utc),
            message_id=message_id,
        ))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self):
        """Show the widget; no network call"""
        self.is_open = True
        self._subscribe()

    def close(self):
        """Hide the widget and release subscriptions"""
        self.is_open = False
        self.teardown()

    def teardown(self):
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _subscribe(self):
        if not self.is_open or self.session_id is None or self._subscription is not None:
            return
        self._subscription = self.notifier.subscribe(
            ChangeFilter.parse("chat_messages", ChangeType.INSERT.value, f"session_id=eq.{self.session_id}"),
            ChangeFilter.parse("chat_sessions", ChangeType.UPDATE.value, f"id=eq.{self.session_id}"),
        )

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def send(self, text: str) -> Optional[TranscriptEntry]:
        """
        Send one customer message.

        The message stays in the transcript even when sending fails.
        """
        content = (text or "").strip()
        if not content:
            return None

        self._append(MessageRole.CUSTOMER, content)
        entry = self.messages[-1]
        self.loading = True

        try:
            if self.escalated:
                await self.store.insert_message(
                    self.actor, self.session_id, MessageRole.CUSTOMER, content
                )
            else:
                reply = await self.bot.send(content, self.session_id)
                if self.session_id != reply.session_id:
                    self.teardown()
                    self.session_id = reply.session_id
                    self._subscribe()
                if reply.message:
                    self._append(MessageRole.BOT, reply.message)
                self.escalation_suggested = reply.need_escalation
        except BotCallError as e:
            logger.warning(f"⚠️ Bot call failed: {e}")
            self.escalation_suggested = self.escalation_suggested or e.need_escalation
            self._notify("Ошибка", str(e) or "Не удалось отправить сообщение", "destructive")
        except SupportChatError as e:
            logger.warning(f"⚠️ Sending message failed: {e}")
            self._notify("Ошибка", str(e) or "Не удалось отправить сообщение", "destructive")
        finally:
            self.loading = False

        return entry

    async def request_human(self) -> bool:
        """Escalate the current session to an employee"""
        if self.session_id is None:
            return False

        try:
            await self.store.escalate_session(self.actor, self.session_id)
        except SupportChatError as e:
            logger.warning(f"⚠️ Escalation failed: {e}")
            self._notify("Ошибка", "Не удалось связаться с сотрудником", "destructive")
            return False

        self._mark_escalated()
        self._notify("Запрос отправлен", "Ожидайте подключения сотрудника")
        return True

    def _mark_escalated(self):
        if not self.escalated:
            self.escalated = True
            self.waiting_for_employee = True
            self.escalation_suggested = False

    # =========================================================================
    # EVENTS
    # =========================================================================

    def apply_event(self, event: ChangeEvent):
        row = event.new
        if event.table == "chat_messages" and event.type == ChangeType.INSERT:
            if row.get("role") == MessageRole.EMPLOYEE.value and row.get("user_id") != self.actor.user_id:
                self._append(
                    MessageRole.EMPLOYEE,
                    row.get("content", ""),
                    parse_timestamp(row.get("created_at")),
                    row.get("id"),
                )
                self.waiting_for_employee = False

        elif event.table == "chat_sessions" and event.type == ChangeType.UPDATE:
            if row.get("escalated_to_employee"):
                self._mark_escalated()
            if row.get("status") == SessionStatus.RESOLVED.value and not self.resolved:
                self.resolved = True
                self.waiting_for_employee = False
                self._notify("Чат завершен", "Сотрудник завершил обращение")

    async def poll_events(self) -> int:
        """Apply all queued events; returns how many were applied"""
        if self._subscription is None:
            return 0
        events = self._subscription.drain()
        for event in events:
            self.apply_event(event)
        return len(events)

    async def run(self):
        """Consume events until the subscription is released"""
        subscription = self._subscription
        if subscription is None:
            return
        async for event in subscription:
            self.apply_event(event)
