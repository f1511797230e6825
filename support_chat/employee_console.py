"""
Employee Console - Listing of escalated chats and the conversation view

File: support_chat/employee_console.py

The role check in open() only decides whether to show the console; the
session store policy is what actually guards the data.
"""

import logging
from typing import List, Optional

from .change_notifier import ChangeEvent, ChangeFilter, ChangeNotifier, Subscription
from .errors import ConsoleAccessDenied, SupportChatError
from .schemas import (
    Actor,
    ChangeType,
    MessageRecord,
    MessageRole,
    Notice,
    SessionSummary,
    STAFF_ROLES,
    parse_timestamp,
)
from .session_store import SessionStore

logger = logging.getLogger(__name__)


async def build_session_summaries(store: SessionStore, actor: Actor) -> List[SessionSummary]:
    """
    Escalated sessions newest first, each with owner profile and last
    message. One query per session per fact.
    """
    sessions = await store.list_escalated_sessions(actor)
    summaries = []
    for session in sessions:
        profile = await store.get_profile(actor, session.user_id)
        last_message = await store.get_last_message(actor, session.id)
        summaries.append(SessionSummary(
            id=session.id,
            user_id=session.user_id,
            status=session.status,
            created_at=session.created_at,
            full_name=profile.full_name if profile else None,
            email=profile.email if profile else None,
            last_message=last_message,
        ))
    return summaries


class ConversationView:
    """One opened session: full history plus live inserts"""

    def __init__(self, console: "EmployeeConsole", session_id: str):
        self.console = console
        self.session_id = session_id
        self.messages: List[MessageRecord] = []
        self.client_name = "Клиент"
        self._subscription: Optional[Subscription] = None

    @property
    def store(self) -> SessionStore:
        return self.console.store

    @property
    def actor(self) -> Actor:
        return self.console.actor

    async def load(self):
        self._subscription = self.console.notifier.subscribe(
            ChangeFilter.parse("chat_messages", ChangeType.INSERT.value, f"session_id=eq.{self.session_id}"),
        )
        try:
            self.messages = await self.store.list_messages(self.actor, self.session_id)
        except SupportChatError as e:
            logger.warning(f"⚠️ Loading messages failed: {e}")
            self.console._notify("Ошибка", "Не удалось загрузить сообщения", "destructive")

        try:
            session = await self.store.get_session(self.actor, self.session_id)
            if session is not None:
                profile = await self.store.get_profile(self.actor, session.user_id)
                if profile and profile.full_name:
                    self.client_name = profile.full_name
        except SupportChatError as e:
            logger.warning(f"⚠️ Loading client info failed: {e}")

    def apply_event(self, event: ChangeEvent):
        row = event.new
        if any(m.id == row.get("id") for m in self.messages):
            return
        self.messages.append(MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row.get("user_id"),
            role=MessageRole(row["role"]),
            content=row["content"],
            created_at=parse_timestamp(row.get("created_at")),
        ))

    async def poll_events(self) -> int:
        if self._subscription is None:
            return 0
        events = self._subscription.drain()
        for event in events:
            self.apply_event(event)
        return len(events)

    async def send(self, text: str) -> bool:
        """Insert an employee message; it shows up through the subscription"""
        content = (text or "").strip()
        if not content:
            return False
        try:
            await self.store.insert_message(self.actor, self.session_id, MessageRole.EMPLOYEE, content)
        except SupportChatError as e:
            logger.warning(f"⚠️ Employee message failed: {e}")
            self.console._notify("Ошибка", "Не удалось отправить сообщение", "destructive")
            return False
        return True

    async def end_chat(self) -> bool:
        """Resolve the session and go back to the listing"""
        try:
            await self.store.resolve_session(self.actor, self.session_id)
        except SupportChatError as e:
            logger.warning(f"⚠️ Resolving session failed: {e}")
            self.console._notify("Ошибка", "Не удалось завершить чат", "destructive")
            return False

        self.console._notify("Чат завершен", "Обращение успешно закрыто")
        await self.console.close_conversation()
        return True

    def close(self):
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None


class EmployeeConsole:
    def __init__(self, actor: Actor, store: SessionStore, notifier: ChangeNotifier):
        self.actor = actor
        self.store = store
        self.notifier = notifier

        self.is_employee = False
        self.sessions: List[SessionSummary] = []
        self.notices: List[Notice] = []
        self.conversation: Optional[ConversationView] = None
        self._subscription: Optional[Subscription] = None

    def _notify(self, title: str, description: str, variant: str = "default"):
        self.notices.append(Notice(title=title, description=description, variant=variant))

    async def open(self):
        """
        Check the caller's role, then load the listing and subscribe.

        Raises:
            ConsoleAccessDenied: caller is neither employee nor admin
        """
        roles = set(await self.store.get_roles(self.actor, self.actor.user_id)) if self.actor.user_id else set()
        if not roles & STAFF_ROLES:
            self._notify("Доступ запрещен", "У вас нет прав для просмотра этой страницы", "destructive")
            logger.info(f"🚫 Console denied for user {self.actor.user_id}")
            raise ConsoleAccessDenied(redirect_to="/")

        self.is_employee = True
        self._subscription = self.notifier.subscribe(
            ChangeFilter.parse("chat_sessions", "*"),
        )
        await self.load_sessions()

    async def load_sessions(self) -> List[SessionSummary]:
        try:
            self.sessions = await build_session_summaries(self.store, self.actor)
        except SupportChatError as e:
            logger.warning(f"⚠️ Loading sessions failed: {e}")
            self._notify("Ошибка", "Не удалось загрузить чаты", "destructive")
        return self.sessions

    async def poll_events(self) -> int:
        """Reload the whole listing if any session changed"""
        count = 0
        if self._subscription is not None:
            events = self._subscription.drain()
            count += len(events)
            if events:
                await self.load_sessions()
        if self.conversation is not None:
            count += await self.conversation.poll_events()
        return count

    async def run(self):
        subscription = self._subscription
        if subscription is None:
            return
        async for _event in subscription:
            # Coalesce a burst into one reload
            subscription.drain()
            await self.load_sessions()

    async def open_conversation(self, session_id: str) -> ConversationView:
        if self.conversation is not None:
            self.conversation.close()
        view = ConversationView(self, session_id)
        await view.load()
        self.conversation = view
        return view

    async def close_conversation(self):
        if self.conversation is not None:
            self.conversation.close()
            self.conversation = None
        await self.load_sessions()

    def close(self):
        if self.conversation is not None:
            self.conversation.close()
            self.conversation = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
