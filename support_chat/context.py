"""
Chat Context - Explicit handle passed to every component

File: support_chat/context.py

There is no process-wide store: main.py builds one context at startup and
keeps it on app.state; tests build their own with fakes.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.engine import Engine

from .auth import TokenVerifier
from .bot_gateway import HttpBotGateway, LocalBotGateway
from .bot_responder import BotResponder
from .change_notifier import ChangeNotifier
from .completion_client import CompletionClient, GatewayCompletionClient
from .config import Settings
from .customer_widget import CustomerChatWidget
from .db import init_schema, make_engine, make_session_factory
from .employee_console import EmployeeConsole
from .escalation import EscalationPolicy, KeywordEscalationPolicy
from .realtime import RealtimeConnectionManager
from .schemas import Actor
from .session_store import SessionStore


@dataclass
class ChatContext:
    settings: Settings
    store: SessionStore
    notifier: ChangeNotifier
    verifier: TokenVerifier
    responder: BotResponder
    realtime: RealtimeConnectionManager = field(default_factory=RealtimeConnectionManager)
    engine: Optional[Engine] = None

    async def actor_for_token(self, token: Optional[str]) -> Actor:
        """Verify token and load roles; Unauthorized on a bad token"""
        user_id = self.verifier.verify(token)
        return await self.store.resolve_actor(user_id)

    async def customer_widget(self, token: str, session_id: Optional[str] = None,
                              remote: bool = False) -> CustomerChatWidget:
        """Widget for the token holder; remote=True reaches the bot over HTTP"""
        actor = await self.actor_for_token(token)
        if remote:
            bot = HttpBotGateway(self.settings.bot_endpoint_url, token, timeout=self.settings.llm_timeout)
        else:
            bot = LocalBotGateway(self.responder, token)
        return CustomerChatWidget(
            actor=actor,
            store=self.store,
            notifier=self.notifier,
            bot=bot,
            session_id=session_id,
        )

    async def employee_console(self, token: str) -> EmployeeConsole:
        actor = await self.actor_for_token(token)
        return EmployeeConsole(actor=actor, store=self.store, notifier=self.notifier)

    def dispose(self):
        if self.engine is not None:
            self.engine.dispose()


def build_context(
    settings: Settings,
    completion: Optional[CompletionClient] = None,
    escalation_policy: Optional[EscalationPolicy] = None,
    create_schema: bool = True,
) -> ChatContext:
    """Wire store, notifier, verifier and bot responder from settings"""
    engine = make_engine(settings.database_url, echo=settings.database_echo)
    if create_schema:
        init_schema(engine)

    notifier = ChangeNotifier()
    store = SessionStore(make_session_factory(engine), notifier)
    verifier = TokenVerifier(settings.jwt_secret, audience=settings.jwt_audience)

    if completion is None:
        completion = GatewayCompletionClient(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout=settings.llm_timeout,
        )

    responder = BotResponder(
        store=store,
        verifier=verifier,
        completion=completion,
        escalation_policy=escalation_policy or KeywordEscalationPolicy(settings.escalation_phrases),
        session_fallback=settings.session_fallback,
        history_page_size=settings.history_page_size,
        preamble=settings.preamble,
    )

    return ChatContext(
        settings=settings,
        store=store,
        notifier=notifier,
        verifier=verifier,
        responder=responder,
        engine=engine,
    )
