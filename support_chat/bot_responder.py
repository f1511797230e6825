"""
Bot Responder - FAQ bot per customer message

File: support_chat/bot_responder.py

Flow per call:
1. Verify caller token
2. Resolve session (load + ownership check, or create)
3. Load history, persist customer message
4. Ask completion backend with preamble + history + message
5. Persist bot reply, compute escalation suggestion

Stateless: nothing is kept between calls, and a repeated call appends
duplicate messages.
"""

import logging
from typing import Dict, List, Optional

from .auth import TokenVerifier
from .completion_client import CompletionClient, FALLBACK_REPLY
from .errors import SessionNotFound
from .escalation import EscalationPolicy, KeywordEscalationPolicy
from .schemas import (
    Actor,
    BotReply,
    MessageRecord,
    MessageRole,
    SessionFallback,
    SessionRecord,
)
from .session_store import SessionStore

logger = logging.getLogger(__name__)


SUPPORT_PREAMBLE = """Вы - помощник для интернет-магазина электроники. Отвечайте кратко и по делу на русском языке.

Популярные темы FAQ:
1. Доставка: Доставка по России 3-7 дней. Бесплатная доставка от 5000 руб. Курьером или в пункт выдачи.
2. Возврат: 14 дней на возврат товара без объяснения причин. Деньги возвращаются в течение 10 дней.
3. Оплата: Банковской картой онлайн, наличными курьеру, в пункте выдачи.
4. Гарантия: Официальная гарантия производителя 1-2 года. Гарантийный ремонт в сервисных центрах.
5. Отслеживание заказа: Трек-номер придет на email после отправки. Отслеживается в личном кабинете.
6. Проблемы с оплатой: Проверьте баланс карты, включен ли онлайн-платеж. Попробуйте другую карту или способ оплаты.
7. Наличие товара: Если товар "Под заказ", срок поставки 7-14 дней. Если "Нет в наличии", уточните у оператора.

Если вопрос выходит за рамки этих тем или требует индивидуального подхода, предложите связаться с сотрудником."""


# Store role -> completion role
COMPLETION_ROLES = {
    MessageRole.CUSTOMER: "user",
    MessageRole.BOT: "assistant",
    MessageRole.EMPLOYEE: "assistant",
}


def build_completion_messages(
    preamble: str,
    history: List[MessageRecord],
    message: str,
) -> List[Dict[str, str]]:
    """{preamble, history, new message} in completion format"""
    messages = [{"role": "system", "content": preamble}]
    for item in history:
        messages.append({"role": COMPLETION_ROLES[item.role], "content": item.content})
    messages.append({"role": "user", "content": message})
    return messages


class BotResponder:
    def __init__(
        self,
        store: SessionStore,
        verifier: TokenVerifier,
        completion: CompletionClient,
        escalation_policy: Optional[EscalationPolicy] = None,
        session_fallback: SessionFallback = SessionFallback.FAIL,
        history_page_size: Optional[int] = None,
        preamble: Optional[str] = None,
    ):
        self.store = store
        self.verifier = verifier
        self.completion = completion
        self.escalation_policy = escalation_policy or KeywordEscalationPolicy()
        self.session_fallback = session_fallback
        self.history_page_size = history_page_size
        self.preamble = preamble or SUPPORT_PREAMBLE
        self._service = Actor.service()

    async def _resolve_session(self, user_id: str, session_id: Optional[str]) -> SessionRecord:
        if session_id:
            session = await self.store.get_session(self._service, session_id)
            if session is not None and session.user_id == user_id:
                return session

            reason = "not found" if session is None else "owned by another user"
            if self.session_fallback == SessionFallback.FAIL:
                logger.warning(f"⚠️ Session {session_id} {reason} for user {user_id}")
                raise SessionNotFound(session_id)
            logger.warning(f"⚠️ Session {session_id} {reason}; starting a new session for {user_id}")

        return await self.store.create_session(self._service, user_id=user_id)

    async def respond(self, token: Optional[str], message: str, session_id: Optional[str] = None) -> BotReply:
        """
        Handle one customer message.

        Raises:
            Unauthorized, SessionNotFound, CompletionError (and subclasses)
        """
        user_id = self.verifier.verify(token)
        logger.info(f"💬 Chat bot request: user={user_id} session={session_id}")

        session = await self._resolve_session(user_id, session_id)

        history = await self.store.list_messages(
            self._service, session.id, limit=self.history_page_size
        )

        await self.store.insert_message(
            self._service, session.id, MessageRole.CUSTOMER, message, user_id=user_id
        )

        reply = await self.completion.complete(
            build_completion_messages(self.preamble, history, message)
        )
        reply = reply or FALLBACK_REPLY

        await self.store.insert_message(
            self._service, session.id, MessageRole.BOT, reply, user_id=user_id
        )

        need_escalation = self.escalation_policy.should_escalate(reply)
        if need_escalation:
            logger.info(f"🙋 Bot suggests escalation for session {session.id}")

        return BotReply(message=reply, session_id=session.id, need_escalation=need_escalation)
