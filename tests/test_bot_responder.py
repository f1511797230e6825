"""
Tests for the Bot Responder turn
"""

from datetime import datetime, timezone

import pytest

from support_chat.bot_gateway import LocalBotGateway
from support_chat.bot_responder import SUPPORT_PREAMBLE, build_completion_messages
from support_chat.completion_client import FALLBACK_REPLY
from support_chat.errors import (
    BotCallError,
    CompletionBillingError,
    CompletionThrottled,
    SessionNotFound,
    Unauthorized,
)
from support_chat.schemas import Actor, MessageRecord, MessageRole

from helpers import DEFAULT_REPLY, FakeCompletionClient, make_context, run


class TestBuildCompletionMessages:
    def test_roles_mapped(self):
        now = datetime.now(timezone.utc)
        history = [
            MessageRecord("1", "s", "u", MessageRole.CUSTOMER, "вопрос", now),
            MessageRecord("2", "s", "u", MessageRole.BOT, "ответ", now),
        ]
        messages = build_completion_messages("preamble", history, "ещё")
        assert messages == [
            {"role": "system", "content": "preamble"},
            {"role": "user", "content": "вопрос"},
            {"role": "assistant", "content": "ответ"},
            {"role": "user", "content": "ещё"},
        ]


class TestBotResponder:
    def setup_method(self):
        self.completion = FakeCompletionClient()
        self.ctx = make_context(self.completion)
        self.token = self.ctx.verifier.issue("user-1")

    def messages_of(self, session_id):
        return run(self.ctx.store.list_messages(Actor.service(), session_id))

    def test_new_session(self):
        reply = run(self.ctx.responder.respond(self.token, "Сколько идет доставка?"))

        assert reply.message == DEFAULT_REPLY
        assert reply.need_escalation is False

        session = run(self.ctx.store.get_session(Actor.service(), reply.session_id))
        assert session.user_id == "user-1"

        messages = self.messages_of(reply.session_id)
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.CUSTOMER, "Сколько идет доставка?"),
            (MessageRole.BOT, DEFAULT_REPLY),
        ]
        assert self.completion.calls[0][0] == {"role": "system", "content": SUPPORT_PREAMBLE}
        assert self.completion.calls[0][-1] == {"role": "user", "content": "Сколько идет доставка?"}

    def test_history_sent_on_followup(self):
        first = run(self.ctx.responder.respond(self.token, "Привет"))
        run(self.ctx.responder.respond(self.token, "А возврат?", first.session_id))

        transcript = self.completion.calls[1]
        assert [m["role"] for m in transcript] == ["system", "user", "assistant", "user"]
        assert transcript[1]["content"] == "Привет"

    def test_history_page_size(self):
        ctx = make_context(self.completion, history_page_size=2)
        token = ctx.verifier.issue("user-1")
        reply = run(ctx.responder.respond(token, "1"))
        for text in ("2", "3"):
            run(ctx.responder.respond(token, text, reply.session_id))

        transcript = self.completion.calls[-1]
        assert len(transcript) == 4
        assert transcript[-1]["content"] == "3"

    def test_escalation_suggested(self):
        self.completion.replies = ["Этот вопрос лучше связаться с сотрудником."]
        reply = run(self.ctx.responder.respond(self.token, "Мой заказ потерялся"))
        assert reply.need_escalation is True

    def test_empty_reply_falls_back(self):
        self.completion.replies = [""]
        reply = run(self.ctx.responder.respond(self.token, "?"))
        assert reply.message == FALLBACK_REPLY

    def test_throttled_leaves_no_bot_message(self):
        first = run(self.ctx.responder.respond(self.token, "Привет"))
        self.completion.error = CompletionThrottled("Превышен лимит запросов. Попробуйте позже.")

        with pytest.raises(CompletionThrottled):
            run(self.ctx.responder.respond(self.token, "Еще вопрос", first.session_id))

        messages = self.messages_of(first.session_id)
        assert [m.role for m in messages] == [MessageRole.CUSTOMER, MessageRole.BOT, MessageRole.CUSTOMER]

    def test_bot_rows_never_exceed_customer_rows(self):
        reply = run(self.ctx.responder.respond(self.token, "1"))
        self.completion.error = CompletionBillingError("billing")
        with pytest.raises(CompletionBillingError):
            run(self.ctx.responder.respond(self.token, "2", reply.session_id))
        self.completion.error = None
        run(self.ctx.responder.respond(self.token, "3", reply.session_id))

        messages = self.messages_of(reply.session_id)
        customers = sum(1 for m in messages if m.role == MessageRole.CUSTOMER)
        bots = sum(1 for m in messages if m.role == MessageRole.BOT)
        assert customers == 3
        assert bots == 2

    def test_unauthorized(self):
        with pytest.raises(Unauthorized):
            run(self.ctx.responder.respond("bad-token", "Привет"))
        assert self.completion.calls == []

    def test_unknown_session_fails_by_default(self):
        with pytest.raises(SessionNotFound):
            run(self.ctx.responder.respond(self.token, "Привет", "no-such-session"))

    def test_foreign_session_fails_by_default(self):
        other = run(self.ctx.responder.respond(self.ctx.verifier.issue("user-2"), "Привет"))
        with pytest.raises(SessionNotFound):
            run(self.ctx.responder.respond(self.token, "Привет", other.session_id))
        assert len(self.messages_of(other.session_id)) == 2

    def test_create_new_fallback(self):
        ctx = make_context(self.completion, session_fallback="create_new")
        token = ctx.verifier.issue("user-1")
        other = run(ctx.responder.respond(ctx.verifier.issue("user-2"), "Привет"))

        reply = run(ctx.responder.respond(token, "Привет", other.session_id))

        assert reply.session_id != other.session_id
        session = run(ctx.store.get_session(Actor.service(), reply.session_id))
        assert session.user_id == "user-1"
        assert len(run(ctx.store.list_messages(Actor.service(), other.session_id))) == 2


class TestLocalBotGateway:
    def test_failure_becomes_bot_call_error(self):
        completion = FakeCompletionClient(error=CompletionThrottled("Превышен лимит запросов. Попробуйте позже."))
        ctx = make_context(completion)
        gateway = LocalBotGateway(ctx.responder, ctx.verifier.issue("user-1"))

        with pytest.raises(BotCallError) as exc:
            run(gateway.send("Привет", None))
        assert exc.value.status_code == 429
        assert exc.value.need_escalation is True

    def test_unknown_session_is_404(self):
        ctx = make_context()
        gateway = LocalBotGateway(ctx.responder, ctx.verifier.issue("user-1"))
        with pytest.raises(BotCallError) as exc:
            run(gateway.send("Привет", "missing"))
        assert exc.value.status_code == 404
