"""
Shared helpers for the test suite: settings, context and a fake completion
backend.
"""

import asyncio

from support_chat.completion_client import CompletionClient
from support_chat.config import Settings
from support_chat.context import build_context
from support_chat.schemas import Actor, UserRoleName

TEST_SECRET = "test-secret"
DEFAULT_REPLY = "Доставка по России занимает 3-7 дней."


class FakeCompletionClient(CompletionClient):
    """Returns queued replies (or raises) and records every transcript"""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def complete(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return DEFAULT_REPLY


def make_settings(**chat_overrides) -> Settings:
    chat = {"history_page_size": 50, "session_fallback": "fail"}
    chat.update(chat_overrides)
    return Settings(app_config={
        "app": {"name": "Support Chat API", "version": "1.0.0", "log_level": "WARNING"},
        "server": {"api_prefix": "/api/v1"},
        "database": {"url": "sqlite://"},
        "auth": {"jwt_secret": TEST_SECRET, "audience": "authenticated"},
        "llm": {"api_key": "", "model": "test-model"},
        "chat": chat,
        "cors": {
            "allow_origins": ["*"],
            "allow_headers": ["authorization", "x-client-info", "apikey", "content-type"],
        },
    })


def make_context(completion=None, **chat_overrides):
    return build_context(
        make_settings(**chat_overrides),
        completion=completion or FakeCompletionClient(),
    )


def run(coro):
    return asyncio.run(coro)


async def make_employee(ctx, user_id="emp-1", full_name="Анна Сотрудник") -> Actor:
    service = Actor.service()
    await ctx.store.grant_role(service, user_id, UserRoleName.EMPLOYEE)
    await ctx.store.upsert_profile(service, user_id, full_name=full_name, email=f"{user_id}@shop.example")
    return await ctx.store.resolve_actor(user_id)


async def make_customer(ctx, user_id="user-1", full_name=None, email=None) -> Actor:
    actor = await ctx.store.resolve_actor(user_id)
    if full_name or email:
        await ctx.store.upsert_profile(actor, user_id, full_name=full_name, email=email)
    return actor


async def settle(rounds: int = 20):
    """Let pending tasks on the running loop make progress"""
    for _ in range(rounds):
        await asyncio.sleep(0)
