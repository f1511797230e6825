"""
Bot Gateway - How the customer widget reaches the Bot Responder

File: support_chat/bot_gateway.py

- LocalBotGateway : in-process call (tests, embedded use)
- HttpBotGateway  : POST to the chat-bot endpoint over aiohttp
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from .bot_responder import BotResponder
from .errors import BotCallError, CompletionError, SessionNotFound, Unauthorized
from .schemas import BotReply


class BotGateway(ABC):
    @abstractmethod
    async def send(self, message: str, session_id: Optional[str]) -> BotReply:
        """Send a customer message; BotCallError on failure"""
        pass


class LocalBotGateway(BotGateway):
    def __init__(self, responder: BotResponder, token: str):
        self.responder = responder
        self.token = token

    async def send(self, message: str, session_id: Optional[str]) -> BotReply:
        try:
            return await self.responder.respond(self.token, message, session_id)
        except CompletionError as e:
            raise BotCallError(str(e), status_code=e.status_code) from e
        except Unauthorized as e:
            raise BotCallError(str(e), status_code=401) from e
        except SessionNotFound as e:
            raise BotCallError(str(e), status_code=404) from e


class HttpBotGateway(BotGateway):
    """Client untuk endpoint chat-bot"""

    def __init__(self, url: str, token: str, timeout: int = 60, client_info: str = "support-chat-widget"):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.client_info = client_info

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.token}",
            "x-client-info": self.client_info,
        }

    async def send(self, message: str, session_id: Optional[str]) -> BotReply:
        payload: Dict[str, Any] = {"message": message}
        if session_id:
            payload["sessionId"] = session_id

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json=payload,
                    headers=self._get_headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    data = await response.json(content_type=None)
                    status = response.status
        except (aiohttp.ClientError, ValueError) as e:
            raise BotCallError(f"Bot request failed: {e}") from e

        if status != 200 or not isinstance(data, dict) or "error" in data:
            error = data.get("error") if isinstance(data, dict) else None
            need = data.get("needEscalation", True) if isinstance(data, dict) else True
            raise BotCallError(error or f"Bot request failed ({status})", status_code=status, need_escalation=need)

        session_id = data.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise BotCallError("Bot request failed: malformed response", status_code=status)

        return BotReply(
            message=data.get("message") or "",
            session_id=session_id,
            need_escalation=bool(data.get("needEscalation", False)),
        )
