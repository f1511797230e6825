"""
Completion Client - OpenAI-compatible chat completion backend

File: support_chat/completion_client.py

Failures are classified for the Bot Responder:
- 429 / rate limit  -> CompletionThrottled
- 402 / billing     -> CompletionBillingError
- everything else   -> CompletionError
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

import openai

from .errors import CompletionBillingError, CompletionError, CompletionThrottled

logger = logging.getLogger(__name__)


FALLBACK_REPLY = "Извините, не могу ответить."


class CompletionClient(ABC):
    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """
        Submit a chat transcript and return the assistant text.

        messages: [{"role": "system"|"user"|"assistant", "content": "..."}]
        """
        pass


class GatewayCompletionClient(CompletionClient):
    """AsyncOpenAI pointed at an OpenAI-compatible gateway"""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise CompletionError("Completion API key not configured")
            # No automatic retries; a failed turn is resubmitted by the user
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        client = self.client
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
            )
        except openai.RateLimitError as e:
            logger.warning(f"🐌 Completion backend throttled: {e}")
            raise CompletionThrottled("Превышен лимит запросов. Попробуйте позже.") from e
        except openai.APIStatusError as e:
            logger.error(f"❌ Completion backend error: {e.status_code} {e}")
            if e.status_code == 402:
                raise CompletionBillingError(
                    "Требуется пополнение баланса. Обратитесь к администратору."
                ) from e
            if e.status_code == 429:
                raise CompletionThrottled("Превышен лимит запросов. Попробуйте позже.") from e
            raise CompletionError("AI gateway error") from e
        except openai.APIError as e:
            logger.error(f"❌ Completion backend unreachable: {e}")
            raise CompletionError("AI gateway error") from e

        content = None
        if response.choices:
            content = response.choices[0].message.content
        return (content or FALLBACK_REPLY).strip()
