"""
brain/openai_client.py — OpenAI-compatible Provider

One client for every endpoint that speaks the OpenAI chat completions API:
OpenAI itself, OpenRouter, and Ollama's /v1 shim. SDK exceptions are
normalised into the LLMError family so the executor never sees openai types.
"""

from __future__ import annotations

from typing import Optional

import openai
from openai import AsyncOpenAI

from agentloop.brain.llm_client import BaseProvider
from agentloop.brain.types import ChatMessage
from agentloop.exceptions import (
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from agentloop.observability.logger import get_logger

log = get_logger(__name__)


class OpenAICompatibleProvider(BaseProvider):

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        provider_name: str = "openai",
        timeout_seconds: float = 120.0,
    ):
        self.name = provider_name
        self._timeout = timeout_seconds
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def chat(
        self,
        history: list[ChatMessage],
        model: str,
        temperature: float,
    ) -> str:
        log.debug(
            "provider.chat.start",
            provider=self.name,
            model=model,
            message_count=len(history),
        )
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[m.to_provider_dict() for m in history],
                temperature=temperature,
                timeout=self._timeout,
            )
        except openai.AuthenticationError as e:
            raise LLMInvalidRequestError(str(e), provider=self.name, status_code=401) from e
        except openai.RateLimitError as e:
            raise LLMRateLimitError(str(e), provider=self.name) from e
        except openai.BadRequestError as e:
            if "context" in str(e).lower() or "too long" in str(e).lower():
                raise LLMContextError(str(e), provider=self.name) from e
            raise LLMInvalidRequestError(str(e), provider=self.name) from e
        except (openai.APIConnectionError, openai.APITimeoutError) as e:
            raise LLMConnectionError(str(e), provider=self.name) from e
        except openai.APIError as e:
            raise LLMError(
                str(e), provider=self.name, status_code=getattr(e, "status_code", None)
            ) from e

        if not response.choices:
            raise LLMError("Provider returned no choices", provider=self.name)

        content = response.choices[0].message.content or ""
        log.debug(
            "provider.chat.complete",
            provider=self.name,
            model=response.model,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
        )
        return content

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except openai.APIError as e:
            log.warning("provider.health_check.failed", provider=self.name, error=str(e))
            return False

    def __repr__(self) -> str:
        return f"<OpenAICompatibleProvider {self.name}>"
