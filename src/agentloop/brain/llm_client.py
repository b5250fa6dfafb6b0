"""
brain/llm_client.py — Abstract Provider + Retry

All provider implementations subclass BaseProvider and implement chat().
The turn executor and delegation guard depend only on chat() and
chat_with_system(); nothing in the core knows about wire formats.

  - _call_with_retry() — exponential backoff on transient errors
  - ResilientProvider — wraps any provider with retry + optional failover.
    If the primary exhausts its retries, each fallback is tried in order.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

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


class BaseProvider(ABC):
    """
    Abstract base for all model providers.

    Subclasses must implement:
      - chat()         -> one request/response round trip over a history
      - health_check() -> verify connectivity to the provider
    """

    name: str = "provider"

    @abstractmethod
    async def chat(
        self,
        history: list[ChatMessage],
        model: str,
        temperature: float,
    ) -> str:
        """Send the full history and return the raw response text."""
        ...

    async def chat_with_system(
        self,
        system_prompt: Optional[str],
        message: str,
        model: str,
        temperature: float,
    ) -> str:
        """Single-shot completion with an optional system prompt."""
        history: list[ChatMessage] = []
        if system_prompt:
            history.append(ChatMessage.system(system_prompt))
        history.append(ChatMessage.user(message))
        return await self.chat(history, model, temperature)

    async def health_check(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ─────────────────────────────────────────────────────────────────────────────
# Retry logic
# ─────────────────────────────────────────────────────────────────────────────


async def _call_with_retry(
    call: Callable[[], Awaitable[str]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> str:
    """
    Await call() with exponential backoff on transient errors.

    Retries on LLMConnectionError and LLMRateLimitError. Context and
    invalid-request errors are permanent and propagate immediately.

    Backoff: min(base_delay * 2^attempt + jitter, max_delay), or the
    provider's retry_after when a rate limit error carries one.
    """
    last_error: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return await call()

        except (LLMConnectionError, LLMRateLimitError) as e:
            last_error = e

            if attempt == max_attempts - 1:
                break

            if isinstance(e, LLMRateLimitError) and e.retry_after:
                delay = min(e.retry_after, max_delay)
            else:
                jitter = random.uniform(0, 0.5)
                delay = min(base_delay * (2 ** attempt) + jitter, max_delay)

            log.warning(
                "llm.retrying",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)

    raise last_error  # type: ignore[misc]


class ResilientProvider(BaseProvider):
    """
    Wraps a primary provider with automatic retry and optional failover.

    Permanent errors (context overflow, invalid request) skip failover:
    a different provider will not fix them.
    """

    name = "resilient"

    def __init__(
        self,
        primary: BaseProvider,
        fallbacks: Optional[list[BaseProvider]] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._primary = primary
        self._fallbacks = fallbacks or []
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def primary(self) -> BaseProvider:
        return self._primary

    @property
    def fallbacks(self) -> list[BaseProvider]:
        return list(self._fallbacks)

    async def chat(
        self,
        history: list[ChatMessage],
        model: str,
        temperature: float,
    ) -> str:
        all_providers = [self._primary] + self._fallbacks
        last_error: Exception | None = None

        for i, provider in enumerate(all_providers):
            if i > 0:
                log.warning(
                    "llm.failing_over",
                    from_provider=repr(all_providers[i - 1]),
                    to_provider=repr(provider),
                    reason=str(last_error),
                )
            try:
                return await _call_with_retry(
                    lambda p=provider: p.chat(history, model, temperature),
                    max_attempts=self._max_attempts,
                    base_delay=self._base_delay,
                    max_delay=self._max_delay,
                )
            except (LLMContextError, LLMInvalidRequestError):
                raise
            except LLMError as e:
                last_error = e
                log.error(
                    "llm.provider_exhausted",
                    provider=repr(provider),
                    error=str(e),
                    will_try_fallback=i < len(all_providers) - 1,
                )

        raise LLMError(
            f"All providers failed. Last error: {last_error}",
            provider="all",
        )

    async def health_check(self) -> bool:
        return await self._primary.health_check()

    def __repr__(self) -> str:
        n = len(self._fallbacks)
        suffix = f" + {n} fallback(s)" if n else ""
        return f"<ResilientProvider primary={self._primary!r}{suffix}>"


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────

_DEFAULT_BASE_URLS = {
    "openai": None,
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://localhost:11434/v1",
}

KNOWN_PROVIDERS = frozenset(_DEFAULT_BASE_URLS)


def create_provider(
    name: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_seconds: float = 120.0,
) -> BaseProvider:
    """Return a provider client for a configured provider name."""
    if name not in _DEFAULT_BASE_URLS:
        raise ValueError(
            f"Unsupported provider '{name}'. Supported: {sorted(KNOWN_PROVIDERS)}"
        )
    from agentloop.brain.openai_client import OpenAICompatibleProvider

    if name == "ollama" and not api_key:
        api_key = "ollama"  # the OpenAI SDK insists on a key; Ollama ignores it
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url=base_url or _DEFAULT_BASE_URLS[name],
        provider_name=name,
        timeout_seconds=timeout_seconds,
    )
