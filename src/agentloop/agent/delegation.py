"""
agent/delegation.py — Sub-agent Delegation Guard

A delegate agent is a differently-configured model endpoint (own provider,
model, system prompt, temperature) that the main agent can hand a task to
through the `delegate` tool. Delegation is a single provider round trip,
not a nested tool-use loop.

Depth accounting:
    One DelegationDepth counter exists per top-level turn. TurnExecutor
    opens it with delegation_scope(); it travels by reference through a
    ContextVar, so sibling delegations and any tasks spawned from the same
    turn share it. Each guard compares the shared depth against its own
    max_depth, increments before the call and decrements on every exit path.
"""

from __future__ import annotations

import contextvars
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from agentloop.brain.llm_client import BaseProvider
from agentloop.config.settings import DelegateAgentConfig
from agentloop.exceptions import DelegationDepthError
from agentloop.observability.logger import get_logger

log = get_logger(__name__)


class DelegationDepth:
    """Delegation depth counter with atomic check-and-increment."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def enter(self, agent: str, max_depth: int) -> int:
        """Increment and return the new depth, or raise DelegationDepthError."""
        with self._lock:
            if self._value >= max_depth:
                raise DelegationDepthError(agent, self._value, max_depth)
            self._value += 1
            return self._value

    def exit(self) -> None:
        with self._lock:
            if self._value > 0:
                self._value -= 1

    def __repr__(self) -> str:
        return f"<DelegationDepth {self._value}>"


_current_depth: contextvars.ContextVar[Optional[DelegationDepth]] = contextvars.ContextVar(
    "agentloop_delegation_depth", default=None
)


def current_depth() -> Optional[DelegationDepth]:
    return _current_depth.get()


@contextmanager
def delegation_scope() -> Iterator[DelegationDepth]:
    """Open a depth counter for a top-level turn, or reuse the enclosing one."""
    existing = _current_depth.get()
    if existing is not None:
        yield existing
        return
    depth = DelegationDepth()
    token = _current_depth.set(depth)
    try:
        yield depth
    finally:
        _current_depth.reset(token)


class DelegationGuard:
    """Bounds delegation into one configured sub-agent."""

    def __init__(self, name: str, config: DelegateAgentConfig, provider: BaseProvider):
        self.name = name
        self.config = config
        self._provider = provider

    @property
    def max_depth(self) -> int:
        return self.config.max_depth

    async def delegate(self, message: str, depth: Optional[DelegationDepth] = None) -> str:
        """
        Run one single-shot completion on the sub-agent.

        Raises DelegationDepthError when the shared depth is already at this
        agent's max_depth; provider errors propagate after the depth is
        restored.
        """
        counter = depth or current_depth() or DelegationDepth()
        level = counter.enter(self.name, self.max_depth)
        log.info("delegation.start", agent=self.name, depth=level, max_depth=self.max_depth)
        try:
            response = await self._provider.chat_with_system(
                self.config.system_prompt,
                message,
                self.config.model,
                self.config.temperature,
            )
        finally:
            counter.exit()
        log.info("delegation.done", agent=self.name, chars=len(response))
        return response

    def __repr__(self) -> str:
        return f"<DelegationGuard agent={self.name} max_depth={self.max_depth}>"
