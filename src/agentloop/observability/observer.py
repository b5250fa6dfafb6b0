"""
observability/observer.py — Telemetry Observers

Write-only telemetry sink for the agent loop. The core emits events and
never reads them back; observers must never block or fail a turn.

Backends:
    noop  → NoopObserver   (drop everything)
    log   → LogObserver    (structlog event per ObserverEvent)

MultiObserver fans one event out to several backends and isolates a
failing child from its siblings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal, Optional, Union

from pydantic import BaseModel

from agentloop.observability.logger import get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────


class ToolCallEvent(BaseModel):
    """One tool execution inside a turn (success or failure)."""
    kind: Literal["tool_call"] = "tool_call"
    tool: str
    duration: float            # seconds
    success: bool


class AgentStartEvent(BaseModel):
    kind: Literal["agent_start"] = "agent_start"
    provider: str
    model: str


class AgentEndEvent(BaseModel):
    kind: Literal["agent_end"] = "agent_end"
    duration: float            # seconds
    tokens_used: Optional[int] = None


ObserverEvent = Union[ToolCallEvent, AgentStartEvent, AgentEndEvent]


# ─────────────────────────────────────────────────────────────────────────────
# Observers
# ─────────────────────────────────────────────────────────────────────────────


class Observer(ABC):
    """Fire-and-forget event sink."""

    name: str = "observer"

    @abstractmethod
    def record_event(self, event: ObserverEvent) -> None:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class NoopObserver(Observer):
    name = "noop"

    def record_event(self, event: ObserverEvent) -> None:
        return None


class LogObserver(Observer):
    """Emit every event as a structured log line."""

    name = "log"

    def record_event(self, event: ObserverEvent) -> None:
        try:
            log.info(f"observer.{event.kind}", **event.model_dump(exclude={"kind"}))
        except Exception as e:
            log.debug("observer.record_failed", error=str(e))


class MultiObserver(Observer):
    name = "multi"

    def __init__(self, observers: list[Observer]):
        self._observers = list(observers)

    def record_event(self, event: ObserverEvent) -> None:
        for obs in self._observers:
            try:
                obs.record_event(event)
            except Exception as e:
                log.warning("observer.child_failed", observer=repr(obs), error=str(e))

    def __repr__(self) -> str:
        return f"<MultiObserver {self._observers!r}>"


def create_observer(backend: str) -> Observer:
    """Return the observer for a configured backend name ('log' or 'noop')."""
    if backend == "log":
        return LogObserver()
    if backend in ("noop", "none", ""):
        return NoopObserver()
    log.warning("observer.unknown_backend", backend=backend, fallback="noop")
    return NoopObserver()
