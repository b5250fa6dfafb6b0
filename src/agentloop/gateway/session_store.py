"""
gateway/session_store.py — Centralized Session Store

Owns all Session objects. Maps session_id → Session.
Shared by every WebSocket connection in the gateway.

Locking:
  - one asyncio.Lock guards the id → Session map
  - each Session carries its own asyncio.Lock for history mutation
  - eviction takes the session lock, marks the session evicted, then drops
    it from the map, so a mutator racing with eviction sees
    SessionNotFoundError instead of writing into a discarded session

History handed out by get_history() is a copy; all writes go through
append(), which trims to max_history_messages after every write.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from pydantic import BaseModel

from agentloop.agent.history import DEFAULT_MAX_HISTORY_MESSAGES, trim_history
from agentloop.brain.types import ChatMessage
from agentloop.exceptions import SessionCapacityError, SessionNotFoundError
from agentloop.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_MAX_SESSIONS = 100
DEFAULT_SESSION_TIMEOUT_SECS = 3600


@dataclass
class Session:
    id: str
    created_at: float
    last_activity: float
    history: list[ChatMessage] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    evicted: bool = False


class SessionInfo(BaseModel):
    """Read-only summary returned by list_sessions()."""
    id: str
    message_count: int
    age_secs: float


class SessionStore:
    """
    Async-safe session store for the gateway.

    `clock` returns seconds on a monotonic scale; tests inject a fake one.
    """

    def __init__(
        self,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        timeout_secs: float = DEFAULT_SESSION_TIMEOUT_SECS,
        max_history_messages: int = DEFAULT_MAX_HISTORY_MESSAGES,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._max_sessions = max_sessions
        self._timeout = timeout_secs
        self._max_history = max_history_messages
        self._clock = clock or time.monotonic

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    async def create(self) -> str:
        """Create an empty session and return its id."""
        async with self._lock:
            if len(self._sessions) >= self._max_sessions:
                log.warning("session_store.capacity_reached", max_sessions=self._max_sessions)
                raise SessionCapacityError(self._max_sessions)
            now = self._clock()
            session_id = str(uuid.uuid4())
            self._sessions[session_id] = Session(id=session_id, created_at=now, last_activity=now)
            count = len(self._sessions)
        log.info("session_store.created", session_id=session_id, active=count)
        return session_id

    async def get_history(self, session_id: str) -> list[ChatMessage]:
        """Return a copy of the session's history and mark it active."""
        session = await self._lookup(session_id)
        async with session.lock:
            if session.evicted:
                raise SessionNotFoundError(session_id)
            session.last_activity = self._clock()
            return list(session.history)

    async def append(self, session_id: str, message: ChatMessage) -> None:
        """Append a message, mark the session active and trim its history."""
        session = await self._lookup(session_id)
        async with session.lock:
            if session.evicted:
                raise SessionNotFoundError(session_id)
            session.history.append(message)
            session.last_activity = self._clock()
            session.history = trim_history(session.history, self._max_history)

    async def exists(self, session_id: str) -> bool:
        async with self._lock:
            return session_id in self._sessions

    async def session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def list_sessions(self) -> list[SessionInfo]:
        async with self._lock:
            sessions = list(self._sessions.values())
        now = self._clock()
        infos: list[SessionInfo] = []
        for session in sessions:
            async with session.lock:
                if session.evicted:
                    continue
                infos.append(SessionInfo(
                    id=session.id,
                    message_count=len(session.history),
                    age_secs=now - session.created_at,
                ))
        return infos

    async def evict_expired(self) -> int:
        """Remove sessions idle for at least the timeout. Returns the count removed."""
        now = self._clock()
        async with self._lock:
            candidates = [
                s for s in self._sessions.values()
                if now - s.last_activity >= self._timeout
            ]

        evicted = 0
        for session in candidates:
            async with session.lock:
                # Touched after the scan
                if session.evicted or now - session.last_activity < self._timeout:
                    continue
                session.evicted = True
            async with self._lock:
                if self._sessions.get(session.id) is session:
                    del self._sessions[session.id]
                    evicted += 1

        if evicted:
            log.info("session_store.evicted", count=evicted)
        return evicted

    async def _lookup(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session
