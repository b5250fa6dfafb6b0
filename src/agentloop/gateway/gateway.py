"""
gateway/gateway.py — Realtime Gateway

Transport-independent message handling for the duplex chat channel.
GatewayServer hands every text frame to handle_text() together with a
`send` coroutine for the same connection; replies go out through it.

A `message` frame runs one full TurnExecutor turn (silent, so only the
final answer reaches the client) over a copy of the session's history.
Only the final assistant answer is written back to the session; the
intermediate tool-use exchange stays local to the turn.

Failures are reported as `error` frames. The connection is never closed
from here.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from pydantic import ValidationError

from agentloop.agent.executor import TurnExecutor
from agentloop.brain.types import ChatMessage
from agentloop.exceptions import AgentLoopError, LLMError, SessionNotFoundError
from agentloop.gateway.protocol import (
    AssistantMessage,
    ErrorMessage,
    NewSession,
    SessionCreated,
    ServerMessage,
    Typing,
    UserMessage,
    parse_client_message,
)
from agentloop.gateway.session_store import SessionStore
from agentloop.observability.logger import bind_session, clear_session, get_logger

log = get_logger(__name__)

SendFn = Callable[[str], Awaitable[None]]


class RealtimeGateway:

    def __init__(self, store: SessionStore, executor: TurnExecutor, system_prompt: str):
        self._store = store
        self._executor = executor
        self._system_prompt = system_prompt

    @property
    def store(self) -> SessionStore:
        return self._store

    async def handle_text(self, raw: str | bytes, send: SendFn) -> None:
        """Process one client frame, emitting zero or more replies via `send`."""
        try:
            msg = parse_client_message(raw)
        except ValidationError as e:
            log.warning("gateway.invalid_message", errors=e.error_count())
            await self._reply(send, ErrorMessage(content=f"Invalid message format: {_first_error(e)}"))
            return

        if isinstance(msg, NewSession):
            await self._handle_new_session(send)
        else:
            await self._handle_message(msg, send)

    # ─────────────────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────────────────

    async def _handle_new_session(self, send: SendFn) -> None:
        try:
            session_id = await self._create_seeded_session()
        except AgentLoopError as e:
            await self._reply(send, ErrorMessage(content=str(e)))
            return
        await self._reply(send, SessionCreated(session_id=session_id))

    async def _handle_message(self, msg: UserMessage, send: SendFn) -> None:
        session_id = msg.session_id

        if not await self._store.exists(session_id):
            # Client-chosen ids are never honoured; hand out a fresh one instead
            try:
                new_id = await self._create_seeded_session()
            except AgentLoopError as e:
                await self._reply(send, ErrorMessage(content=str(e)))
                return
            log.info("gateway.session_replaced", requested=session_id, session_id=new_id)
            await self._reply(
                send,
                ErrorMessage(content=f"Session '{session_id}' not found. Created new session."),
            )
            await self._reply(send, SessionCreated(session_id=new_id))
            return

        bind_session(session_id)
        try:
            await self._store.append(session_id, ChatMessage.user(msg.content))
            await self._reply(send, Typing())
            history = await self._store.get_history(session_id)

            try:
                answer = await self._executor.run_turn(history)
            except AgentLoopError as e:
                log.error("gateway.turn_failed", error=str(e), error_type=type(e).__name__)
                content = f"Provider error: {e}" if isinstance(e, LLMError) else str(e)
                await self._reply(send, ErrorMessage(content=content))
                return

            await self._store.append(session_id, ChatMessage.assistant(answer))
            await self._reply(send, AssistantMessage(content=answer, session_id=session_id))
        except SessionNotFoundError as e:
            # Evicted mid-turn
            await self._reply(send, ErrorMessage(content=str(e)))
        finally:
            clear_session()

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _create_seeded_session(self) -> str:
        session_id = await self._store.create()
        await self._store.append(session_id, ChatMessage.system(self._system_prompt))
        return session_id

    @staticmethod
    async def _reply(send: SendFn, message: ServerMessage) -> None:
        await send(message.to_json())


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first['msg']}" if loc else first["msg"]
