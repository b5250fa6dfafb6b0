"""
tests/unit/test_gateway.py — Realtime Gateway Tests

Tests for the wire protocol, RealtimeGateway message handling (with a fake
`send`), and the GatewayServer HTTP/auth surface.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from http import HTTPStatus
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from websockets.asyncio.client import connect
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed, InvalidStatus
from websockets.http11 import Request, Response

from agentloop.agent.executor import TurnExecutor
from agentloop.brain.llm_client import BaseProvider
from agentloop.brain.types import ChatMessage, Role
from agentloop.exceptions import LLMRateLimitError
from agentloop.gateway.gateway import RealtimeGateway
from agentloop.gateway.protocol import (
    AssistantMessage,
    ErrorMessage,
    NewSession,
    SessionCreated,
    Typing,
    UserMessage,
    parse_client_message,
)
from agentloop.gateway.server import GatewayServer
from agentloop.gateway.session_store import SessionStore
from agentloop.tools.registry import ToolRegistry


# ── Helpers ───────────────────────────────────────────────────────────────────

class ScriptedProvider(BaseProvider):
    def __init__(self, responses: list[str]):
        self._responses = list(responses)
        self.calls: list[list[ChatMessage]] = []

    async def chat(self, history, model, temperature) -> str:
        self.calls.append(list(history))
        return self._responses[min(len(self.calls), len(self._responses)) - 1]


class RateLimitedProvider(BaseProvider):
    async def chat(self, history, model, temperature) -> str:
        raise LLMRateLimitError("slow down", provider="fake")


class BrokenProvider(BaseProvider):
    """Fails with something outside the AgentLoopError hierarchy."""

    async def chat(self, history, model, temperature) -> str:
        raise RuntimeError("socket blew up")


class Outbox:
    """Collects frames sent by the gateway."""

    def __init__(self):
        self.frames: list[dict] = []

    async def __call__(self, raw: str) -> None:
        self.frames.append(json.loads(raw))

    @property
    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]


def _make_gateway(provider=None, store=None) -> RealtimeGateway:
    executor = TurnExecutor(
        provider or ScriptedProvider(["Hello!"]),
        ToolRegistry(),
        model="test-model",
        temperature=0.0,
        silent=True,
    )
    return RealtimeGateway(store or SessionStore(), executor, system_prompt="You are a test bot.")


async def _new_session(gateway: RealtimeGateway) -> str:
    out = Outbox()
    await gateway.handle_text('{"type": "new_session"}', out)
    return out.frames[-1]["session_id"]


# ─────────────────────────────────────────────────────────────────────────────
# Protocol
# ─────────────────────────────────────────────────────────────────────────────

class TestProtocol:
    def test_parse_message(self):
        msg = parse_client_message('{"type":"message","content":"hi","session_id":"s1"}')
        assert isinstance(msg, UserMessage)
        assert msg.content == "hi"
        assert msg.session_id == "s1"

    def test_parse_new_session(self):
        assert isinstance(parse_client_message('{"type":"new_session"}'), NewSession)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_client_message('{"type":"ping"}')

    def test_invalid_json_rejected(self):
        with pytest.raises(ValidationError):
            parse_client_message("not json")

    def test_message_missing_session_rejected(self):
        with pytest.raises(ValidationError):
            parse_client_message('{"type":"message","content":"hi"}')

    def test_server_frames(self):
        assert json.loads(Typing().to_json()) == {"type": "typing"}
        assert json.loads(ErrorMessage(content="bad").to_json()) == {"type": "error", "content": "bad"}
        assert json.loads(SessionCreated(session_id="s").to_json()) == {
            "type": "session_created", "session_id": "s",
        }
        assert json.loads(AssistantMessage(content="c", session_id="s").to_json()) == {
            "type": "message", "content": "c", "session_id": "s",
        }


# ─────────────────────────────────────────────────────────────────────────────
# RealtimeGateway
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestRealtimeGateway:
    async def test_new_session_seeds_system_prompt(self):
        gateway = _make_gateway()
        out = Outbox()
        await gateway.handle_text('{"type": "new_session"}', out)

        assert out.types == ["session_created"]
        history = await gateway.store.get_history(out.frames[0]["session_id"])
        assert history == [ChatMessage.system("You are a test bot.")]

    async def test_message_round_trip(self):
        provider = ScriptedProvider(["Hello!"])
        gateway = _make_gateway(provider)
        sid = await _new_session(gateway)

        out = Outbox()
        await gateway.handle_text(json.dumps({"type": "message", "content": "hi", "session_id": sid}), out)

        assert out.types == ["typing", "message"]
        assert out.frames[1] == {"type": "message", "content": "Hello!", "session_id": sid}
        history = await gateway.store.get_history(sid)
        assert [m.role for m in history] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert history[-1].content == "Hello!"
        # The provider saw system + user
        assert [m.content for m in provider.calls[0]] == ["You are a test bot.", "hi"]

    async def test_tool_exchange_not_stored_in_session(self):
        provider = ScriptedProvider([
            '<tool_call>{"name":"missing"}</tool_call>',
            "Final answer.",
        ])
        gateway = _make_gateway(provider)
        sid = await _new_session(gateway)

        out = Outbox()
        await gateway.handle_text(json.dumps({"type": "message", "content": "go", "session_id": sid}), out)

        assert out.frames[-1]["content"] == "Final answer."
        history = await gateway.store.get_history(sid)
        assert [m.content for m in history][1:] == ["go", "Final answer."]

    async def test_unknown_session_creates_replacement(self):
        gateway = _make_gateway()
        out = Outbox()
        await gateway.handle_text('{"type":"message","content":"hi","session_id":"ghost"}', out)

        assert out.types == ["error", "session_created"]
        assert out.frames[0]["content"] == "Session 'ghost' not found. Created new session."
        new_id = out.frames[1]["session_id"]
        assert new_id != "ghost"
        # Replacement is seeded but the message itself was not processed
        assert await gateway.store.get_history(new_id) == [ChatMessage.system("You are a test bot.")]

    async def test_invalid_json_reports_error(self):
        out = Outbox()
        await _make_gateway().handle_text("{oops", out)
        assert out.types == ["error"]
        assert out.frames[0]["content"].startswith("Invalid message format")

    async def test_unknown_type_reports_error(self):
        out = Outbox()
        await _make_gateway().handle_text('{"type":"dance"}', out)
        assert out.types == ["error"]

    async def test_capacity_reported_as_error(self):
        gateway = _make_gateway(store=SessionStore(max_sessions=1))
        await _new_session(gateway)

        out = Outbox()
        await gateway.handle_text('{"type": "new_session"}', out)
        assert out.types == ["error"]
        assert "Maximum sessions (1) reached" in out.frames[0]["content"]

    async def test_provider_error_reported_session_keeps_user_message(self):
        gateway = _make_gateway(RateLimitedProvider())
        sid = await _new_session(gateway)

        out = Outbox()
        await gateway.handle_text(json.dumps({"type": "message", "content": "hi", "session_id": sid}), out)

        assert out.types == ["typing", "error"]
        assert out.frames[1]["content"].startswith("Provider error:")
        history = await gateway.store.get_history(sid)
        assert [m.role for m in history] == [Role.SYSTEM, Role.USER]

    async def test_gateway_keeps_working_after_error(self):
        gateway = _make_gateway()
        out = Outbox()
        await gateway.handle_text("garbage", out)
        await gateway.handle_text('{"type": "new_session"}', out)
        assert out.types == ["error", "session_created"]


# ─────────────────────────────────────────────────────────────────────────────
# GatewayServer HTTP surface
# ─────────────────────────────────────────────────────────────────────────────

def _fake_connection() -> MagicMock:
    def _respond(status: HTTPStatus, text: str) -> Response:
        headers = Headers([("Content-Type", "text/plain; charset=utf-8")])
        return Response(status.value, status.phrase, headers, text.encode())

    connection = MagicMock()
    connection.respond = MagicMock(side_effect=_respond)
    return connection


def _request(path: str, authorization: str | None = None) -> Request:
    headers = Headers()
    if authorization:
        headers["Authorization"] = authorization
    return Request(path, headers)


class TestAuth:
    def test_no_token_configured_allows_all(self):
        server = GatewayServer(_make_gateway())
        assert server.is_authorized(None)

    def test_bearer_header(self):
        server = GatewayServer(_make_gateway(), auth_token="secret")
        assert server.is_authorized("Bearer secret")
        assert not server.is_authorized("Bearer wrong")
        assert not server.is_authorized("secret")

    def test_query_token(self):
        server = GatewayServer(_make_gateway(), auth_token="secret")
        assert server.is_authorized(None, "token=secret")
        assert not server.is_authorized(None, "token=nope")
        assert not server.is_authorized(None, "")

    def test_blank_token_disables_auth(self):
        server = GatewayServer(_make_gateway(), auth_token="")
        assert server.is_authorized(None)


@pytest.mark.asyncio
class TestProcessRequest:
    async def test_health_needs_no_auth(self):
        gateway = _make_gateway()
        await _new_session(gateway)
        server = GatewayServer(gateway, auth_token="secret")

        response = await server._process_request(_fake_connection(), _request("/health"))

        assert response.status_code == 200
        assert response.headers["Content-Type"] == "application/json"
        assert json.loads(response.body) == {"status": "ok", "sessions": 1}

    async def test_upgrade_rejected_without_token(self):
        server = GatewayServer(_make_gateway(), auth_token="secret")
        response = await server._process_request(_fake_connection(), _request("/ws"))
        assert response.status_code == 401

    async def test_upgrade_allowed_with_query_token(self):
        server = GatewayServer(_make_gateway(), auth_token="secret")
        assert await server._process_request(_fake_connection(), _request("/ws?token=secret")) is None

    async def test_sessions_listing(self):
        gateway = _make_gateway()
        sid = await _new_session(gateway)
        server = GatewayServer(gateway, auth_token="secret")

        response = await server._process_request(
            _fake_connection(), _request("/api/sessions", authorization="Bearer secret"),
        )

        body = json.loads(response.body)
        assert [s["id"] for s in body] == [sid]
        assert body[0]["message_count"] == 1


# ─────────────────────────────────────────────────────────────────────────────
# GatewayServer over a real socket
# ─────────────────────────────────────────────────────────────────────────────

@contextlib.asynccontextmanager
async def _serving(gateway: RealtimeGateway, **kwargs):
    server = GatewayServer(gateway, host="127.0.0.1", port=0, **kwargs)
    await server.start()
    try:
        yield server, f"ws://127.0.0.1:{server.port}"
    finally:
        await server.shutdown()


async def _recv(ws) -> dict:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=5))


@pytest.mark.asyncio
class TestConnectionHandler:
    async def test_unexpected_error_reported_connection_stays_open(self):
        gateway = _make_gateway(BrokenProvider())
        async with _serving(gateway) as (_, url):
            async with connect(url) as ws:
                await ws.send('{"type": "new_session"}')
                sid = (await _recv(ws))["session_id"]

                await ws.send(json.dumps({"type": "message", "content": "hi", "session_id": sid}))
                assert await _recv(ws) == {"type": "typing"}
                assert await _recv(ws) == {"type": "error", "content": "socket blew up"}

                # Same socket keeps working
                await ws.send('{"type": "new_session"}')
                assert (await _recv(ws))["type"] == "session_created"

    async def test_binary_frames_ignored(self):
        async with _serving(_make_gateway()) as (_, url):
            async with connect(url) as ws:
                await ws.send(b"\x00\x01binary")
                await ws.send('{"type": "new_session"}')
                assert (await _recv(ws))["type"] == "session_created"

    async def test_connection_limit(self):
        async with _serving(_make_gateway(), max_connections=1) as (server, url):
            async with connect(url) as first:
                # A reply proves the first handler is registered
                await first.send('{"type": "new_session"}')
                assert (await _recv(first))["type"] == "session_created"
                assert server.connection_count == 1

                async with connect(url) as second:
                    assert await _recv(second) == {
                        "type": "error", "content": "Server at connection limit.",
                    }
                    with pytest.raises(ConnectionClosed):
                        await asyncio.wait_for(second.recv(), timeout=5)

                await first.send('{"type": "new_session"}')
                assert (await _recv(first))["type"] == "session_created"

    async def test_message_round_trip_over_socket(self):
        async with _serving(_make_gateway(ScriptedProvider(["Hello!"]))) as (_, url):
            async with connect(url) as ws:
                await ws.send('{"type": "new_session"}')
                sid = (await _recv(ws))["session_id"]
                await ws.send(json.dumps({"type": "message", "content": "hi", "session_id": sid}))
                assert await _recv(ws) == {"type": "typing"}
                assert await _recv(ws) == {"type": "message", "content": "Hello!", "session_id": sid}

    async def test_socket_upgrade_needs_token(self):
        async with _serving(_make_gateway(), auth_token="secret") as (_, url):
            with pytest.raises(InvalidStatus) as exc_info:
                async with connect(url):
                    pass
            assert exc_info.value.response.status_code == 401
            async with connect(f"{url}/?token=secret") as ws:
                await ws.send('{"type": "new_session"}')
                assert (await _recv(ws))["type"] == "session_created"
