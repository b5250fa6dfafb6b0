"""
gateway/server.py — WebSocket Gateway Server

Transport for RealtimeGateway, built on the `websockets` asyncio server.

HTTP surface (handled in process_request before the upgrade):
    GET /health         → {"status": "ok", "sessions": N}, no auth
    GET /api/sessions   → [{"id", "message_count", "age_secs"}, ...]
    anything else       → WebSocket upgrade

Auth (when gateway.auth_token is set) accepts either
`Authorization: Bearer <token>` or a `?token=<token>` query parameter and
applies to everything but /health.

A background task evicts idle sessions every cleanup_interval_secs.
In-flight turns are not cancelled when their client disconnects.

Usage:
    server = GatewayServer(gateway, host="127.0.0.1", port=3000)
    await server.start()          # starts listening
    await server.wait_closed()    # blocks until shutdown
"""

from __future__ import annotations

import asyncio
import hmac
import json
from http import HTTPStatus
from typing import Optional
from urllib.parse import parse_qs, urlsplit

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from agentloop.gateway.gateway import RealtimeGateway
from agentloop.gateway.protocol import ErrorMessage
from agentloop.observability.logger import get_logger

log = get_logger(__name__)


class GatewayServer:
    """
    WebSocket gateway server.

    Accepts WebSocket connections and feeds every text frame to the
    RealtimeGateway. All connections share one SessionStore.
    """

    def __init__(
        self,
        gateway: RealtimeGateway,
        *,
        host: str = "127.0.0.1",
        port: int = 3000,
        auth_token: Optional[str] = None,
        max_connections: int = 50,
        cleanup_interval_secs: float = 60.0,
    ):
        self._gateway = gateway
        self._store = gateway.store
        self._host = host
        self._port = port
        self._auth_token = auth_token or None
        self._max_connections = max_connections
        self._cleanup_interval = cleanup_interval_secs
        self._server: Optional[Server] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._connections: set[ServerConnection] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def port(self) -> int:
        """Bound port once started (resolves port 0 to the OS-assigned one)."""
        if self._server is not None:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the WebSocket server and the eviction task."""
        self._server = await serve(
            self._handler,
            self._host,
            self._port,
            process_request=self._process_request,
            max_size=2**20,  # 1 MB max message
        )
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        log.info(
            "gateway.started",
            host=self._host,
            port=self.port,
            auth=self._auth_token is not None,
            max_connections=self._max_connections,
        )

    async def wait_closed(self) -> None:
        """Block until the server is closed."""
        if self._server:
            await self._server.wait_closed()

    async def shutdown(self) -> None:
        """Stop the eviction task and close the listener and all connections."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        if self._server:
            self._server.close()
            await self._server.wait_closed()
        log.info("gateway.stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # HTTP / auth
    # ─────────────────────────────────────────────────────────────────────────

    async def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        url = urlsplit(request.path)

        if url.path == "/health":
            count = await self._store.session_count()
            return _json_response(connection, {"status": "ok", "sessions": count})

        if not self.is_authorized(request.headers.get("Authorization"), url.query):
            log.warning("gateway.auth_failed", path=url.path)
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")

        if url.path == "/api/sessions":
            sessions = await self._store.list_sessions()
            return _json_response(connection, [s.model_dump() for s in sessions])

        return None

    def is_authorized(self, authorization: Optional[str], query: str = "") -> bool:
        """Check a Bearer header value or a `token` query parameter."""
        if self._auth_token is None:
            return True

        if authorization and authorization.startswith("Bearer "):
            if _tokens_match(authorization[len("Bearer "):], self._auth_token):
                return True

        for candidate in parse_qs(query).get("token", []):
            if _tokens_match(candidate, self._auth_token):
                return True
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Connection handler
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a single WebSocket connection."""
        if len(self._connections) >= self._max_connections:
            err = ErrorMessage(content="Server at connection limit.")
            await websocket.send(err.to_json())
            await websocket.close()
            return

        self._connections.add(websocket)
        remote = getattr(websocket, "remote_address", ("?", 0))
        log.info("gateway.client_connected", remote=str(remote))

        try:
            async for raw in websocket:
                if not isinstance(raw, str):
                    continue
                try:
                    await self._gateway.handle_text(raw, websocket.send)
                except websockets.ConnectionClosed:
                    raise
                except Exception as e:
                    log.error("gateway.handler_error", error=str(e), error_type=type(e).__name__)
                    await websocket.send(ErrorMessage(content=str(e)).to_json())
        except websockets.ConnectionClosed:
            pass
        finally:
            self._connections.discard(websocket)
            log.info("gateway.client_disconnected", remote=str(remote))

    # ─────────────────────────────────────────────────────────────────────────
    # Session eviction
    # ─────────────────────────────────────────────────────────────────────────

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                await self._store.evict_expired()
            except Exception as e:
                log.error("gateway.cleanup_failed", error=str(e))


def _tokens_match(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(candidate.encode(), expected.encode())


def _json_response(connection: ServerConnection, payload: object) -> Response:
    response = connection.respond(HTTPStatus.OK, json.dumps(payload) + "\n")
    del response.headers["Content-Type"]
    response.headers["Content-Type"] = "application/json"
    return response
