"""
gateway/ — Realtime WebSocket Gateway

Multi-client chat over WebSocket. Every connection shares one SessionStore;
each `message` frame runs one agent turn against its session's history.
"""

from agentloop.gateway.gateway import RealtimeGateway
from agentloop.gateway.server import GatewayServer
from agentloop.gateway.session_store import SessionInfo, SessionStore

__all__ = [
    "RealtimeGateway",
    "GatewayServer",
    "SessionInfo",
    "SessionStore",
]
