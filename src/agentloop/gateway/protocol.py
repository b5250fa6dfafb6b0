"""
gateway/protocol.py — Gateway WebSocket Message Protocol

Typed message schema for all client↔server communication.
Every frame is a JSON object tagged by its `type` field.

Client → Server:
    {"type": "message", "content": "...", "session_id": "..."}
    {"type": "new_session"}

Server → Client:
    {"type": "message", "content": "...", "session_id": "..."}
    {"type": "session_created", "session_id": "..."}
    {"type": "typing"}
    {"type": "error", "content": "..."}
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# ─────────────────────────────────────────────────────────────────────────────
# Client → Server
# ─────────────────────────────────────────────────────────────────────────────

class UserMessage(BaseModel):
    type: Literal["message"] = "message"
    content: str
    session_id: str


class NewSession(BaseModel):
    type: Literal["new_session"] = "new_session"


ClientMessage = Annotated[Union[UserMessage, NewSession], Field(discriminator="type")]

_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> UserMessage | NewSession:
    """Decode one client frame. Raises pydantic.ValidationError on bad input."""
    return _client_adapter.validate_json(raw)


# ─────────────────────────────────────────────────────────────────────────────
# Server → Client
# ─────────────────────────────────────────────────────────────────────────────

class ServerMessage(BaseModel):
    """Base for every server → client frame."""

    def to_json(self) -> str:
        return self.model_dump_json()


class AssistantMessage(ServerMessage):
    type: Literal["message"] = "message"
    content: str
    session_id: str


class SessionCreated(ServerMessage):
    type: Literal["session_created"] = "session_created"
    session_id: str


class Typing(ServerMessage):
    type: Literal["typing"] = "typing"


class ErrorMessage(ServerMessage):
    type: Literal["error"] = "error"
    content: str
