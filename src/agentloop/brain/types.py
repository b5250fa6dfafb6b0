"""
brain/types.py — agentloop Brain Data Models

Conversation types shared by providers, the turn executor, the session
store and the gateway. Providers map their native message shapes to and
from these.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """A single message in a conversation."""
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content)

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM

    def to_provider_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}
