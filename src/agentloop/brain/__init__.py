"""
brain/__init__.py — agentloop LLM Providers
"""

from agentloop.brain.llm_client import BaseProvider, ResilientProvider, create_provider
from agentloop.brain.types import ChatMessage, Role

__all__ = ["BaseProvider", "ResilientProvider", "create_provider", "ChatMessage", "Role"]
