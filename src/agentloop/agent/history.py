"""
agent/history.py — Bounded Conversation History

trim_history() keeps a conversation from growing without bound:

  - the message at index 0 survives iff it is a system message
  - among the remaining messages, only the most recent `limit` are kept,
    in their original order

It is pure and idempotent. Long-running contexts apply it once per
completed turn; the tool-iteration loop inside a turn is bounded by the
iteration cap instead.
"""

from __future__ import annotations

from agentloop.brain.types import ChatMessage

DEFAULT_MAX_HISTORY_MESSAGES = 50


def trim_history(history: list[ChatMessage], limit: int = DEFAULT_MAX_HISTORY_MESSAGES) -> list[ChatMessage]:
    if limit < 0:
        raise ValueError("history limit must be >= 0")

    has_system = bool(history) and history[0].is_system
    start = 1 if has_system else 0
    excess = (len(history) - start) - limit
    if excess <= 0:
        return list(history)
    return history[:start] + history[start + excess:]


def non_system_count(history: list[ChatMessage]) -> int:
    """Messages that count against the limit (everything but a leading system prompt)."""
    if history and history[0].is_system:
        return len(history) - 1
    return len(history)
