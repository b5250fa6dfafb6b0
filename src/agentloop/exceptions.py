"""
exceptions.py — agentloop Unified Error Hierarchy

All agentloop-specific exceptions live here. Every layer of the stack
raises typed subclasses of AgentLoopError — never bare Exception.

Import from here, not from individual modules:
    from agentloop.exceptions import IterationLimitError, SessionNotFoundError

Hierarchy:
    AgentLoopError
    ├── AgentError
    │   └── IterationLimitError
    ├── ToolError
    │   ├── ToolCallParseError
    │   ├── ToolNotFoundError
    │   ├── ToolValidationError
    │   └── ToolExecutionError
    ├── DelegationError
    │   ├── UnknownAgentError
    │   └── DelegationDepthError
    ├── SessionError
    │   ├── SessionCapacityError
    │   └── SessionNotFoundError
    └── LLMError
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class AgentLoopError(Exception):
    """Base class for all agentloop exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Agent layer
# ─────────────────────────────────────────────────────────────────────────────

class AgentError(AgentLoopError):
    """Base for agent turn errors."""


class IterationLimitError(AgentError):
    """The tool-use loop hit max_iterations without a final response."""

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(
            f"Agent exceeded maximum tool iterations ({max_iterations})"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(AgentLoopError):
    """Base for all tool-related errors."""


class ToolCallParseError(ToolError):
    """A <tool_call> payload could not be decoded into a tool invocation."""


class ToolNotFoundError(ToolError):
    """Requested tool is not registered in the ToolRegistry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolValidationError(ToolError):
    """Tool arguments failed validation against the declared schema."""


class ToolExecutionError(ToolError):
    """A tool raised while executing."""

    def __init__(self, name: str, error: object) -> None:
        self.name = name
        super().__init__(f"Error executing {name}: {error}")


# ─────────────────────────────────────────────────────────────────────────────
# Delegation layer
# ─────────────────────────────────────────────────────────────────────────────

class DelegationError(AgentLoopError):
    """Base for sub-agent delegation errors."""


class UnknownAgentError(DelegationError):
    """No delegate agent is configured under the requested name."""

    def __init__(self, agent: str, available: list[str]) -> None:
        self.agent = agent
        self.available = available
        super().__init__(f"Unknown agent '{agent}'. Available: {available}")


class DelegationDepthError(DelegationError):
    """Delegation depth reached the target agent's configured maximum."""

    def __init__(self, agent: str, depth: int, max_depth: int) -> None:
        self.agent = agent
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Delegation depth limit reached for agent '{agent}' "
            f"(depth {depth}, max {max_depth})"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Session layer
# ─────────────────────────────────────────────────────────────────────────────

class SessionError(AgentLoopError):
    """Base for session store errors."""


class SessionCapacityError(SessionError):
    """The session store already holds max_sessions sessions."""

    def __init__(self, max_sessions: int) -> None:
        self.max_sessions = max_sessions
        super().__init__(f"Maximum sessions ({max_sessions}) reached")


class SessionNotFoundError(SessionError):
    """No session exists with the given id (never created, or evicted)."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


# ─────────────────────────────────────────────────────────────────────────────
# LLM provider layer
# ─────────────────────────────────────────────────────────────────────────────

class LLMError(AgentLoopError):
    """Base exception for all LLM provider errors."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Provider unreachable or timed out."""


class LLMRateLimitError(LLMError):
    """Rate limit hit — retry with exponential backoff."""

    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider)
        self.retry_after = retry_after


class LLMContextError(LLMError):
    """Input exceeds model context window."""


class LLMInvalidRequestError(LLMError):
    """Malformed request rejected by the provider."""


__all__ = [
    "AgentLoopError",
    # Agent
    "AgentError",
    "IterationLimitError",
    # Tool
    "ToolError",
    "ToolCallParseError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ToolExecutionError",
    # Delegation
    "DelegationError",
    "UnknownAgentError",
    "DelegationDepthError",
    # Session
    "SessionError",
    "SessionCapacityError",
    "SessionNotFoundError",
    # LLM
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
