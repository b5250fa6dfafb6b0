"""
tools/delegate.py — Delegate Tool

Hands a task to a named sub-agent configured under `delegate.agents`:

    <tool_call>
    {"name": "delegate", "arguments": {"agent": "researcher", "message": "..."}}
    </tool_call>

Unknown agents and exhausted delegation depth come back as failed results
so the model can recover. Provider errors propagate and are captured by
the executor like any other tool exception.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from agentloop.agent.delegation import DelegationGuard
from agentloop.brain.llm_client import BaseProvider, create_provider
from agentloop.config.settings import DelegateAgentConfig
from agentloop.exceptions import DelegationDepthError, UnknownAgentError
from agentloop.observability.logger import get_logger
from agentloop.tools.base import Tool
from agentloop.tools.types import JsonValue, ToolResult

log = get_logger(__name__)

ProviderFactory = Callable[[str, Optional[str]], BaseProvider]


class DelegateTool(Tool):
    name = "delegate"
    description = (
        "Delegate a task to a named agent. "
        "Each agent has its own provider, model, and system prompt."
    )

    def __init__(self, guards: Mapping[str, DelegationGuard]):
        self._guards = dict(guards)

    @classmethod
    def from_config(
        cls,
        agents: Mapping[str, DelegateAgentConfig],
        key_for: Optional[Callable[[str], Optional[str]]] = None,
        provider_factory: ProviderFactory = create_provider,
    ) -> "DelegateTool":
        """Build one guard per configured agent; an agent's own api_key wins over key_for(provider)."""
        guards = {
            name: DelegationGuard(
                name,
                config,
                provider_factory(
                    config.provider,
                    config.api_key or (key_for(config.provider) if key_for else None),
                ),
            )
            for name, config in agents.items()
        }
        return cls(guards)

    @property
    def agent_names(self) -> list[str]:
        return list(self._guards)

    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "agent": {"type": "string", "description": "Name of the agent to delegate to"},
                "message": {"type": "string", "description": "The task or question to send"},
            },
            "required": ["agent", "message"],
        }

    async def execute(self, arguments: JsonValue) -> ToolResult:
        args = arguments if isinstance(arguments, dict) else {}
        agent = args.get("agent", "")
        message = args.get("message", "")

        guard = self._guards.get(agent)
        if guard is None:
            err = UnknownAgentError(agent, self.agent_names)
            log.warning("delegate.unknown_agent", agent=agent)
            return ToolResult.fail(str(err))

        try:
            output = await guard.delegate(message)
        except DelegationDepthError as e:
            log.warning("delegate.depth_exceeded", agent=agent, depth=e.depth, max_depth=e.max_depth)
            return ToolResult.fail(str(e))
        return ToolResult.ok(output)
