"""
tools/registry.py — Tool Registry

Ordered collection of the tools available to the agent. Lookup is by exact
name and the first match wins; names are expected to be unique by
construction, so register() refuses duplicates.

Also renders the tool-use protocol block that is appended to the system
prompt so the model knows the <tool_call> syntax and each tool's schema.
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator, Optional

from agentloop.observability.logger import get_logger
from agentloop.tools.base import Tool

log = get_logger(__name__)


class ToolRegistry:

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: list[Tool] = []
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if self.get(tool.name) is not None:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools.append(tool)
        log.debug("tool.registered", tool=tool.name)

    def get(self, name: str) -> Optional[Tool]:
        """Return the first tool named exactly `name`, or None."""
        for tool in self._tools:
            if tool.name == name:
                return tool
        return None

    def list_names(self) -> list[str]:
        return [t.name for t in self._tools]

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={self.list_names()}>"


def build_tool_instructions(registry: ToolRegistry) -> str:
    """Render the tool-use protocol section of the system prompt."""
    lines = [
        "",
        "## Tool Use Protocol",
        "",
        "To use a tool, wrap a JSON object in <tool_call></tool_call> tags:",
        "",
        "```",
        "<tool_call>",
        '{"name": "tool_name", "arguments": {"param": "value"}}',
        "</tool_call>",
        "```",
        "",
        "Output actual <tool_call> tags; never describe the call instead of making it.",
        "You may use multiple tool calls in a single response. They run in order.",
        "After tool execution, results appear in <tool_result> tags. "
        "Continue reasoning with the results until you can give a final answer.",
        "",
        "### Available Tools",
        "",
    ]
    for tool in registry:
        lines.append(f"**{tool.name}**: {tool.description}")
        lines.append(f"Parameters: `{json.dumps(tool.parameters_schema())}`")
        lines.append("")
    return "\n".join(lines)
