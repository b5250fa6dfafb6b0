"""
tools/__init__.py — agentloop Tool System

Usage:
    from agentloop.tools import Tool, ToolRegistry, ToolResult

    registry = ToolRegistry([MyTool()])
    result = await registry.get("my_tool").run({"arg": 1})
"""

from agentloop.tools.base import Tool, validate_arguments
from agentloop.tools.registry import ToolRegistry, build_tool_instructions
from agentloop.tools.types import ToolCall, ToolResult

__all__ = [
    "Tool",
    "validate_arguments",
    "ToolRegistry",
    "build_tool_instructions",
    "ToolCall",
    "ToolResult",
]
