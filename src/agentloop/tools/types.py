"""
tools/types.py — Tool System Data Models

Shared types used by the parser, registry, turn executor and every tool.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, Field

# Structured argument value: null / bool / number / text / list / mapping.
JsonValue = Union[None, bool, int, float, str, list[Any], dict[str, Any]]


class ToolCall(BaseModel):
    """A tool invocation extracted from model output, before execution."""
    name: str
    arguments: JsonValue = Field(default_factory=dict)


class ToolResult(BaseModel):
    """The result of a tool call after execution."""
    success: bool
    output: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: str) -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, output: str = "") -> "ToolResult":
        return cls(success=False, output=output, error=error)

    def render(self) -> str:
        """Text echoed back to the model inside a <tool_result> block."""
        if self.success:
            return self.output
        return f"Error: {self.error or self.output}"
