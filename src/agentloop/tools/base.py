"""
tools/base.py — Tool Interface

Every capability the agent can invoke subclasses Tool:

    class EchoTool(Tool):
        name = "echo"
        description = "Echo the given text back."

        def parameters_schema(self) -> dict:
            return {"type": "object",
                    "properties": {"text": {"type": "string"}},
                    "required": ["text"]}

        async def execute(self, arguments) -> ToolResult:
            return ToolResult.ok(arguments["text"])

Arguments are not validated at parse time. Callers go through run(), which
checks them against parameters_schema() first and turns a mismatch into a
failed ToolResult the model can act on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from agentloop.exceptions import ToolValidationError
from agentloop.tools.types import JsonValue, ToolResult

_JSON_TYPE_MAP: dict[str, type | tuple] = {
    "string":  str,
    "integer": int,
    "number":  (int, float),
    "boolean": bool,
    "array":   list,
    "object":  dict,
}


class Tool(ABC):
    name: str = ""
    description: str = ""

    def parameters_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    @abstractmethod
    async def execute(self, arguments: JsonValue) -> ToolResult:
        """Run the tool. May raise; the executor captures the failure."""
        ...

    async def run(self, arguments: JsonValue) -> ToolResult:
        error = validate_arguments(arguments, self.parameters_schema())
        if error:
            raise ToolValidationError(f"Invalid parameters for '{self.name}': {error}")
        return await self.execute(arguments)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


def validate_arguments(arguments: JsonValue, schema: dict[str, Any]) -> Optional[str]:
    """
    Check arguments against a JSON-schema-like declaration.
    Returns an error string if invalid, None if valid.

    Only object schemas are checked: required keys must be present and
    declared primitive types must match. Unknown keys are allowed.
    """
    if schema.get("type", "object") != "object":
        return None
    if not isinstance(arguments, dict):
        return f"expected an object, got {type(arguments).__name__}"

    for field in schema.get("required", []):
        if field not in arguments:
            return f"Missing required field: '{field}'"

    properties = schema.get("properties", {})
    for field, value in arguments.items():
        json_type = properties.get(field, {}).get("type")
        expected = _JSON_TYPE_MAP.get(json_type) if json_type else None
        if expected is None:
            continue
        # bool is a subclass of int
        if json_type in ("integer", "number") and isinstance(value, bool):
            return f"Field '{field}': expected {json_type}, got boolean"
        if not isinstance(value, expected):
            return f"Field '{field}': expected {json_type}, got {type(value).__name__}"

    return None
