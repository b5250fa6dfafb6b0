"""
agent/parser.py — Tool Call Parser

Extracts free text and structured tool invocations from raw model output
that uses XML-style function calling:

    Let me check that.
    <tool_call>
    {"name": "shell", "arguments": {"command": "ls"}}
    </tool_call>

parse_tool_calls() returns the text outside the markers (each non-blank
segment stripped, joined with newlines, in source order) and one ToolCall
per well-formed marker pair, in encounter order.

  - A malformed payload drops that call with a warning; scanning continues.
  - An opening marker with no closing marker ends the parse: everything from
    that marker on is discarded, not returned as text.
  - Argument schemas are not checked here; that happens at execution time.
"""

from __future__ import annotations

import json

from agentloop.exceptions import ToolCallParseError
from agentloop.observability.logger import get_logger
from agentloop.tools.types import ToolCall

log = get_logger(__name__)

TOOL_CALL_OPEN = "<tool_call>"
TOOL_CALL_CLOSE = "</tool_call>"


def parse_tool_calls(response: str) -> tuple[str, list[ToolCall]]:
    text_parts: list[str] = []
    calls: list[ToolCall] = []
    remaining = response

    while True:
        start = remaining.find(TOOL_CALL_OPEN)
        if start == -1:
            break

        before = remaining[:start]
        if before.strip():
            text_parts.append(before.strip())

        body_start = start + len(TOOL_CALL_OPEN)
        end = remaining.find(TOOL_CALL_CLOSE, body_start)
        if end == -1:
            log.warning("parser.unterminated_tool_call", discarded_chars=len(remaining) - start)
            remaining = ""
            break

        try:
            calls.append(_decode_call(remaining[body_start:end]))
        except ToolCallParseError as e:
            log.warning("parser.malformed_tool_call", error=str(e))

        remaining = remaining[end + len(TOOL_CALL_CLOSE):]

    if remaining.strip():
        text_parts.append(remaining.strip())

    return "\n".join(text_parts), calls


def _decode_call(payload: str) -> ToolCall:
    try:
        parsed = json.loads(payload.strip())
    except json.JSONDecodeError as e:
        raise ToolCallParseError(f"invalid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ToolCallParseError(f"expected a JSON object, got {type(parsed).__name__}")

    name = parsed.get("name")
    if not isinstance(name, str) or not name:
        raise ToolCallParseError("missing or non-string 'name'")

    arguments = parsed.get("arguments")
    if arguments is None:
        arguments = {}
    return ToolCall(name=name, arguments=arguments)
