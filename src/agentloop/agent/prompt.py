"""
agent/prompt.py — System Prompt Builder

Composes the system message seeded into every conversation: the configured
base prompt, a short runtime block, and the tool-use protocol rendered from
the registry.
"""

from __future__ import annotations

import time

from agentloop.tools.registry import ToolRegistry, build_tool_instructions

# Base prompt budget when agent.compact_context is on
COMPACT_PROMPT_MAX_CHARS = 6000

_RUNTIME_TEMPLATE = """\
## Runtime

- Current time: {utc_time}
- Model: {model}
- Tools available: {tool_names}"""


def build_system_prompt(
    base_prompt: str,
    registry: ToolRegistry,
    *,
    model: str = "",
    compact: bool = False,
) -> str:
    prompt = base_prompt.strip()
    if compact and len(prompt) > COMPACT_PROMPT_MAX_CHARS:
        prompt = prompt[:COMPACT_PROMPT_MAX_CHARS].rstrip() + "\n[...truncated]"

    runtime = _RUNTIME_TEMPLATE.format(
        utc_time=time.strftime("%Y-%m-%d %H:%M UTC", time.gmtime()),
        model=model or "unknown",
        tool_names=", ".join(registry.list_names()) or "none",
    )

    parts = [prompt, runtime]
    if len(registry):
        parts.append(build_tool_instructions(registry).strip())
    return "\n\n".join(p for p in parts if p)
