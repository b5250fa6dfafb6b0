"""
agent/ — agentloop Agent Core

Public API:
    from agentloop.agent import TurnExecutor, parse_tool_calls, trim_history

Component overview:
    parse_tool_calls    Splits model output into free text + <tool_call> invocations
    trim_history        Bounds a conversation, keeping a leading system prompt
    DelegationGuard     Depth-limited single-shot calls into configured sub-agents
    TurnExecutor        Tool-use loop: model → parse → run tools → model ...
"""

from agentloop.agent.delegation import DelegationDepth, DelegationGuard, delegation_scope
from agentloop.agent.executor import TurnExecutor
from agentloop.agent.history import trim_history
from agentloop.agent.parser import parse_tool_calls

__all__ = [
    "DelegationDepth",
    "DelegationGuard",
    "delegation_scope",
    "TurnExecutor",
    "trim_history",
    "parse_tool_calls",
]
