"""
agent/executor.py — Turn Executor

Drives one user turn to completion:

    AwaitingModel → ModelResponded → Final
                                   ↘ ToolsPending → ExecutingTools → AwaitingModel

Each iteration sends the full history to the provider and parses the
response. A response with no <tool_call> markers is final. Otherwise every
call runs sequentially in source order (later calls may rely on side
effects of earlier ones), the raw assistant message plus one synthetic
"[Tool results]" user message are appended to the history, and the loop
continues.

Failure policy:
  - unknown tool, failing tool, raising tool → error text fed back to the
    model; the turn continues
  - provider error → propagates, history keeps its pre-iteration state
  - iteration cap reached → IterationLimitError

Usage:
    executor = TurnExecutor(provider, registry, observer, model="gpt-4o")
    history.append(ChatMessage.user("what's the date?"))
    answer = await executor.run_turn(history)
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from agentloop.agent.delegation import delegation_scope
from agentloop.agent.parser import parse_tool_calls
from agentloop.brain.llm_client import BaseProvider
from agentloop.brain.types import ChatMessage
from agentloop.exceptions import IterationLimitError, ToolExecutionError, ToolNotFoundError
from agentloop.observability.logger import get_logger
from agentloop.observability.observer import NoopObserver, Observer, ToolCallEvent
from agentloop.tools.registry import ToolRegistry
from agentloop.tools.types import ToolCall

log = get_logger(__name__)

# Max provider round trips per user turn
DEFAULT_MAX_TOOL_ITERATIONS = 10


class TurnExecutor:

    def __init__(
        self,
        provider: BaseProvider,
        tools: ToolRegistry,
        observer: Optional[Observer] = None,
        *,
        model: str,
        temperature: float = 0.7,
        max_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        silent: bool = False,
        on_text: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            provider:       Model endpoint; only chat() is used.
            tools:          Registry resolved by exact name.
            observer:       Telemetry sink for ToolCall events.
            model:          Model identifier passed through to the provider.
            temperature:    Sampling temperature passed through to the provider.
            max_iterations: Provider round trips allowed before giving up.
            silent:         Suppress intermediate text (gateway, background use).
            on_text:        Sink for free text emitted alongside tool calls.
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self._provider = provider
        self._tools = tools
        self._observer = observer or NoopObserver()
        self._model = model
        self._temperature = temperature
        self._max_iter = max_iterations
        self._silent = silent
        self._on_text = on_text

    @property
    def max_iterations(self) -> int:
        return self._max_iter

    async def run_turn(self, history: list[ChatMessage]) -> str:
        """
        Run the tool-use loop over `history`, mutating it in place.

        Returns the final response text. Raises LLMError from the provider
        or IterationLimitError when the cap is hit.
        """
        with delegation_scope():
            for iteration in range(self._max_iter):
                log.debug("executor.llm_call", iteration=iteration, msg_count=len(history))
                response = await self._provider.chat(history, self._model, self._temperature)

                text, tool_calls = parse_tool_calls(response)

                if not tool_calls:
                    history.append(ChatMessage.assistant(response))
                    log.info("executor.turn_done", iterations=iteration + 1)
                    return text if text else response

                if not self._silent and text and self._on_text is not None:
                    self._on_text(text)

                results: list[str] = []
                for call in tool_calls:
                    output = await self._execute_call(call)
                    results.append(format_tool_result(call.name, output))

                history.append(ChatMessage.assistant(response))
                history.append(ChatMessage.user("[Tool results]\n" + "".join(results)))

        log.warning("executor.max_iter_reached", iterations=self._max_iter)
        raise IterationLimitError(self._max_iter)

    async def _execute_call(self, call: ToolCall) -> str:
        tool = self._tools.get(call.name)
        if tool is None:
            log.warning("executor.unknown_tool", tool=call.name)
            return str(ToolNotFoundError(call.name))

        start = time.monotonic()
        try:
            result = await tool.run(call.arguments)
        except Exception as e:
            self._record(call.name, time.monotonic() - start, success=False)
            log.warning(
                "executor.tool_error",
                tool=call.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return str(ToolExecutionError(call.name, e))

        duration = time.monotonic() - start
        self._record(call.name, duration, success=result.success)
        log.info(
            "executor.tool_call",
            tool=call.name,
            success=result.success,
            duration_ms=round(duration * 1000, 1),
        )
        return result.render()

    def _record(self, tool: str, duration: float, success: bool) -> None:
        try:
            self._observer.record_event(
                ToolCallEvent(tool=tool, duration=duration, success=success)
            )
        except Exception as e:
            log.debug("executor.observer_failed", error=str(e))


def format_tool_result(name: str, output: str) -> str:
    return f'<tool_result name="{name}">\n{output}\n</tool_result>\n'
