"""
agent/runner.py — Agent Runtime Assembly + CLI Runs

Wires settings into the collaborators a TurnExecutor needs (provider,
tool registry, observer, system prompt) and drives the `agentloop agent`
command:

    agentloop agent -m "summarise README.md"   # single shot, prints the answer
    agentloop agent                             # interactive REPL, /quit to exit

The interactive history persists across turns and is trimmed to
agent.max_history_messages after every turn. A failed turn keeps the user
message and drops its unfinished tool exchange.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from agentloop.agent.executor import TurnExecutor
from agentloop.agent.history import non_system_count, trim_history
from agentloop.agent.prompt import build_system_prompt
from agentloop.brain.llm_client import BaseProvider, ResilientProvider, create_provider
from agentloop.brain.types import ChatMessage
from agentloop.config.settings import Settings
from agentloop.exceptions import AgentLoopError
from agentloop.observability.logger import get_logger
from agentloop.observability.observer import (
    AgentEndEvent,
    AgentStartEvent,
    Observer,
    create_observer,
)
from agentloop.tools.delegate import DelegateTool
from agentloop.tools.registry import ToolRegistry

log = get_logger(__name__)

_QUIT_COMMANDS = {"/quit", "/exit"}


# ─────────────────────────────────────────────────────────────────────────────
# Assembly
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class AgentRuntime:
    provider: BaseProvider
    provider_name: str
    model: str
    temperature: float
    registry: ToolRegistry
    observer: Observer
    system_prompt: str

    def executor(self, settings: Settings, *, silent: bool = False, on_text=None) -> TurnExecutor:
        return TurnExecutor(
            self.provider,
            self.registry,
            self.observer,
            model=self.model,
            temperature=self.temperature,
            max_iterations=settings.agent.max_tool_iterations,
            silent=silent,
            on_text=on_text,
        )


def provider_from_settings(settings: Settings, provider_name: Optional[str] = None) -> BaseProvider:
    """Main provider plus llm.fallback_providers, wrapped with the configured retry policy."""
    name = provider_name or settings.llm.default_provider
    base_url = settings.llm.base_url if name == settings.llm.default_provider else None
    timeout = settings.llm.timeout_seconds
    primary = create_provider(name, settings.api_key_for(name), base_url, timeout_seconds=timeout)
    fallbacks = [
        create_provider(fallback, settings.api_key_for(fallback), timeout_seconds=timeout)
        for fallback in settings.llm.fallback_providers
        if fallback != name
    ]
    retry = settings.llm.retry
    return ResilientProvider(
        primary,
        fallbacks,
        max_attempts=retry.max_attempts,
        base_delay=retry.base_delay,
        max_delay=retry.max_delay,
    )


def registry_from_settings(settings: Settings) -> ToolRegistry:
    registry = ToolRegistry()
    agents = settings.delegate.agents
    if agents:
        registry.register(DelegateTool.from_config(agents, key_for=settings.api_key_for))
    return registry


def build_runtime(
    settings: Settings,
    *,
    provider_name: Optional[str] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    provider: Optional[BaseProvider] = None,
) -> AgentRuntime:
    name = provider_name or settings.llm.default_provider
    model_name = model or settings.llm.default_model
    registry = registry_from_settings(settings)
    system_prompt = build_system_prompt(
        settings.agent.system_prompt,
        registry,
        model=model_name,
        compact=settings.agent.compact_context,
    )
    return AgentRuntime(
        provider=provider or provider_from_settings(settings, name),
        provider_name=name,
        model=model_name,
        temperature=settings.llm.temperature if temperature is None else temperature,
        registry=registry,
        observer=create_observer(settings.observability.backend),
        system_prompt=system_prompt,
    )


# ─────────────────────────────────────────────────────────────────────────────
# CLI runs
# ─────────────────────────────────────────────────────────────────────────────

async def run_agent(
    settings: Settings,
    runtime: AgentRuntime,
    message: Optional[str] = None,
    console: Optional[Console] = None,
) -> int:
    """Run one message, or an interactive session when `message` is None. Returns an exit code."""
    console = console or Console()
    runtime.observer.record_event(
        AgentStartEvent(provider=runtime.provider_name, model=runtime.model)
    )
    start = time.monotonic()
    try:
        if message is not None:
            return await _run_single(settings, runtime, message, console)
        return await _run_interactive(settings, runtime, console)
    finally:
        runtime.observer.record_event(
            AgentEndEvent(duration=time.monotonic() - start, tokens_used=None)
        )


async def _run_single(settings: Settings, runtime: AgentRuntime, message: str, console: Console) -> int:
    history = [ChatMessage.system(runtime.system_prompt), ChatMessage.user(message)]
    executor = runtime.executor(settings, on_text=lambda t: _print_interim(console, t))
    try:
        response = await executor.run_turn(history)
    except AgentLoopError as e:
        log.error("agent.turn_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[red]Error:[/] {escape(str(e))}", highlight=False)
        return 1
    console.print(response, markup=False, highlight=False)
    return 0


async def _run_interactive(settings: Settings, runtime: AgentRuntime, console: Console) -> int:
    console.print(f"[bold cyan]agentloop[/] [dim]{runtime.provider_name} / {runtime.model}[/]")
    console.print("[dim]Type /quit to exit.[/]\n")

    executor = runtime.executor(settings, on_text=lambda t: _print_interim(console, t))
    history = [ChatMessage.system(runtime.system_prompt)]
    limit = settings.agent.max_history_messages

    while True:
        try:
            user_input = await asyncio.to_thread(console.input, "[bold green]you>[/] ")
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye.[/]")
            break

        user_input = user_input.strip()
        if not user_input:
            continue
        if user_input.lower() in _QUIT_COMMANDS:
            console.print("[dim]Goodbye.[/]")
            break

        history.append(ChatMessage.user(user_input))
        turn_start = len(history)
        try:
            with console.status("[dim cyan]Thinking...[/]", spinner="dots"):
                response = await executor.run_turn(history)
        except AgentLoopError as e:
            log.error("agent.turn_failed", error=str(e), error_type=type(e).__name__)
            console.print(f"\n[red]Error:[/] {escape(str(e))}\n", highlight=False)
            # Keep the user message, drop the unfinished tool exchange
            del history[turn_start:]
        else:
            console.print()
            console.print(Markdown(response))
            console.print()

        history = trim_history(history, limit)
        log.debug("agent.history_trimmed", messages=non_system_count(history), limit=limit)

    return 0


def _print_interim(console: Console, text: str) -> None:
    console.print(text, style="dim", markup=False, highlight=False)
