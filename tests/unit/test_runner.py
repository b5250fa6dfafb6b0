"""
tests/unit/test_runner.py — Agent Runtime + CLI Run Tests
"""

from __future__ import annotations

import io

import pytest
from rich.console import Console

from agentloop.agent.runner import (
    build_runtime,
    provider_from_settings,
    registry_from_settings,
    run_agent,
)
from agentloop.brain.llm_client import BaseProvider, ResilientProvider
from agentloop.config.settings import Settings
from agentloop.observability.observer import Observer
from agentloop.tools.delegate import DelegateTool


class ScriptedProvider(BaseProvider):
    def __init__(self, responses: list[str]):
        self._responses = list(responses)
        self.calls = []

    async def chat(self, history, model, temperature) -> str:
        self.calls.append(list(history))
        return self._responses[min(len(self.calls), len(self._responses)) - 1]


class RecordingObserver(Observer):
    def __init__(self):
        self.events = []

    def record_event(self, event) -> None:
        self.events.append(event)


def _runtime(provider, **settings_overrides):
    settings = Settings(llm={"default_provider": "ollama", "default_model": "tiny"}, **settings_overrides)
    runtime = build_runtime(settings, provider=provider)
    runtime.observer = RecordingObserver()
    return settings, runtime


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, width=120, color_system=None), buf


class TestBuildRuntime:
    def test_overrides(self):
        settings = Settings(llm={"default_provider": "ollama"})
        runtime = build_runtime(
            settings, provider=ScriptedProvider(["x"]), model="big", temperature=0.0,
        )
        assert runtime.model == "big"
        assert runtime.temperature == 0.0
        assert runtime.provider_name == "ollama"
        assert "Model: big" in runtime.system_prompt

    def test_no_delegates_no_tools(self):
        assert len(registry_from_settings(Settings())) == 0

    def test_delegates_register_delegate_tool(self):
        settings = Settings(delegate={"agents": {
            "researcher": {"provider": "ollama", "model": "m"},
        }})
        registry = registry_from_settings(settings)
        tool = registry.get("delegate")
        assert isinstance(tool, DelegateTool)
        assert tool.agent_names == ["researcher"]


class TestProviderFromSettings:
    def test_fallbacks_built_in_order(self, monkeypatch):
        monkeypatch.setenv("AGENTLOOP_API_KEY", "generic")
        settings = Settings(llm={
            "default_provider": "ollama",
            "fallback_providers": ["openrouter", "ollama", "openai"],
        })

        provider = provider_from_settings(settings)

        assert isinstance(provider, ResilientProvider)
        assert provider.primary.name == "ollama"
        # The primary is not repeated as its own fallback
        assert [p.name for p in provider.fallbacks] == ["openrouter", "openai"]

    def test_no_fallbacks_by_default(self):
        provider = provider_from_settings(Settings(llm={"default_provider": "ollama"}))
        assert provider.fallbacks == []

    def test_provider_override_uses_its_own_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        settings = Settings(llm={"default_provider": "ollama"})
        provider = provider_from_settings(settings, "openai")
        assert provider.primary.name == "openai"
        assert provider.primary._client.api_key == "sk-openai"


@pytest.mark.asyncio
class TestRunSingle:
    async def test_prints_answer_and_emits_events(self):
        provider = ScriptedProvider(["The answer is [42]."])
        settings, runtime = _runtime(provider)
        console, buf = _console()

        code = await run_agent(settings, runtime, message="question?", console=console)

        assert code == 0
        assert "The answer is [42]." in buf.getvalue()
        kinds = [e.kind for e in runtime.observer.events]
        assert kinds == ["agent_start", "agent_end"]
        assert [m.content for m in provider.calls[0]][1:] == ["question?"]

    async def test_iteration_limit_exits_nonzero(self):
        provider = ScriptedProvider(['<tool_call>{"name":"nope"}</tool_call>'])
        settings, runtime = _runtime(provider, agent={"max_tool_iterations": 2})
        console, buf = _console()

        code = await run_agent(settings, runtime, message="loop", console=console)

        assert code == 1
        assert "maximum tool iterations (2)" in buf.getvalue()
        assert runtime.observer.events[-1].kind == "agent_end"


@pytest.mark.asyncio
class TestRunInteractive:
    async def test_conversation_until_quit(self, monkeypatch):
        provider = ScriptedProvider(["first", "second"])
        settings, runtime = _runtime(provider)
        console, buf = _console()
        inputs = iter(["hello", "   ", "again", "/quit"])
        monkeypatch.setattr(console, "input", lambda prompt="": next(inputs))

        code = await run_agent(settings, runtime, console=console)

        assert code == 0
        assert "Goodbye." in buf.getvalue()
        assert len(provider.calls) == 2
        # Second turn sees the first exchange
        assert [m.content for m in provider.calls[1]][1:] == ["hello", "first", "again"]

    async def test_eof_ends_session(self, monkeypatch):
        settings, runtime = _runtime(ScriptedProvider(["x"]))
        console, buf = _console()

        def _eof(prompt=""):
            raise EOFError

        monkeypatch.setattr(console, "input", _eof)
        assert await run_agent(settings, runtime, console=console) == 0
        assert "Goodbye." in buf.getvalue()

    async def test_failed_turn_keeps_user_message_only(self, monkeypatch):
        provider = ScriptedProvider([
            '<tool_call>{"name":"nope"}</tool_call>',
            "recovered",
        ])
        settings, runtime = _runtime(provider, agent={"max_tool_iterations": 1})
        console, buf = _console()
        inputs = iter(["hello", "again", "/quit"])
        monkeypatch.setattr(console, "input", lambda prompt="": next(inputs))

        assert await run_agent(settings, runtime, console=console) == 0

        assert "maximum tool iterations (1)" in buf.getvalue()
        # The tool exchange from the failed turn is gone; its user message stays
        assert [m.content for m in provider.calls[1]][1:] == ["hello", "again"]

    async def test_history_trimmed_after_failed_turn(self, monkeypatch):
        provider = ScriptedProvider(['<tool_call>{"name":"nope"}</tool_call>'])
        settings, runtime = _runtime(
            provider, agent={"max_tool_iterations": 1, "max_history_messages": 1},
        )
        console, _ = _console()
        inputs = iter(["one", "two", "three", "/quit"])
        monkeypatch.setattr(console, "input", lambda prompt="": next(inputs))

        await run_agent(settings, runtime, console=console)

        # After the second failed turn only "two" survives the trim
        assert [m.content for m in provider.calls[2]][1:] == ["two", "three"]
