"""
config/settings.py — agentloop Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - field validators reject out-of-range values at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a readable message listing every problem found
  - load_settings() respects AGENTLOOP_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_PROVIDERS = {"openai", "openrouter", "ollama"}
_VALID_OBSERVER_BACKENDS = {"log", "noop", "none"}


def _check_temperature(v: float, field: str) -> float:
    if not (0.0 <= v <= 2.0):
        raise ValueError(f"{field} must be between 0.0 and 2.0")
    return v


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "agentloop"
    system_prompt: str = "You are a helpful assistant."
    max_tool_iterations: int = 10
    max_history_messages: int = 50
    # Truncate the base system prompt (small local models)
    compact_context: bool = False

    @field_validator("max_tool_iterations")
    @classmethod
    def _positive_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_tool_iterations must be >= 1")
        return v

    @field_validator("max_history_messages")
    @classmethod
    def _non_negative_history(cls, v: int) -> int:
        if v < 0:
            raise ValueError("agent.max_history_messages must be >= 0")
        return v


class LLMRetryConfig(BaseModel):
    """Exponential backoff config for transient LLM errors."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.retry.max_attempts must be >= 1")
        return v

    @field_validator("base_delay", "max_delay")
    @classmethod
    def _non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("llm.retry delays must be >= 0")
        return v


class LLMConfig(BaseModel):
    default_provider: str = "openrouter"
    default_model: str = "anthropic/claude-sonnet-4"
    temperature: float = 0.7
    base_url: Optional[str] = None
    timeout_seconds: float = 120.0
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)
    # Tried in order once the default provider exhausts its retries
    fallback_providers: list[str] = Field(default_factory=list)

    @field_validator("default_provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in _VALID_PROVIDERS:
            raise ValueError(
                f"llm.default_provider '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("fallback_providers")
    @classmethod
    def _known_fallbacks(cls, v: list[str]) -> list[str]:
        unknown = [p for p in v if p not in _VALID_PROVIDERS]
        if unknown:
            raise ValueError(
                f"llm.fallback_providers {unknown} not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        return _check_temperature(v, "llm.temperature")


class GatewayConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    # Blank means no auth
    auth_token: Optional[str] = None
    max_sessions: int = 100
    session_timeout_secs: int = 3600
    cleanup_interval_secs: int = 60
    max_connections: int = 50

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (1 <= v <= 65535):
            raise ValueError("gateway.port must be between 1 and 65535")
        return v

    @field_validator("max_sessions", "max_connections", "cleanup_interval_secs")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("gateway limits and intervals must be >= 1")
        return v

    @field_validator("session_timeout_secs")
    @classmethod
    def _non_negative_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError("gateway.session_timeout_secs must be >= 0")
        return v


class DelegateAgentConfig(BaseModel):
    """A sub-agent reachable through the `delegate` tool."""
    provider: str
    model: str
    system_prompt: str = "You are a helpful assistant."
    api_key: Optional[str] = None
    temperature: float = 0.7
    max_depth: int = 3

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        return _check_temperature(v, "delegate agent temperature")

    @field_validator("max_depth")
    @classmethod
    def _non_negative_depth(cls, v: int) -> int:
        if v < 0:
            raise ValueError("delegate agent max_depth must be >= 0")
        return v


class DelegateConfig(BaseModel):
    agents: dict[str, DelegateAgentConfig] = Field(default_factory=dict)


class ObservabilityConfig(BaseModel):
    backend: str = "log"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in _VALID_OBSERVER_BACKENDS:
            raise ValueError(
                f"observability.backend '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_OBSERVER_BACKENDS)}"
            )
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

_KEY_ENV_NAMES = {
    "openai":     "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


class Settings(BaseSettings):
    """
    agentloop runtime settings.

    Priority (highest to lowest):
      1. config.yaml sections (passed as init kwargs)
      2. Environment variables (nested via AGENT__NAME style keys)
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")
    # Generic key, used when the provider-specific one is absent
    agentloop_api_key: Optional[str] = Field(default=None, alias="AGENTLOOP_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    delegate: DelegateConfig = Field(default_factory=DelegateConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # -- Convenience properties ----------------------------------------------

    @property
    def default_llm_provider(self) -> str:
        return self.llm.default_provider

    @property
    def default_llm_model(self) -> str:
        return self.llm.default_model

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def api_key_for(self, provider: str) -> Optional[str]:
        """Provider-specific key from the environment, else AGENTLOOP_API_KEY."""
        specific = {
            "openai":     self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }.get(provider)
        return specific or self.agentloop_api_key

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches cross-field problems (API key presence for the chosen
        provider, each fallback provider and each delegate agent, a
        blank-but-set auth token).
        """
        errors: list[str] = []

        # ── LLM provider API key ─────────────────────────────────────────────
        provider = self.llm.default_provider
        if provider in _KEY_ENV_NAMES and not self.api_key_for(provider):
            errors.append(
                f"LLM provider '{provider}' requires {_KEY_ENV_NAMES[provider]} "
                f"(or AGENTLOOP_API_KEY) to be set in your .env file."
            )
        for fallback in self.llm.fallback_providers:
            if fallback in _KEY_ENV_NAMES and not self.api_key_for(fallback):
                errors.append(
                    f"llm.fallback_providers includes '{fallback}' but "
                    f"{_KEY_ENV_NAMES[fallback]} is not set."
                )

        # ── Delegate agents ──────────────────────────────────────────────────
        for name, agent in self.delegate.agents.items():
            if agent.provider not in _VALID_PROVIDERS:
                errors.append(
                    f"delegate.agents.{name}.provider '{agent.provider}' is not "
                    f"supported. Supported: {sorted(_VALID_PROVIDERS)}"
                )
            elif (
                agent.provider in _KEY_ENV_NAMES
                and not agent.api_key
                and not self.api_key_for(agent.provider)
            ):
                errors.append(
                    f"delegate.agents.{name} uses '{agent.provider}' but has no "
                    f"api_key and {_KEY_ENV_NAMES[agent.provider]} is not set."
                )

        # ── Gateway auth token ───────────────────────────────────────────────
        token = self.gateway.auth_token
        if token is not None and token != "" and not token.strip():
            errors.append(
                "gateway.auth_token is whitespace only. Remove it to disable "
                "auth or set a real token."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nagentloop startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"agent", "llm", "gateway", "delegate", "observability", "logging"}

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. AGENTLOOP_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("AGENTLOOP_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use.
    """
    if _singleton is None:
        load_settings()
    return _singleton  # type: ignore[return-value]
