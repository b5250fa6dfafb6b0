"""
main.py — agentloop Entry Point

Usage:
    agentloop agent                          # interactive REPL
    agentloop agent -m "hello"               # single message
    agentloop agent --provider ollama --model llama3.2
    agentloop gateway --port 3000            # WebSocket gateway
    agentloop gateway --skip-health-check    # start without pinging the provider
    agentloop --log-level DEBUG agent        # verbose logging
    agentloop --config path/to/config.yaml gateway
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Optional

from dotenv import load_dotenv


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agentloop",
        description="agentloop: tool-using LLM agent with a realtime gateway",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $AGENTLOOP_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    agent = sub.add_parser("agent", help="Run the agent in the terminal")
    agent.add_argument("-m", "--message", default=None, help="Single message; omit for interactive mode")
    agent.add_argument("--provider", choices=["openai", "openrouter", "ollama"], default=None)
    agent.add_argument("--model", default=None)
    agent.add_argument("--temperature", type=float, default=None)

    gateway = sub.add_parser("gateway", help="Start the WebSocket gateway")
    gateway.add_argument("--host", default=None)
    gateway.add_argument("--port", type=int, default=None)
    gateway.add_argument(
        "--skip-health-check",
        action="store_true",
        help="Start without checking that the LLM provider is reachable",
    )

    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from agentloop.config.settings import ConfigError, load_settings
    from agentloop.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    return settings, get_logger("agentloop.main")


async def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "agentloop.starting",
        command=args.command,
        llm_provider=settings.default_llm_provider,
        llm_model=settings.default_llm_model,
    )

    if args.command == "agent":
        return await _run_agent(settings, args, log)
    return await _run_gateway(settings, args, log)


def _init_runtime(settings, log, **overrides):
    """build_runtime() with a readable message instead of a traceback. Returns None on failure."""
    from agentloop.agent.runner import build_runtime

    try:
        return build_runtime(settings, **overrides)
    except ValueError as e:
        log.error("agentloop.provider_init_failed", error=str(e))
        print(f"\n❌  Failed to initialise provider: {e}\n", file=sys.stderr)
        return None


async def _run_agent(settings, args: argparse.Namespace, log) -> int:
    from agentloop.agent.runner import run_agent

    runtime = _init_runtime(
        settings,
        log,
        provider_name=args.provider,
        model=args.model,
        temperature=args.temperature,
    )
    if runtime is None:
        return 1

    return await run_agent(settings, runtime, message=args.message)


async def _run_gateway(settings, args: argparse.Namespace, log) -> int:
    from agentloop.gateway.gateway import RealtimeGateway
    from agentloop.gateway.server import GatewayServer
    from agentloop.gateway.session_store import SessionStore

    runtime = _init_runtime(settings, log)
    if runtime is None:
        return 1

    # Fail fast on a bad key or unreachable endpoint before accepting clients
    if not args.skip_health_check:
        log.info("agentloop.testing_llm", provider=runtime.provider_name)
        if not await runtime.provider.health_check():
            log.error("agentloop.llm_health_check_failed", provider=runtime.provider_name)
            print(
                f"\n❌  LLM health check failed for '{runtime.provider_name}'.\n"
                f"    Please double check your API key and network connection.\n",
                file=sys.stderr,
            )
            return 1

    cfg = settings.gateway
    store = SessionStore(
        max_sessions=cfg.max_sessions,
        timeout_secs=cfg.session_timeout_secs,
        max_history_messages=settings.agent.max_history_messages,
    )
    gateway = RealtimeGateway(store, runtime.executor(settings, silent=True), runtime.system_prompt)
    server = GatewayServer(
        gateway,
        host=args.host or cfg.host,
        port=args.port or cfg.port,
        auth_token=cfg.auth_token,
        max_connections=cfg.max_connections,
        cleanup_interval_secs=cfg.cleanup_interval_secs,
    )

    await server.start()
    print(f"agentloop gateway listening on ws://{args.host or cfg.host}:{server.port}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await stop.wait()
    finally:
        log.info("agentloop.shutting_down")
        await server.shutdown()
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
