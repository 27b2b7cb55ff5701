"""Command-line entry point: one assistant turn per invocation.

Usage:
    assistant -m "what is in README.md?"
    assistant -m "summarize it" --session work --stream
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from shared.log import get_logger

from assistant.brain import AgentEvent, Brain
from assistant.config import AssistantSettings
from assistant.llm import ProviderError, StreamError, create_provider
from assistant.memory import SessionStore
from assistant.policy import Policy
from assistant.tools import ToolNotFoundError, default_registry

logger = get_logger("main")

# Exceptions that end a turn; reported as "error: <message>" with exit status 1.
# PermissionDeniedError and unreadable paths are OSErrors.
TURN_ERRORS = (ProviderError, StreamError, ToolNotFoundError, OSError, ValueError)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Personal assistant agent")
    parser.add_argument("-m", "--message", required=True, help="User message to send")
    parser.add_argument("-s", "--session", default="default", help="Session key (default: default)")
    parser.add_argument("--stream", action="store_true", help="Stream the answer as it is generated")
    parser.add_argument("--provider", help="Override LLM_PROVIDER (openai|openrouter|anthropic)")
    return parser.parse_args(argv)


def _print_event(event: AgentEvent) -> None:
    if event.type == "tool_call":
        print(f"[tool] {event.data['name']}", file=sys.stderr)
    elif event.type == "tool_error":
        print(f"[tool error] {event.data['name']}: {event.data['error']}", file=sys.stderr)


async def run(args: argparse.Namespace) -> int:
    settings = AssistantSettings()
    if args.provider:
        settings.llm_provider = args.provider

    try:
        name, provider = create_provider(settings)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    logger.info("provider_selected", provider=name)

    brain = Brain(
        provider,
        default_registry(Policy(settings.read_allowlist_paths)),
        SessionStore(settings.sessions_dir),
        max_iterations=settings.agent_max_iterations,
        system_prompt=settings.agent_system_prompt,
        history_limit=settings.max_conversation_history,
    )

    try:
        if args.stream:
            await brain.run_once_stream(
                args.session,
                args.message,
                on_delta=lambda text: print(text, end="", flush=True),
                on_event=_print_event,
            )
            print()
        else:
            answer = await brain.run_once(args.session, args.message, on_event=_print_event)
            print(answer)
    except TURN_ERRORS as exc:
        logger.warning("turn_failed", error_type=type(exc).__name__)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await provider.aclose()
    return 0


def main(argv: list[str] | None = None) -> None:
    sys.exit(asyncio.run(run(parse_args(argv))))


if __name__ == "__main__":
    main()
