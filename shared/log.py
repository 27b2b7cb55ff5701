"""structlog configuration for the assistant.

Every record is reshaped to ``{timestamp, level, service, msg, context}``
and written to stderr, so an answer streamed to stdout is never interleaved
with log lines.

Usage:
    from shared.log import get_logger, session_context
    logger = get_logger("brain")
    with session_context("work"):
        logger.info("processing_message", msg_len=12)
"""

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

_TOP_LEVEL_KEYS = frozenset({"timestamp", "level", "service", "msg", "context"})
_SECRET_SUFFIXES = ("api_key", "token", "authorization", "secret")


def _mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 8:
        return "****"
    return text[:4] + "****"


def _redact_secrets(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Mask credential-looking fields: sk-abcdef123 -> sk-a****"""
    for key, value in event_dict.items():
        if value and key.lower().endswith(_SECRET_SUFFIXES):
            event_dict[key] = _mask(value)
    return event_dict


def _normalize_log_event(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Move the event name to ``msg`` and everything else under ``context``."""
    event_dict.setdefault("msg", event_dict.pop("event", ""))

    context = event_dict.pop("context", None)
    if context is None:
        context = {}
    elif not isinstance(context, dict):
        context = {"value": context}

    context.update({key: event_dict.pop(key) for key in list(event_dict) if key not in _TOP_LEVEL_KEYS})
    event_dict["context"] = context
    return event_dict


def setup_logging(level: str = "INFO", log_format: str = "auto", stream: TextIO | None = None) -> None:
    """Configure structlog. ``auto`` renders JSON unless the stream is a TTY."""
    out = stream or sys.stderr
    fmt = log_format.lower()
    if fmt == "auto":
        fmt = "console" if out.isatty() else "json"

    renderer: Any = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            _redact_secrets,
            _normalize_log_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )


_configured = False


def get_logger(service_name: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to ``service``; configures logging from Settings on first use."""
    global _configured
    if not _configured:
        from shared.config import Settings

        settings = Settings()
        setup_logging(settings.log_level, settings.log_format)
        _configured = True

    return structlog.get_logger(service=service_name)


@contextmanager
def session_context(session_key: str) -> Iterator[None]:
    """Tag every record logged inside the block with the session key."""
    with structlog.contextvars.bound_contextvars(session=session_key):
        yield
