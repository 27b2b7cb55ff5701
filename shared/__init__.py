"""Shared library for the assistant: settings, logging, retry."""

from shared.config import Settings
from shared.log import get_logger, session_context
from shared.retry import RetryPolicy, with_retry

__all__ = ["RetryPolicy", "Settings", "get_logger", "session_context", "with_retry"]
