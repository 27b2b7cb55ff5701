"""Shared async retry loop with capped exponential backoff.

Usage:
    from shared.retry import RetryPolicy, with_retry

    policy = RetryPolicy(max_retries=2, base_delay=0.2, max_delay=2.0)
    result = await with_retry(fetch_data, policy, classify=my_classifier)

``classify`` turns any exception raised by the operation into the exception
that should be raised to the caller. It must expose a boolean ``retryable``
attribute; only retryable errors are attempted again.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

JITTER_RATIO = 0.2


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits. Delays are in seconds."""

    max_retries: int = 2
    base_delay: float = 0.2
    max_delay: float = 2.0


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay after the 1-indexed ``attempt`` failed.

    The exponential term is clamped to ``max_delay`` first, then a fixed
    20% of it is added on top.
    """
    exp = min(policy.max_delay, policy.base_delay * (2 ** (attempt - 1)))
    return exp + exp * JITTER_RATIO


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    classify: Callable[[Exception], Any],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``policy.max_retries + 1`` times."""
    max_attempts = max(policy.max_retries, 0) + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            error = classify(exc)
            if not getattr(error, "retryable", False) or attempt >= max_attempts:
                if error is exc:
                    raise
                raise error from exc
            delay = backoff_delay(attempt, policy)
            logger.warning(
                "retry_attempt",
                attempt=attempt,
                max_retries=policy.max_retries,
                delay=delay,
                error=str(error),
            )
            await sleep(delay)
