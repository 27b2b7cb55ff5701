"""HTTP transport for providers: error taxonomy, timeouts, and retries.

Every vendor call goes through ``send_with_retry``. Failures are classified
into a fixed set of kinds; rate limits, timeouts, connection failures and
5xx responses are retried with backoff, everything else is raised at once.
"""

from __future__ import annotations

import asyncio
from typing import Any, Literal

import httpx

from shared.log import get_logger
from shared.retry import RetryPolicy, with_retry

logger = get_logger("llm-http")

ErrorKind = Literal["auth", "rate_limit", "timeout", "network", "server", "bad_request", "unknown"]

RETRYABLE_KINDS: frozenset[str] = frozenset({"rate_limit", "timeout", "network", "server"})

ERROR_BODY_LIMIT = 512


class ProviderError(Exception):
    """A classified provider failure. Retryability is fixed by ``kind``."""

    def __init__(
        self,
        provider: str,
        kind: ErrorKind,
        message: str,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self._provider = provider
        self._kind = kind
        self._status = status
        self._message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def status(self) -> int | None:
        return self._status

    @property
    def message(self) -> str:
        return self._message

    @property
    def retryable(self) -> bool:
        return self._kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return (
            f"ProviderError(provider={self._provider!r}, kind={self._kind!r}, "
            f"status={self._status!r}, message={self._message!r})"
        )


class StreamError(RuntimeError):
    """A streaming response delivered no body at all."""


def classify_http_status(provider: str, status: int, details: str = "") -> ProviderError:
    """Map an HTTP status to a ProviderError."""
    suffix = f" {details}" if details else ""
    if status in (401, 403):
        return ProviderError(provider, "auth", f"{provider} authentication failed ({status}).{suffix}", status)
    if status == 429:
        return ProviderError(provider, "rate_limit", f"{provider} rate limited ({status}).{suffix}", status)
    if status >= 500:
        return ProviderError(provider, "server", f"{provider} server error ({status}).{suffix}", status)
    if status >= 400:
        return ProviderError(provider, "bad_request", f"{provider} request failed ({status}).{suffix}", status)
    return ProviderError(provider, "unknown", f"{provider} request failed ({status}).{suffix}", status)


def classify_provider_error(provider: str, exc: BaseException) -> ProviderError:
    """Map any exception raised during a request to a ProviderError."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProviderError(provider, "timeout", f"{provider} request timed out.", cause=exc)
    if isinstance(exc, httpx.TransportError):
        return ProviderError(provider, "network", f"{provider} network error: {exc}", cause=exc)
    return ProviderError(provider, "unknown", f"{provider} request failed: {exc}", cause=exc)


async def _read_error_details(response: httpx.Response) -> str:
    """Best-effort read of an error body, truncated."""
    try:
        await response.aread()
        return response.text[:ERROR_BODY_LIMIT]
    except (httpx.HTTPError, httpx.StreamError, UnicodeDecodeError):
        logger.debug("error_body_unreadable", status=response.status_code)
        return ""


async def _open_response(
    client: httpx.AsyncClient,
    request: httpx.Request,
    provider: str,
    timeout: float,
) -> httpx.Response:
    response = await asyncio.wait_for(client.send(request, stream=True), timeout)
    if response.is_success:
        return response
    try:
        details = await _read_error_details(response)
    finally:
        await response.aclose()
    raise classify_http_status(provider, response.status_code, details)


def _decode_json_body(provider: str, response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        raise ProviderError(
            provider,
            "unknown",
            f"{provider} returned an invalid JSON body: {response.text[:ERROR_BODY_LIMIT]}",
            status=response.status_code,
        )
    return data


async def send_with_retry(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    provider: str,
    timeout: float,
    policy: RetryPolicy,
) -> httpx.Response:
    """Send ``request`` and return an open streaming response with a 2xx status.

    The caller owns the returned response and must close it. Responses from
    failed attempts are always closed here.
    """

    async def attempt() -> httpx.Response:
        return await _open_response(client, request, provider, timeout)

    logger.debug("provider_request", provider=provider, url=str(request.url))
    return await with_retry(
        attempt,
        policy,
        classify=lambda exc: classify_provider_error(provider, exc),
    )


async def fetch_json_with_retry(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    provider: str,
    timeout: float,
    policy: RetryPolicy,
) -> dict[str, Any]:
    """Send ``request`` and return its decoded JSON object.

    Reading the body is part of each attempt, so a connection dropped mid-body
    is retried like any other network failure. A body that is not a JSON
    object raises a non-retryable ``ProviderError``.
    """

    async def attempt() -> dict[str, Any]:
        response = await _open_response(client, request, provider, timeout)
        try:
            await asyncio.wait_for(response.aread(), timeout)
        finally:
            await response.aclose()
        return _decode_json_body(provider, response)

    logger.debug("provider_request", provider=provider, url=str(request.url))
    return await with_retry(
        attempt,
        policy,
        classify=lambda exc: classify_provider_error(provider, exc),
    )
