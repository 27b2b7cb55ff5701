"""Shared fixtures: fake vendor HTTP via httpx.MockTransport."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from shared.retry import RetryPolicy


def _sse_body(payloads: list[Any], split_every: int | None = None):
    """Async byte stream framing each payload as ``data: ...\\n\\n``.

    ``split_every`` cuts the encoded body into fixed-size chunks so events
    straddle chunk boundaries.
    """
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    body = "".join(lines).encode("utf-8")

    async def gen():
        if split_every:
            for i in range(0, len(body), split_every):
                yield body[i:i + split_every]
        else:
            for line in lines:
                yield line.encode("utf-8")

    return gen()


@pytest.fixture
def sse_response() -> Callable[..., httpx.Response]:
    def build(payloads: list[Any], split_every: int | None = None) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            content=_sse_body(payloads, split_every),
        )

    return build


class RecordingTransport:
    """Replays queued responses (or raises queued exceptions) and records requests."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def transport_factory() -> Callable[..., RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay=0.0, max_delay=0.0)
