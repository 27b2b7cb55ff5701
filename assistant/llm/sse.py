"""Server-sent-event decoding and streamed tool-call assembly.

Both vendors frame streaming completions as ``data: <json>`` lines. The
decoder buffers partial lines across chunk boundaries and yields one parsed
JSON object per data line; everything else (comments, ``event:`` lines,
blank separators, ``[DONE]``, malformed JSON) is skipped.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Hashable
from dataclasses import dataclass
from typing import Any

import httpx

from assistant.llm.base import ToolCall
from assistant.llm.http import StreamError
from assistant.llm.normalize import safe_parse_arguments

DONE_MARKER = "[DONE]"


def _parse_data_line(line: str) -> dict[str, Any] | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[5:].strip()
    if not data or data == DONE_MARKER:
        return None
    try:
        event = json.loads(data)
    except ValueError:
        return None
    return event if isinstance(event, dict) else None


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield each JSON event of an SSE response body as it is decoded."""
    buffer = ""
    received = False
    async for chunk in response.aiter_text():
        if not chunk:
            continue
        received = True
        buffer += chunk
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            event = _parse_data_line(line)
            if event is not None:
                yield event

    if not received:
        raise StreamError("No response body for streaming")

    # A final event without a trailing newline
    event = _parse_data_line(buffer)
    if event is not None:
        yield event


@dataclass
class _PendingToolCall:
    id: str
    name: str = ""
    arguments: str = ""


class ToolCallAssembler:
    """Merges tool-call fragments keyed by stream index until the stream ends.

    Ids and names overwrite when present; argument text is appended. Nothing
    is parsed until ``finish``.
    """

    def __init__(self) -> None:
        self._pending: dict[Hashable, _PendingToolCall] = {}

    def __bool__(self) -> bool:
        return bool(self._pending)

    def update(
        self,
        key: Hashable,
        *,
        id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        pending = self._pending.get(key)
        if pending is None:
            pending = _PendingToolCall(id=id or f"tool_{key}")
            self._pending[key] = pending
        if id:
            pending.id = id
        if name:
            pending.name = name
        if arguments:
            pending.arguments += arguments

    def finish(self) -> list[ToolCall]:
        return [
            ToolCall(
                id=pending.id or f"tool_{index}",
                name=pending.name,
                arguments=safe_parse_arguments(pending.arguments or "{}"),
            )
            for index, pending in enumerate(self._pending.values())
        ]
