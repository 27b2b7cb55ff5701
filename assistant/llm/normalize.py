"""Content and tool-argument normalization shared by every provider.

Vendors disagree on whether ``content`` is a string, a list of typed parts,
or an object. Everything that leaves a provider goes through these helpers,
so the brain only ever sees ``str`` or ``None``.
"""

from __future__ import annotations

import json
from typing import Any

from assistant.llm.base import ToolCall


def extract_text(content: Any) -> str | None:
    """Pull plain text out of a content value without any JSON fallback."""
    if isinstance(content, str):
        return content
    if isinstance(content, (bool, int, float)):
        return json.dumps(content)
    if isinstance(content, (list, tuple)):
        parts = [text for text in (extract_text(part) for part in content) if text]
        return "".join(parts) if parts else None
    if isinstance(content, dict):
        text = content.get("text")
        if isinstance(text, str):
            return text
        inner = content.get("content")
        if isinstance(inner, str):
            return inner
    return None


def normalize_content(content: Any) -> str | None:
    """Collapse any vendor content shape into a single string (or ``None``)."""
    extracted = extract_text(content)
    if extracted is not None:
        return extracted
    if content is None or isinstance(content, (list, tuple)):
        return None
    try:
        return json.dumps(content, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(content)


def safe_parse_arguments(raw: Any) -> dict[str, Any]:
    """Parse a tool-call argument payload; never raises.

    Anything that is not a JSON object (bad JSON, a list, a number) gives an
    empty mapping so a missing parameter surfaces in the tool, not here.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, (str, bytes, bytearray)):
        return {}
    try:
        parsed = json.loads(raw)
    except (ValueError, TypeError, RecursionError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def normalize_tool_calls(tool_calls: list[dict[str, Any]]) -> list[ToolCall]:
    """Build ToolCalls from loosely-shaped dicts, synthesizing missing ids."""
    return [
        ToolCall(
            id=str(call.get("id") or f"tool_{index}"),
            name=str(call.get("name") or ""),
            arguments=call["arguments"] if isinstance(call.get("arguments"), dict) else {},
        )
        for index, call in enumerate(tool_calls)
    ]
