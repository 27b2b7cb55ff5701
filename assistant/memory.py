"""Persistent conversation sessions.

Each session is an append-only JSON-lines file under the sessions directory::

    ~/.assistant/sessions/
      <session_key>.jsonl   one {"role", "content", "timestamp"} per line

Saving only appends messages added since the last save; existing lines are
never rewritten. Appends are serialized per session key.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.log import get_logger

logger = get_logger("memory")

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Session:
    """In-memory view of one conversation plus its save watermark."""

    def __init__(self, key: str, messages: list[dict[str, Any]] | None = None) -> None:
        self.key = key
        self._messages: list[dict[str, Any]] = list(messages or [])
        self._saved_count = len(self._messages)
        now = _now_iso()
        self.created_at = self._messages[0]["timestamp"] if self._messages else now
        self.updated_at = self._messages[-1]["timestamp"] if self._messages else now

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._messages)

    def add_message(self, role: str, content: str | None) -> None:
        entry = {"role": role, "content": content, "timestamp": _now_iso()}
        self._messages.append(entry)
        self.updated_at = entry["timestamp"]

    def unsaved_messages(self) -> list[dict[str, Any]]:
        return self._messages[self._saved_count:]

    def mark_saved(self) -> None:
        self._saved_count = len(self._messages)


class SessionStore:
    """Loads, caches, and appends conversation sessions."""

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir).expanduser()
        # keyed by file path so keys that sanitize alike share one session
        self._sessions: dict[Path, Session] = {}
        self._locks: dict[Path, asyncio.Lock] = {}

    def get_or_create(self, key: str) -> Session:
        """Return the cached session, loading it from disk on first use."""
        path = self.path_for(key)
        session = self._sessions.get(path)
        if session is None:
            session = Session(key, self._load(path))
            self._sessions[path] = session
        return session

    async def save(self, session: Session) -> None:
        """Append messages added since the last save."""
        path = self.path_for(session.key)
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            to_save = session.unsaved_messages()
            if not to_save:
                return
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = "".join(json.dumps(m, ensure_ascii=False) + "\n" for m in to_save)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(payload)
            session.mark_saved()
            logger.debug("session_saved", session=session.key, appended=len(to_save))

    def path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key) or "default"
        return self._base_dir / f"{safe}.jsonl"

    # ------------------------------------------------------------------
    # JSONL I/O helpers
    # ------------------------------------------------------------------

    def _load(self, path: Path) -> list[dict[str, Any]]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []

        messages: list[dict[str, Any]] = []
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("session_line_skipped", path=str(path))
                continue
            if not isinstance(entry, dict) or not entry.get("role"):
                continue
            messages.append({
                "role": str(entry["role"]),
                "content": entry.get("content"),
                "timestamp": str(entry.get("timestamp") or _now_iso()),
            })
        return messages
