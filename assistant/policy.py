"""Filesystem access policy consulted by the file tools."""

from __future__ import annotations

from pathlib import Path


class PermissionDeniedError(PermissionError):
    """A tool tried to touch a path outside the allowlist."""


class Policy:
    """Read allowlist. An empty allowlist denies every path."""

    def __init__(self, read_allowlist: list[str] | None = None) -> None:
        self._read_roots = [Path(p).expanduser().resolve() for p in read_allowlist or []]

    def can_read(self, path: str) -> bool:
        if not self._read_roots:
            return False
        target = Path(path).expanduser().resolve()
        return any(target == root or target.is_relative_to(root) for root in self._read_roots)

    def assert_can_read(self, path: str) -> None:
        if not self.can_read(path):
            raise PermissionDeniedError(f"Read denied by policy: {path}")
