"""LLM tool definitions, registry, and execution.

Each tool is an action the LLM can call. Tools describe themselves in
OpenAI-compatible JSON Schema; the registry hands those schemas to the
provider and dispatches calls by name.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from shared.log import get_logger

from assistant.policy import Policy

logger = get_logger("tools")

MAX_READ_CHARS = 100_000


class ToolNotFoundError(KeyError):
    """The model asked for a tool that is not registered."""

    def __str__(self) -> str:
        return f"Tool not found: {self.args[0]}"


class Tool(ABC):
    """A single callable action."""

    name: str
    description: str
    parameters: dict[str, Any]

    @abstractmethod
    async def execute(self, arguments: dict[str, Any]) -> str:
        """Run the tool and return its result as text."""

    def to_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Name → tool lookup used by the brain."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        logger.debug("tool_execute", tool=name)
        return await tool.execute(arguments)


# ------------------------------------------------------------------
# File tools
# ------------------------------------------------------------------


def _require_path(arguments: dict[str, Any]) -> str:
    path = str(arguments.get("path") or "").strip()
    if not path:
        raise ValueError("Missing required parameter: path")
    return path


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read a UTF-8 text file from disk."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file"},
        },
        "required": ["path"],
    }

    def __init__(self, policy: Policy) -> None:
        self._policy = policy

    async def execute(self, arguments: dict[str, Any]) -> str:
        path = _require_path(arguments)
        self._policy.assert_can_read(path)
        text = Path(path).expanduser().read_text(encoding="utf-8")
        if len(text) > MAX_READ_CHARS:
            return text[:MAX_READ_CHARS] + f"\n... (truncated, {len(text)} chars total)"
        return text


class ListDirTool(Tool):
    name = "list_dir"
    description = "List the entries of a directory. Subdirectories end with '/'."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory to list"},
        },
        "required": ["path"],
    }

    def __init__(self, policy: Policy) -> None:
        self._policy = policy

    async def execute(self, arguments: dict[str, Any]) -> str:
        path = _require_path(arguments)
        self._policy.assert_can_read(path)
        entries = sorted(Path(path).expanduser().iterdir(), key=lambda p: p.name)
        return "\n".join(f"{p.name}/" if p.is_dir() else p.name for p in entries)


def default_registry(policy: Policy) -> ToolRegistry:
    """Registry with the built-in file tools."""
    registry = ToolRegistry()
    registry.register(ReadFileTool(policy))
    registry.register(ListDirTool(policy))
    return registry
