"""Vendor-neutral conversation types and the provider contract.

Adapters translate these to and from their wire formats. The brain and the
session store only ever handle the types defined here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolCall:
    """One tool invocation the model asked for. ``arguments`` is always a dict."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    """One entry of the context sent to a provider.

    ``role`` is system, user, assistant or tool. Assistant entries may carry
    ``tool_calls``; tool entries answer one of them through ``tool_call_id``.
    """

    role: str
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None  # tool that produced a tool-role entry


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    """A complete completion, or one fragment of a streamed one.

    Text fragments use ``finish_reason="streaming"``. The last fragment of a
    stream has no text; it carries the assembled tool calls, the real finish
    reason and usage when the vendor reported it.
    """

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: Usage | None = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# {"type": "function", "function": {"name", "description", "parameters"}}
ToolDefinition = dict[str, Any]


class LLMProvider(ABC):
    """A chat-completion backend."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Run one completion and return it whole.

        ``model`` replaces the adapter's default model for this call only.
        Failures surface as ``ProviderError`` after retries.
        """

    async def stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[LLMResponse]:
        """Yield text fragments as they arrive, then one final fragment.

        Adapters without incremental output inherit this version, which
        replays a single ``chat`` result in the same shape.
        """
        response = await self.chat(messages, tools, model)
        if response.content:
            yield LLMResponse(content=response.content, finish_reason="streaming")
        yield LLMResponse(
            content=None,
            tool_calls=response.tool_calls,
            finish_reason=response.finish_reason,
            usage=response.usage,
        )

    async def aclose(self) -> None:
        """Close any HTTP client the adapter opened itself."""
