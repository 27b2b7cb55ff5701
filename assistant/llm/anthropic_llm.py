"""Anthropic Claude LLM provider with tool-use support (Messages API)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from shared.log import get_logger
from shared.retry import RetryPolicy

from assistant.llm.base import LLMProvider, LLMResponse, Message, ToolDefinition, Usage
from assistant.llm.http import fetch_json_with_retry, send_with_retry
from assistant.llm.normalize import normalize_content, normalize_tool_calls
from assistant.llm.sse import ToolCallAssembler, iter_sse_events

logger = get_logger("llm-anthropic")

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-3-5-sonnet-20240620"
DEFAULT_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1024


def _parse_usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    prompt = raw.get("input_tokens") or 0
    completion = raw.get("output_tokens") or 0
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


class AnthropicProvider(LLMProvider):
    provider_name = "Anthropic"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        retry: RetryPolicy | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        version: str = DEFAULT_VERSION,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Missing Anthropic API key")
        self._api_key = api_key
        self._model = model or DEFAULT_MODEL
        self._base_url = ((base_url or "").strip() or DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._retry = retry or RetryPolicy()
        self._max_tokens = max_tokens
        self._version = version
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        body = self._build_body(messages, tools, model)
        client, request = await self._build_request(body)
        data = await fetch_json_with_retry(
            client,
            request,
            provider=self.provider_name,
            timeout=self._timeout,
            policy=self._retry,
        )
        return self._parse_response(data)

    async def stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[LLMResponse]:
        body = self._build_body(messages, tools, model)
        body["stream"] = True

        assembler = ToolCallAssembler()
        finish_reason: str | None = None
        prompt_tokens: int | None = None
        completion_tokens: int | None = None

        response = await self._send(body)
        try:
            async for event in iter_sse_events(response):
                event_type = event.get("type")

                if event_type == "message_start":
                    message = event.get("message") or {}
                    finish_reason = message.get("stop_reason") or finish_reason
                    usage = message.get("usage") or {}
                    if "input_tokens" in usage:
                        prompt_tokens = usage["input_tokens"] or 0
                    if "output_tokens" in usage:
                        completion_tokens = usage["output_tokens"] or 0

                elif event_type == "content_block_start":
                    index = event.get("index", 0)
                    block = event.get("content_block") or {}
                    if block.get("type") == "text" and block.get("text"):
                        yield LLMResponse(content=block["text"], finish_reason="streaming")
                    elif block.get("type") == "tool_use":
                        seed = block.get("input")
                        assembler.update(
                            index,
                            id=block.get("id"),
                            name=block.get("name"),
                            arguments=json.dumps(seed) if isinstance(seed, dict) and seed else None,
                        )

                elif event_type == "content_block_delta":
                    index = event.get("index", 0)
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield LLMResponse(content=delta["text"], finish_reason="streaming")
                    elif delta.get("type") == "input_json_delta" and isinstance(delta.get("partial_json"), str):
                        assembler.update(index, arguments=delta["partial_json"])

                elif event_type == "message_delta":
                    delta = event.get("delta") or {}
                    finish_reason = delta.get("stop_reason") or finish_reason
                    usage = event.get("usage") or {}
                    if "output_tokens" in usage:
                        completion_tokens = usage["output_tokens"] or 0
        finally:
            await response.aclose()

        usage_total: Usage | None = None
        if prompt_tokens is not None or completion_tokens is not None:
            usage_total = _parse_usage({
                "input_tokens": prompt_tokens,
                "output_tokens": completion_tokens,
            })

        tool_calls = assembler.finish()
        yield LLMResponse(
            content=None,
            tool_calls=tool_calls,
            finish_reason=finish_reason or ("tool_calls" if tool_calls else "stop"),
            usage=usage_total,
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_body(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        model: str | None,
    ) -> dict[str, Any]:
        system_prompt, anthropic_messages = self._convert_messages(messages)
        body: dict[str, Any] = {
            "model": model or self._model,
            "max_tokens": self._max_tokens,
            "messages": anthropic_messages,
        }
        if system_prompt:
            body["system"] = system_prompt
        anthropic_tools = self._convert_tools(tools) if tools else []
        if anthropic_tools:
            body["tools"] = anthropic_tools
        return body

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert OpenAI-format tools to Anthropic format."""
        result: list[dict[str, Any]] = []
        for tool in tools:
            func = tool.get("function", tool)
            name = str(func.get("name") or "").strip()
            if not name:
                continue
            entry: dict[str, Any] = {
                "name": name,
                "input_schema": func.get("parameters") or {"type": "object"},
            }
            if isinstance(func.get("description"), str):
                entry["description"] = func["description"]
            result.append(entry)
        return result

    def _convert_messages(self, messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
        """Convert unified messages to Anthropic format.

        System messages are lifted into the top-level ``system`` string.
        """
        system_parts: list[str] = []
        result: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                text = normalize_content(msg.content)
                if text:
                    system_parts.append(text)

            elif msg.role == "user":
                result.append({"role": "user", "content": msg.content or ""})

            elif msg.role == "assistant":
                if not msg.tool_calls:
                    result.append({"role": "assistant", "content": msg.content or ""})
                    continue
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments or {},
                    })
                result.append({"role": "assistant", "content": content})

            elif msg.role == "tool":
                # Anthropic expects tool results as user messages with tool_result blocks
                tool_result = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or msg.name or "tool_result",
                    "content": msg.content or "",
                }
                # Merge consecutive tool results into one user message
                if result and result[-1].get("role") == "user":
                    last_content = result[-1]["content"]
                    if isinstance(last_content, list):
                        last_content.append(tool_result)
                        continue
                result.append({"role": "user", "content": [tool_result]})

        return "\n\n".join(system_parts), result

    async def _build_request(self, body: dict[str, Any]) -> tuple[httpx.AsyncClient, httpx.Request]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": self._version,
        }
        client = await self._get_client()
        request = client.build_request(
            "POST",
            f"{self._base_url}/v1/messages",
            headers=headers,
            json=body,
        )
        return client, request

    async def _send(self, body: dict[str, Any]) -> httpx.Response:
        client, request = await self._build_request(body)
        return await send_with_retry(
            client,
            request,
            provider=self.provider_name,
            timeout=self._timeout,
            policy=self._retry,
        )

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        """Parse an Anthropic response body into our unified format."""
        text_parts: list[str] = []
        raw_calls: list[dict[str, Any]] = []

        for block in data.get("content") or []:
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                text_parts.append(block["text"])
            elif block.get("type") == "tool_use":
                raw_calls.append({
                    "id": block.get("id"),
                    "name": block.get("name"),
                    "arguments": block.get("input"),
                })

        result = LLMResponse(
            content="".join(text_parts) if text_parts else None,
            tool_calls=normalize_tool_calls(raw_calls),
            finish_reason=data.get("stop_reason") or "stop",
            usage=_parse_usage(data.get("usage")),
        )
        logger.debug(
            "chat_response",
            provider=self.provider_name,
            finish_reason=result.finish_reason,
            tool_calls=len(result.tool_calls),
        )
        return result
