"""OpenAI-compatible LLM provider.

Works with OpenAI, OpenRouter, and any server exposing ``/v1/chat/completions``
(vLLM, Ollama). OpenRouter differs only in base URL and attribution headers,
see ``openrouter_provider``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from shared.log import get_logger
from shared.retry import RetryPolicy

from assistant.llm.base import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition, Usage
from assistant.llm.http import fetch_json_with_retry, send_with_retry
from assistant.llm.normalize import extract_text, normalize_content, safe_parse_arguments
from assistant.llm.sse import ToolCallAssembler, iter_sse_events

logger = get_logger("llm-openai")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

LEGACY_FUNCTION_CALL = "function_call"


def normalize_base_url(base_url: str | None) -> str:
    base = (base_url or "").strip() or DEFAULT_BASE_URL
    base = base.rstrip("/")
    if base.endswith("/v1"):
        return base
    return f"{base}/v1"


def _parse_usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    return Usage(
        prompt_tokens=raw.get("prompt_tokens") or 0,
        completion_tokens=raw.get("completion_tokens") or 0,
        total_tokens=raw.get("total_tokens") or 0,
    )


class OpenAICompatProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        retry: RetryPolicy | None = None,
        extra_headers: dict[str, str] | None = None,
        provider_name: str = "OpenAI",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError(f"Missing {provider_name} API key")
        self._api_key = api_key
        self._model = model or DEFAULT_MODEL
        self._base_url = normalize_base_url(base_url)
        self._timeout = timeout
        self._retry = retry or RetryPolicy()
        self._extra_headers = {k: v for k, v in (extra_headers or {}).items() if v}
        self.provider_name = provider_name
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
        usage: Usage | None = None

        response = await self._send(body)
        try:
            async for event in iter_sse_events(response):
                usage = _parse_usage(event.get("usage")) or usage
                choices = event.get("choices") or []
                choice = choices[0] if choices and isinstance(choices[0], dict) else {}
                delta = choice.get("delta") or {}
                finish_reason = choice.get("finish_reason") or finish_reason

                text = extract_text(delta.get("content"))
                if text:
                    yield LLMResponse(content=text, finish_reason="streaming")

                for tc_delta in delta.get("tool_calls") or []:
                    function = tc_delta.get("function") or {}
                    assembler.update(
                        tc_delta.get("index", 0),
                        id=tc_delta.get("id"),
                        name=function.get("name"),
                        arguments=function.get("arguments"),
                    )

                legacy = delta.get("function_call")
                if isinstance(legacy, dict):
                    assembler.update(
                        LEGACY_FUNCTION_CALL,
                        id=LEGACY_FUNCTION_CALL,
                        name=legacy.get("name"),
                        arguments=legacy.get("arguments"),
                    )
        finally:
            await response.aclose()

        tool_calls = assembler.finish()
        yield LLMResponse(
            content=None,
            tool_calls=tool_calls,
            finish_reason=finish_reason or ("tool_calls" if tool_calls else "stop"),
            usage=usage,
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
        body: dict[str, Any] = {
            "model": model or self._model,
            "messages": self._convert_messages(messages),
        }
        if tools:
            body["tools"] = tools
        return body

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert unified messages to OpenAI format."""
        result: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role in ("system", "user"):
                result.append({"role": msg.role, "content": msg.content or ""})

            elif msg.role == "assistant":
                entry: dict[str, Any] = {"role": "assistant", "content": msg.content}
                if msg.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments or {}),
                            },
                        }
                        for tc in msg.tool_calls
                    ]
                elif entry["content"] is None:
                    entry["content"] = ""
                result.append(entry)

            elif msg.role == "tool":
                result.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": msg.content or "",
                })

        return result

    async def _build_request(self, body: dict[str, Any]) -> tuple[httpx.AsyncClient, httpx.Request]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            **self._extra_headers,
        }
        client = await self._get_client()
        request = client.build_request(
            "POST",
            f"{self._base_url}/chat/completions",
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
        """Parse an OpenAI response body into our unified format."""
        choices = data.get("choices") or []
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}

        tool_calls: list[ToolCall] = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            tool_calls.append(ToolCall(
                id=tc.get("id") or f"tool_{len(tool_calls)}",
                name=function.get("name", ""),
                arguments=safe_parse_arguments(function.get("arguments")),
            ))

        function_call = message.get("function_call")
        if not tool_calls and isinstance(function_call, dict):
            tool_calls.append(ToolCall(
                id=LEGACY_FUNCTION_CALL,
                name=function_call.get("name", ""),
                arguments=safe_parse_arguments(function_call.get("arguments")),
            ))

        result = LLMResponse(
            content=normalize_content(message.get("content")),
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason") or "stop",
            usage=_parse_usage(data.get("usage")),
        )
        logger.debug(
            "chat_response",
            provider=self.provider_name,
            finish_reason=result.finish_reason,
            tool_calls=len(tool_calls),
        )
        return result


def openrouter_provider(
    api_key: str,
    model: str | None = None,
    base_url: str | None = None,
    referer: str | None = None,
    title: str | None = None,
    **kwargs: Any,
) -> OpenAICompatProvider:
    """Build an OpenAI-compatible provider pointed at OpenRouter."""
    headers = dict(kwargs.pop("extra_headers", None) or {})
    if referer:
        headers["HTTP-Referer"] = referer
    if title:
        headers["X-Title"] = title
    return OpenAICompatProvider(
        api_key=api_key,
        model=model,
        base_url=base_url or OPENROUTER_BASE_URL,
        extra_headers=headers,
        provider_name="OpenRouter",
        **kwargs,
    )
