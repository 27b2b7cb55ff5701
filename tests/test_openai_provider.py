"""Tests for the OpenAI-compatible provider: wire mapping, batch, streaming, errors."""

import json

import httpx
import pytest

from assistant.llm.base import Message, ToolCall
from assistant.llm.http import ProviderError, StreamError
from assistant.llm.openai_compat import OpenAICompatProvider, normalize_base_url, openrouter_provider
from shared.retry import RetryPolicy


def _provider(transport, retry, **kwargs):
    return OpenAICompatProvider(api_key="test-key", retry=retry, client=transport.client(), **kwargs)


async def _collect(provider, messages):
    return [chunk async for chunk in provider.stream(messages)]


USER_HI = [Message(role="user", content="hi")]


class TestRequestMapping:
    def test_base_url_gets_v1(self):
        assert normalize_base_url(None) == "https://api.openai.com/v1"
        assert normalize_base_url("http://localhost:8000/") == "http://localhost:8000/v1"
        assert normalize_base_url("https://openrouter.ai/api/v1") == "https://openrouter.ai/api/v1"

    def test_missing_key_rejected(self):
        with pytest.raises(ValueError):
            OpenAICompatProvider(api_key="")

    @pytest.mark.asyncio
    async def test_messages_and_tools_encoded(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, json={
            "choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}],
        }))
        provider = _provider(transport, fast_retry, model="gpt-test")
        tools = [{"type": "function", "function": {"name": "read_file", "parameters": {"type": "object"}}}]
        messages = [
            Message(role="system", content="sys"),
            Message(role="user", content="read it"),
            Message(role="assistant", content=None, tool_calls=[
                ToolCall(id="call_1", name="read_file", arguments={"path": "/tmp/a.txt"}),
            ]),
            Message(role="tool", content="contents", tool_call_id="call_1", name="read_file"),
        ]

        await provider.chat(messages, tools)

        request = transport.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = transport.body()
        assert body["model"] == "gpt-test"
        assert body["tools"] == tools
        assert "stream" not in body
        assert body["messages"][0] == {"role": "system", "content": "sys"}
        assistant = body["messages"][2]
        assert assistant["content"] is None
        assert assistant["tool_calls"][0]["function"]["arguments"] == json.dumps({"path": "/tmp/a.txt"})
        assert body["messages"][3] == {"role": "tool", "tool_call_id": "call_1", "content": "contents"}

    @pytest.mark.asyncio
    async def test_per_call_model_override(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
        provider = _provider(transport, fast_retry)

        await provider.chat(USER_HI, model="gpt-other")

        assert transport.body()["model"] == "gpt-other"

    @pytest.mark.asyncio
    async def test_openrouter_is_configuration_not_protocol(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
        provider = openrouter_provider(
            api_key="or-key",
            referer="https://example.com",
            title="Assistant",
            retry=fast_retry,
            client=transport.client(),
        )

        await provider.chat(USER_HI)

        request = transport.requests[0]
        assert isinstance(provider, OpenAICompatProvider)
        assert provider.provider_name == "OpenRouter"
        assert str(request.url) == "https://openrouter.ai/api/v1/chat/completions"
        assert request.headers["HTTP-Referer"] == "https://example.com"
        assert request.headers["X-Title"] == "Assistant"


class TestChat:
    @pytest.mark.asyncio
    async def test_tool_calls_and_usage_parsed(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, json={
            "choices": [{
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "call_1", "type": "function",
                         "function": {"name": "read_file", "arguments": '{"path": "/tmp/a.txt"}'}},
                        {"id": "call_2", "type": "function",
                         "function": {"name": "list_dir", "arguments": "{broken"}},
                    ],
                },
                "finish_reason": "tool_calls",
            }],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }))
        provider = _provider(transport, fast_retry)

        response = await provider.chat(USER_HI)

        assert response.content is None
        assert response.finish_reason == "tool_calls"
        assert [tc.name for tc in response.tool_calls] == ["read_file", "list_dir"]
        assert response.tool_calls[0].arguments == {"path": "/tmp/a.txt"}
        assert response.tool_calls[1].arguments == {}
        assert response.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_content_parts_normalized(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, json={
            "choices": [{"message": {"content": [{"type": "text", "text": "Hel"}, {"type": "text", "text": "lo"}]}}],
        }))
        provider = _provider(transport, fast_retry)

        response = await provider.chat(USER_HI)

        assert response.content == "Hello"
        assert response.finish_reason == "stop"
        assert response.usage is None

    @pytest.mark.asyncio
    async def test_legacy_function_call(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, json={
            "choices": [{
                "message": {"content": None, "function_call": {"name": "read_file", "arguments": '{"path": "x"}'}},
                "finish_reason": "function_call",
            }],
        }))
        provider = _provider(transport, fast_retry)

        response = await provider.chat(USER_HI)

        assert response.tool_calls == [ToolCall(id="function_call", name="read_file", arguments={"path": "x"})]


class TestStream:
    @pytest.mark.asyncio
    async def test_text_deltas(self, transport_factory, sse_response, fast_retry):
        transport = transport_factory(sse_response([
            {"choices": [{"delta": {"content": "Hi"}}]},
            {"choices": [{"delta": {"content": " there"}}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
        ]))
        provider = _provider(transport, fast_retry)

        chunks = await _collect(provider, USER_HI)

        assert "".join(c.content for c in chunks if c.content) == "Hi there"
        assert all(c.finish_reason == "streaming" for c in chunks[:-1])
        final = chunks[-1]
        assert final.content is None
        assert final.tool_calls == []
        assert final.finish_reason == "stop"
        assert transport.body()["stream"] is True

    @pytest.mark.asyncio
    async def test_content_parts_not_stringified(self, transport_factory, sse_response, fast_retry):
        transport = transport_factory(sse_response([
            {"choices": [{"delta": {"content": [{"type": "output_text", "text": "Hello"}]}}]},
            {"choices": [{"delta": {"content": " world"}}]},
            {"choices": [{"delta": {"content": [{"type": "reasoning"}]}}]},
            "[DONE]",
        ]))
        provider = _provider(transport, fast_retry)

        chunks = await _collect(provider, USER_HI)

        text = "".join(c.content for c in chunks if c.content)
        assert text == "Hello world"

    @pytest.mark.asyncio
    async def test_tool_call_assembled_from_fragments(self, transport_factory, sse_response, fast_retry):
        transport = transport_factory(sse_response([
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_1"}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"name": "read_file"}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": '{"path":"/tmp'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": '/file.txt"}'}}]}}]},
            "[DONE]",
        ]))
        provider = _provider(transport, fast_retry)

        chunks = await _collect(provider, USER_HI)

        assert len(chunks) == 1
        final = chunks[0]
        assert final.finish_reason == "tool_calls"
        assert final.tool_calls == [
            ToolCall(id="call_1", name="read_file", arguments={"path": "/tmp/file.txt"}),
        ]

    @pytest.mark.asyncio
    async def test_parallel_tool_calls_keyed_by_index(self, transport_factory, sse_response, fast_retry):
        transport = transport_factory(sse_response([
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "a", "function": {"name": "read_file", "arguments": '{"path":'}},
                {"index": 1, "id": "b", "function": {"name": "list_dir", "arguments": '{"path":'}},
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 1, "function": {"arguments": ' "/b"}'}},
                {"index": 0, "function": {"arguments": ' "/a"}'}},
            ]}}], "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7}},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        ]))
        provider = _provider(transport, fast_retry)

        chunks = await _collect(provider, USER_HI)

        final = chunks[-1]
        assert [(tc.id, tc.arguments) for tc in final.tool_calls] == [("a", {"path": "/a"}), ("b", {"path": "/b"})]
        assert final.usage.total_tokens == 7

    @pytest.mark.asyncio
    async def test_events_split_across_chunks(self, transport_factory, sse_response, fast_retry):
        transport = transport_factory(sse_response([
            {"choices": [{"delta": {"content": "Grüße"}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c", "function": {"name": "read_file", "arguments": '{"path": "x"}'}}]}}]},
        ], split_every=7))
        provider = _provider(transport, fast_retry)

        chunks = await _collect(provider, USER_HI)

        assert "".join(c.content for c in chunks if c.content) == "Grüße"
        assert chunks[-1].tool_calls[0].arguments == {"path": "x"}
        assert chunks[-1].finish_reason == "tool_calls"

    @pytest.mark.asyncio
    async def test_malformed_lines_skipped(self, transport_factory, fast_retry):
        body = (
            b": keep-alive\n\n"
            b"event: message\n"
            b"data: {not json}\n\n"
            b'data: {"choices": [{"delta": {"content": "ok"}}]}\n\n'
            b"data: [DONE]\n\n"
        )
        transport = transport_factory(httpx.Response(200, content=body))
        provider = _provider(transport, fast_retry)

        chunks = await _collect(provider, USER_HI)

        assert [c.content for c in chunks] == ["ok", None]
        assert chunks[-1].finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_empty_body_is_fatal(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, content=b""))
        provider = _provider(transport, fast_retry)

        with pytest.raises(StreamError):
            await _collect(provider, USER_HI)
        assert len(transport.requests) == 1


class TestErrors:
    @pytest.mark.asyncio
    async def test_retries_transient_server_error(self, transport_factory, fast_retry):
        transport = transport_factory(
            httpx.Response(503, text="server down"),
            httpx.Response(200, json={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]}),
        )
        provider = _provider(transport, fast_retry)

        response = await provider.chat([Message(role="user", content="hello")])

        assert response.content == "ok"
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(401, text="bad key"))
        provider = _provider(transport, fast_retry)

        with pytest.raises(ProviderError) as exc_info:
            await provider.chat([Message(role="user", content="hello")])

        error = exc_info.value
        assert (error.kind, error.retryable, error.status) == ("auth", False, 401)
        assert error.provider == "OpenAI"
        assert "bad key" in error.message
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_stream_rate_limit_exhausts_retries(self, transport_factory):
        transport = transport_factory(*[httpx.Response(429, text="slow down") for _ in range(2)])
        provider = _provider(transport, RetryPolicy(max_retries=1, base_delay=0.0, max_delay=0.0))

        with pytest.raises(ProviderError) as exc_info:
            await _collect(provider, USER_HI)

        assert exc_info.value.kind == "rate_limit"
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises(self, transport_factory, fast_retry):
        transport = transport_factory(httpx.Response(200, text="<html>gateway hiccup</html>"))
        provider = _provider(transport, fast_retry)

        with pytest.raises(ProviderError) as exc_info:
            await provider.chat(USER_HI)

        assert (exc_info.value.kind, exc_info.value.status) == ("unknown", 200)
        assert "gateway hiccup" in exc_info.value.message
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_body_dropped_mid_read_is_retried(self, transport_factory, fast_retry):
        async def dropped():
            yield b'{"choices": [{"mess'
            raise httpx.ReadError("connection reset mid-body")

        transport = transport_factory(
            httpx.Response(200, content=dropped()),
            httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
        )
        provider = _provider(transport, fast_retry)

        response = await provider.chat(USER_HI)

        assert response.content == "ok"
        assert len(transport.requests) == 2
