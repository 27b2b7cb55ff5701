"""Tests for the command-line entry point."""

import pytest

from assistant import main as cli
from assistant.llm.base import LLMProvider, LLMResponse, ToolCall
from assistant.llm.http import ProviderError


class _FixedProvider(LLMProvider):
    def __init__(self, result):
        self.result = result
        self.closed = False

    async def chat(self, messages, tools=None, model=None):
        if isinstance(self.result, Exception):
            raise self.result
        if isinstance(self.result, LLMResponse):
            return self.result
        return LLMResponse(content=self.result)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("READ_ALLOWLIST", str(tmp_path))

    def install(result):
        provider = _FixedProvider(result)
        monkeypatch.setattr(cli, "create_provider", lambda settings: ("openai", provider))
        return provider

    return install


def test_parse_args_defaults():
    args = cli.parse_args(["-m", "hi"])
    assert (args.message, args.session, args.stream, args.provider) == ("hi", "default", False, None)


@pytest.mark.asyncio
async def test_prints_answer(cli_env, capsys, tmp_path):
    provider = cli_env("Hello")

    code = await cli.run(cli.parse_args(["-m", "hi", "--session", "cli"]))

    assert code == 0
    assert capsys.readouterr().out == "Hello\n"
    assert provider.closed
    assert (tmp_path / "sessions" / "cli.jsonl").exists()


@pytest.mark.asyncio
async def test_streams_answer(cli_env, capsys):
    cli_env("Hi there")

    code = await cli.run(cli.parse_args(["-m", "hi", "--stream"]))

    assert code == 0
    assert capsys.readouterr().out == "Hi there\n"


@pytest.mark.asyncio
async def test_provider_error_exits_nonzero(cli_env, capsys):
    provider = cli_env(ProviderError("OpenAI", "auth", "OpenAI authentication failed (401).", status=401))

    code = await cli.run(cli.parse_args(["-m", "hi"]))

    captured = capsys.readouterr()
    assert code == 1
    assert "error: OpenAI authentication failed (401)." in captured.err
    assert provider.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("stream", [False, True])
async def test_missing_file_requested_by_model(cli_env, capsys, tmp_path, stream):
    missing = tmp_path / "nope.txt"
    provider = cli_env(LLMResponse(
        tool_calls=[ToolCall(id="c1", name="read_file", arguments={"path": str(missing)})],
        finish_reason="tool_calls",
    ))
    argv = ["-m", "read it"] + (["--stream"] if stream else [])

    code = await cli.run(cli.parse_args(argv))

    captured = capsys.readouterr()
    assert code == 1
    assert "error: " in captured.err
    assert "nope.txt" in captured.err
    assert provider.closed
    assert not (tmp_path / "sessions" / "default.jsonl").exists()


@pytest.mark.asyncio
async def test_unknown_tool_requested_by_model(cli_env, capsys):
    cli_env(LLMResponse(tool_calls=[ToolCall(id="c1", name="shell")], finish_reason="tool_calls"))

    code = await cli.run(cli.parse_args(["-m", "run ls"]))

    assert code == 1
    assert "error: Tool not found: shell" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_read_outside_allowlist(cli_env, capsys):
    cli_env(LLMResponse(
        tool_calls=[ToolCall(id="c1", name="read_file", arguments={"path": "/etc/hostname"})],
        finish_reason="tool_calls",
    ))

    code = await cli.run(cli.parse_args(["-m", "read it"]))

    assert code == 1
    assert "error: Read denied by policy: /etc/hostname" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_no_provider_configured(monkeypatch, capsys, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in ("LLM_PROVIDER", "OPENAI_API_KEY", "OPENROUTER_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(var, raising=False)

    code = await cli.run(cli.parse_args(["-m", "hi"]))

    assert code == 1
    assert "error: No provider configured" in capsys.readouterr().err
