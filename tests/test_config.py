"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from assistant.config import AssistantSettings


def test_defaults(monkeypatch):
    for var in ("LLM_PROVIDER", "AGENT_MAX_ITERATIONS", "PROVIDER_MAX_RETRIES", "LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)

    settings = AssistantSettings(_env_file=None)

    assert settings.agent_max_iterations == 4
    assert settings.provider_max_retries == 2
    assert settings.provider_retry_base_delay == 0.2
    assert settings.provider_retry_max_delay == 2.0
    assert settings.anthropic_max_tokens == 1024
    assert settings.log_format == "auto"


def test_keys_are_stripped():
    settings = AssistantSettings(_env_file=None, openai_api_key="  sk-test \n")
    assert settings.openai_api_key == "sk-test"


def test_unknown_log_format_rejected():
    with pytest.raises(ValidationError):
        AssistantSettings(_env_file=None, log_format="xml")


def test_sessions_dir_under_data_dir(tmp_path):
    settings = AssistantSettings(_env_file=None, data_dir=str(tmp_path))
    assert settings.sessions_dir == tmp_path / "sessions"


def test_read_allowlist_parsing(tmp_path):
    settings = AssistantSettings(_env_file=None, read_allowlist=f" {tmp_path} , ,/srv/notes")
    assert settings.read_allowlist_paths == [str(tmp_path), "/srv/notes"]


def test_read_allowlist_defaults_to_cwd():
    settings = AssistantSettings(_env_file=None, read_allowlist="")
    assert settings.read_allowlist_paths == [str(Path.cwd())]
