"""Assistant configuration.

Extends the shared Settings with provider selection, retry tuning, agent
loop limits, and the file-tool allowlist.
"""

from __future__ import annotations

from pathlib import Path

from shared.config import Settings as BaseSettings

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


class AssistantSettings(BaseSettings):
    # --- LLM provider ---
    llm_provider: str = ""  # openai | openrouter | anthropic (empty = infer from API keys)
    llm_model: str = ""  # generic model override used when no provider-specific model is set
    openai_model: str = ""
    openai_api_base: str = ""
    openrouter_model: str = ""
    openrouter_api_base: str = ""
    openrouter_referer: str = ""
    openrouter_title: str = ""
    anthropic_model: str = ""
    anthropic_api_base: str = ""
    anthropic_max_tokens: int = 1024
    anthropic_version: str = "2023-06-01"

    # --- Provider transport ---
    provider_max_retries: int = 2
    provider_retry_base_delay: float = 0.2  # seconds
    provider_retry_max_delay: float = 2.0  # seconds
    provider_timeout: float = 60.0  # seconds per attempt

    # --- Agent loop ---
    agent_max_iterations: int = 4
    agent_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_conversation_history: int = 50  # messages loaded into the prompt

    # --- Tools ---
    read_allowlist: str = ""  # comma-separated directories (empty = current directory)

    @property
    def sessions_dir(self) -> Path:
        return Path(self.data_dir).expanduser() / "sessions"

    @property
    def read_allowlist_paths(self) -> list[str]:
        paths = [p.strip() for p in self.read_allowlist.split(",") if p.strip()]
        return paths or [str(Path.cwd())]
