"""Base settings read from the environment and an optional ``.env`` file.

Field names map to upper-case environment variables (``openai_api_key`` is
``OPENAI_API_KEY``). Unknown variables are ignored, so one ``.env`` can feed
several entry points. The assistant adds its own fields in
``assistant.config.AssistantSettings``.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMATS = ("auto", "json", "console")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Provider credentials ---
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openrouter_api_key: str = ""

    # --- Storage ---
    data_dir: str = "~/.assistant"  # sessions are kept in <data_dir>/sessions

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "auto"  # auto | json | console

    @field_validator("openai_api_key", "anthropic_api_key", "openrouter_api_key")
    @classmethod
    def _strip_key(cls, value: str) -> str:
        return value.strip()

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
        return value
