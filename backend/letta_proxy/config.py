"""
Configuration management using pydantic-settings.
Loads from environment variables and ~/.env.local
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LETTA_SERVER_URL = "http://localhost:8283"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(Path.home() / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8317
    log_level: str = "INFO"

    # Upstream OpenAI-compatible provider
    upstream_base_url: str = "https://api.openai.com/v1"
    upstream_api_key: str = ""
    upstream_timeout_s: float = 120.0

    # Letta memory service
    letta_enabled: bool = False
    letta_server_url: str = DEFAULT_LETTA_SERVER_URL
    letta_agent_id: str = ""
    letta_timeout_ms: int = 300
    letta_update_timeout_s: float = 5.0
    letta_max_pending_updates: int = 64  # 0 = unbounded

    @field_validator("letta_enabled", mode="before")
    @classmethod
    def _parse_enabled(cls, value: Any) -> bool:
        # Only the literal "true" turns memory injection on
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() == "true"

    @field_validator("letta_server_url", mode="before")
    @classmethod
    def _default_server_url(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return DEFAULT_LETTA_SERVER_URL
        return str(value).strip()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
