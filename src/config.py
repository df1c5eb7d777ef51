"""Configuration management using pydantic-settings."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class LogFormat(str, Enum):
    """Rendering used for operational logs."""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # LLM Configuration
    llm_provider: LLMProvider = LLMProvider.ANTHROPIC
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 30.0
    llm_max_tokens: int = 1024

    # Simulated stage latency (seconds)
    ingest_delay_seconds: float = 1.0
    retrieval_delay_seconds: float = 0.8
    dispatch_delay_seconds: float = 1.0

    # Incident storage
    incidents_path: Optional[Path] = None

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.JSON

    # Paths
    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def incidents_file(self) -> Path:
        return self.incidents_path or self.data_dir / "incidents.jsonl"

    def api_key_for(self, provider: LLMProvider) -> Optional[str]:
        """API key configured for an LLM provider, if any."""
        if provider == LLMProvider.ANTHROPIC:
            return self.anthropic_api_key
        return self.openai_api_key

    def model_for(self, provider: Optional[LLMProvider] = None) -> str:
        """Model name for an LLM provider (the configured one if not specified)."""
        if (provider or self.llm_provider) == LLMProvider.ANTHROPIC:
            return self.llm_model
        return self.openai_model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
