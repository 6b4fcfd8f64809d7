"""Configuration for the Feynman learning core using environment variables."""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Environment Variables:
        LLM_API_KEY: API key for the LLM provider (required for validation)
        LLM_BASE_URL: Base URL for the LLM API (default: OpenAI)
        LLM_MODEL: Model name to use (default: gpt-4o-mini)
        FEYNMAN_SOFT_THRESHOLD: Token estimate where soft compression starts
        FEYNMAN_HARD_THRESHOLD: Token estimate where hard compression starts
        FEYNMAN_EMERGENCY_THRESHOLD: Token estimate where emergency compression starts
        FEYNMAN_DB_PATH: Path to SQLite database (default: ./data/feynman.db)
        FEYNMAN_LOG_LEVEL: Logging level (default: INFO)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM Configuration
    llm_api_key: str = Field(
        default="",
        validation_alias="LLM_API_KEY",
        description="API key for the LLM provider",
    )
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        validation_alias="LLM_BASE_URL",
        description="Base URL for the LLM API (OpenAI or compatible)",
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        validation_alias="LLM_MODEL",
        description="Model name to use",
    )
    llm_max_tokens: int = Field(
        default=4096,
        gt=0,
        validation_alias="LLM_MAX_TOKENS",
        description="Maximum output tokens per validation request",
    )

    # Context budget
    soft_threshold: int = Field(
        default=100_000,
        gt=0,
        validation_alias="FEYNMAN_SOFT_THRESHOLD",
        description="Token estimate at which old exchanges get summarized",
    )
    hard_threshold: int = Field(
        default=150_000,
        gt=0,
        validation_alias="FEYNMAN_HARD_THRESHOLD",
        description="Token estimate at which history collapses to a snapshot",
    )
    emergency_threshold: int = Field(
        default=180_000,
        gt=0,
        validation_alias="FEYNMAN_EMERGENCY_THRESHOLD",
        description="Token estimate at which only the snapshot is sent",
    )

    # Persistence
    saved_history_limit: int = Field(
        default=10,
        ge=0,
        validation_alias="FEYNMAN_SAVED_HISTORY_LIMIT",
        description="Conversation turns kept when saving state locally",
    )
    db_path: Path = Field(
        default=Path("./data/feynman.db"),
        validation_alias="FEYNMAN_DB_PATH",
        description="Path to SQLite database",
    )

    # Retries
    request_retries: int = Field(
        default=3,
        ge=1,
        validation_alias="FEYNMAN_REQUEST_RETRIES",
        description="Attempts per outbound model request",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        validation_alias="FEYNMAN_RETRY_BASE_DELAY",
        description="Delay in seconds before the first retry (doubles each time)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias="FEYNMAN_LOG_LEVEL",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @model_validator(mode="after")
    def _check_threshold_order(self) -> "Settings":
        if not (self.soft_threshold < self.hard_threshold < self.emergency_threshold):
            raise ValueError(
                "Compression thresholds must be strictly ascending: "
                f"soft={self.soft_threshold}, hard={self.hard_threshold}, "
                f"emergency={self.emergency_threshold}"
            )
        return self

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        return getattr(logging, self.log_level.upper(), logging.INFO)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_llm_client(settings: Settings | None = None):
    """Get configured async OpenAI client for validation requests.

    Returns:
        AsyncOpenAI client configured for the current provider

    Raises:
        ValueError: If LLM_API_KEY is not set
    """
    from openai import AsyncOpenAI

    settings = settings or get_settings()
    if not settings.llm_api_key:
        raise ValueError(
            "LLM_API_KEY environment variable is required. "
            "Set it to your API key for OpenAI or a compatible provider."
        )

    return AsyncOpenAI(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
    )
