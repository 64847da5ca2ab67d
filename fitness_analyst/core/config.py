"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    PROFILES_TABLE: str = "profiles"

    # Groq (OpenAI-compatible chat completions)
    GROQ_API_KEY: SecretStr = SecretStr("")
    GROQ_MODEL: str = "llama-3.3-70b-versatile"
    GROQ_URL: str = "https://api.groq.com/openai/v1/chat/completions"

    # Outbound requests
    REQUEST_MAX_ATTEMPTS: int = 3
    REQUEST_TIMEOUT_SECONDS: float = 60.0

    # Chat
    CHAT_CONTEXT_MESSAGES: int = 5

    # Status messages
    SUCCESS_MESSAGE_TTL_SECONDS: float = 5.0

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging (format defaults to text in development, json elsewhere)
    LOG_FORMAT: Literal["text", "json"] | None = None
    LOG_LEVEL: str = "INFO"

    @field_validator("SUPABASE_URL", "GROQ_URL")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that service URLs are http(s) URLs."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("REQUEST_MAX_ATTEMPTS", "CHAT_CONTEXT_MESSAGES")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Attempt budgets and context windows must be at least one."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def log_format(self) -> str:
        """Effective log format: explicit LOG_FORMAT, else by environment."""
        if self.LOG_FORMAT:
            return self.LOG_FORMAT
        return "text" if self.is_development else "json"

    @property
    def missing_secrets(self) -> list[str]:
        """Names of required secrets that are unset or empty."""
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_ANON_KEY": self.SUPABASE_ANON_KEY.get_secret_value(),
            "GROQ_API_KEY": self.GROQ_API_KEY.get_secret_value(),
        }
        return [name for name, value in required_secrets.items() if not value]

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        missing = self.missing_secrets
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Startup validation is left to the application bootstrap so the core
    modules stay importable without credentials.

    Returns:
        Settings instance.
    """
    return Settings()
