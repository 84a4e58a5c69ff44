from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Message archive (chats + messages) - required from .env
    DATABASE_URL: str

    # Contact directory written by the protocol client (read-only, optional)
    CONTACTS_DATABASE_URL: Optional[str] = None

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Ingestion webhook security - required from .env
    WEBHOOK_SECRET: str


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
