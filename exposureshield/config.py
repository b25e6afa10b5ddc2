"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Token signing. Empty means "not configured" and is reported per request.
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""  # Falls back to jwt_secret when empty

    # Token lifetimes (seconds)
    access_token_ttl_seconds: int = 3600  # 1 hour
    refresh_token_ttl_seconds: int = 604800  # 7 days
    verification_token_ttl_seconds: int = 86400  # 24 hours
    reset_token_ttl_seconds: int = 3600  # 1 hour

    # Key-value store. Empty selects the in-memory store (single instance only).
    redis_url: str = ""

    # Links and CORS
    app_url: str = "https://www.exposureshield.com"
    cors_allowed_origins: str = (
        "https://www.exposureshield.com,https://exposureshield.com,"
        "http://localhost:3000,http://localhost:5173"
    )

    # Email delivery
    email_enabled: bool = False
    email_from: str = "contact@exposureshield.com"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = False

    @property
    def cors_allowed_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]

    @property
    def refresh_secret(self) -> str:
        """Secret used for refresh tokens, defaulting to the access secret."""
        return self.jwt_refresh_secret.strip() or self.jwt_secret.strip()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
