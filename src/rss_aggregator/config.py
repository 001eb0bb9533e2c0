# ABOUTME: Centralized configuration using Pydantic Settings.
# ABOUTME: Loads refresh cadence, fetch limits, and trigger credentials from env and .env.

from functools import lru_cache
from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    db_path: Path = Path("./rss_aggregator.db")

    # Feed fetching
    feed_timeout: float = 10.0
    feed_user_agent: str = "Mozilla/5.0 (compatible; RSS Reader/1.0)"
    max_articles_per_feed: int = 20

    # Scheduling
    refresh_interval_minutes: int = 15
    retry_interval_minutes: int = 15
    max_consecutive_errors: int = 10
    max_concurrent_refreshes: int = 5

    # Triggers
    cron_secret: SecretStr | None = None
    admin_token: SecretStr | None = None
    admin_ids: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def database_url(self) -> str:
        """Build async SQLite connection URL."""
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def admin_id_set(self) -> set[str]:
        """Admin identities allowed to force refreshes."""
        return {part.strip() for part in self.admin_ids.split(",") if part.strip()}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
