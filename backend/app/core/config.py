import os
import sys
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables and .env files."""

    app_name: str = "PortfolioBlend API"
    environment: str = "dev"
    debug: bool = True
    version: str = "0.1.0"
    database_url: str = "sqlite:///./portfolio_blend.db"
    database_echo: bool = False
    crypto_key: str | None = None

    # Browser-facing origin the OAuth callback redirects back to.
    app_url: str = "http://localhost:8080"

    kite_api_key: str | None = None
    kite_api_secret: str | None = None
    # Used only when no stored broker session is valid.
    kite_access_token: str | None = None
    kite_session_ttl_hours: int = 8
    oauth_state_max_age_seconds: int = 600

    mf_central_api_url: str | None = None
    mf_central_api_key: str | None = None
    mf_central_timeout_seconds: float = 30.0

    cron_secret: str | None = None

    upload_max_bytes: int = 10 * 1024 * 1024
    upload_max_rows: int = 5000

    snapshot_schedule_enabled: bool = True
    snapshot_run_at_ist: str = "15:45"

    log_level: str = "INFO"
    # None: upgrade SQLite databases on startup only.
    auto_migrate: bool | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PB_",
        extra="ignore",
    )

    def dict_for_logging(self) -> dict[str, Any]:
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "debug": self.debug,
            "version": self.version,
            "database_url": self.database_url,
            "kite_configured": bool(self.kite_api_key and self.kite_api_secret),
            "mf_central_configured": bool(self.mf_central_api_url),
        }


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    settings = Settings()

    # Under pytest use an isolated SQLite file so test runs never touch the
    # primary database.
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        settings.database_url = "sqlite:///./portfolio_blend_test.db"
        settings.snapshot_schedule_enabled = False

    return settings


__all__ = ["Settings", "get_settings"]
