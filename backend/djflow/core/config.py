"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "DJ Flow"
    app_version: str = "0.1.0"
    debug: bool = False

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: str

    # Frontend URL (used to build notification links)
    frontend_url: str = "http://localhost:5173"

    # CORS Settings (for Frontend)
    cors_origins: str = "http://localhost:5173"  # Vite default port

    # Scheduling
    urgent_shift_days: int = 2  # Working days added to other jobs when urgent work lands
    default_sla_working_days: int = 7  # Used when a job type has no SLA configured
    working_day_search_limit: int = 366  # Calendar days scanned per working day before giving up
    holiday_cache_ttl_minutes: int = 60

    # Holiday import
    max_upload_size_mb: int = 5

    # Notifications
    notifications_enabled: bool = True
    slack_webhook_url: Optional[str] = None
    slack_timeout_seconds: float = 5.0

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def slack_enabled(self) -> bool:
        """Check if Slack is configured."""
        return bool(self.slack_webhook_url)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
