"""
Configuration management for the ISP lifecycle engine.
"""

from datetime import time
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="ISP Lifecycle")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./isp_lifecycle.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Calendar
    timezone: str = Field(
        default="UTC",
        description="IANA timezone used to decide what 'today' is and where plan years start.",
    )

    # Renewal sweep
    sweep_run_at: time = Field(
        default=time(2, 0),
        description="Local time of day the daily renewal sweep fires (HH:MM).",
    )
    sweep_page_size: int = Field(default=200, ge=1)
    sweep_max_workers: int = Field(default=1, ge=1)
    sweep_time_budget_seconds: Optional[int] = Field(default=None, ge=1)

    # Completion tracking collaborator
    completion_tracker: str = Field(
        default="http",
        description="'http' for the completion service, 'stub' for local runs and tests.",
    )
    completion_service_url: Optional[str] = Field(default=None)
    completion_service_api_key: Optional[str] = Field(default=None)
    completion_service_timeout: float = Field(default=30.0)

    # Identity directory
    identity_directory_file: Optional[str] = Field(
        default=None,
        description="JSON file mapping tenant id to {identity id: display name}. Unset means open membership.",
    )

    # Notifications
    renewal_notify_email: Optional[str] = Field(
        default=None,
        description="Extra address copied on every tenant renewal summary.",
    )

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @field_validator("completion_tracker")
    @classmethod
    def _check_tracker(cls, value: str) -> str:
        value = value.lower()
        if value not in {"http", "stub"}:
            raise ValueError("completion_tracker must be 'http' or 'stub'")
        return value


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
