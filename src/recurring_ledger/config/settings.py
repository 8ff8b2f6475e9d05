"""Configuration settings for the recurring ledger worker."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger CRUD API
    ledger_api_url: str = Field(
        default="http://localhost:8080", validation_alias="LEDGER_API_URL"
    )
    ledger_api_token: SecretStr | None = Field(
        default=None, validation_alias="LEDGER_API_TOKEN"
    )
    ledger_api_timeout: float = Field(default=30.0, validation_alias="LEDGER_API_TIMEOUT")
    ledger_api_max_retries: int = Field(default=3, validation_alias="LEDGER_API_MAX_RETRIES")

    # Job schedules ("HH:MM", 24-hour, local time)
    budget_job_schedule: str = Field(default="00:00", validation_alias="BUDGET_JOB_SCHEDULE")
    transaction_job_schedule: str = Field(
        default="00:00", validation_alias="TRANSACTION_JOB_SCHEDULE"
    )

    # Scheduler
    scheduler_fallback_interval_seconds: float = Field(
        default=3600.0, validation_alias="SCHEDULER_FALLBACK_INTERVAL_SECONDS"
    )
    scheduler_shutdown_timeout_seconds: float = Field(
        default=30.0, validation_alias="SCHEDULER_SHUTDOWN_TIMEOUT_SECONDS"
    )
    run_on_start: bool = Field(default=False, validation_alias="RUN_ON_START")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
