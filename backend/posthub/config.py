"""Application settings and configuration helpers."""
from datetime import timedelta
from functools import lru_cache
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    database_url: str = Field(
        default="sqlite+aiosqlite:///./posthub.db", alias="DATABASE_URL"
    )
    environment: str = Field(default="development", alias="APP_ENV")
    app_url: str = Field(default="http://localhost:8000", alias="APP_URL")

    # One secret per token kind so a leaked key cannot mint another kind
    jwt_access_secret: str = Field(
        default="change-me-access-secret-0123456789abcdef", alias="JWT_ACCESS_SECRET"
    )
    jwt_refresh_secret: str = Field(
        default="change-me-refresh-secret-0123456789abcdef", alias="JWT_REFRESH_SECRET"
    )
    jwt_activation_secret: str = Field(
        default="change-me-activation-secret-0123456789abcdef",
        alias="JWT_ACTIVATION_SECRET",
    )
    jwt_email_change_secret: str = Field(
        default="change-me-email-change-secret-0123456789abcdef",
        alias="JWT_EMAIL_CHANGE_SECRET",
    )
    access_token_ttl_minutes: int = Field(default=15, alias="ACCESS_TOKEN_TTL_MINUTES")
    refresh_token_ttl_days: int = Field(default=7, alias="REFRESH_TOKEN_TTL_DAYS")
    activation_token_ttl_hours: int = Field(default=24, alias="ACTIVATION_TOKEN_TTL_HOURS")
    email_change_token_ttl_hours: int = Field(default=1, alias="EMAIL_CHANGE_TOKEN_TTL_HOURS")

    password_hash_rounds: int = Field(default=29000, alias="PASSWORD_HASH_ROUNDS")

    unactivated_account_max_age_hours: int = Field(
        default=24, alias="UNACTIVATED_ACCOUNT_MAX_AGE_HOURS"
    )
    sweep_interval_minutes: int = Field(default=60, alias="SWEEP_INTERVAL_MINUTES")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")

    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    email_from: str | None = Field(default=None, alias="EMAIL_FROM")
    email_from_name: str = Field(default="PostHub", alias="EMAIL_FROM_NAME")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def refresh_cookie_max_age(self) -> int:
        """Cookie lifetime in seconds, matching the refresh token TTL."""

        return int(timedelta(days=self.refresh_token_ttl_days).total_seconds())


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    values = {
        field.alias: os.environ[field.alias]
        for field in Settings.model_fields.values()
        if field.alias and field.alias in os.environ
    }
    return Settings(**values)
