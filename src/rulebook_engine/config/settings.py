"""Configuration settings for the rulebook engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings bound to plain environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase / PostgREST
    supabase_url: str = Field(
        default="http://localhost:54321", validation_alias="SUPABASE_URL"
    )
    # Only the PostgREST store needs the key; it checks for it on construction.
    supabase_service_role_key: SecretStr | None = Field(
        default=None, validation_alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_timeout: float = Field(default=30.0, validation_alias="SUPABASE_TIMEOUT")
    supabase_max_retries: int = Field(default=3, validation_alias="SUPABASE_MAX_RETRIES")

    # Internal trigger
    cron_secret: SecretStr | None = Field(default=None, validation_alias="CRON_SECRET")
    rulebook_cron_tenant_ids: str = Field(
        default="", validation_alias="RULEBOOK_CRON_TENANT_IDS"
    )

    # Generation defaults
    rulebook_default_window_days: int = Field(
        default=45, validation_alias="RULEBOOK_DEFAULT_WINDOW_DAYS"
    )
    rulebook_holidays_file: str | None = Field(
        default=None, validation_alias="RULEBOOK_HOLIDAYS_FILE"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @property
    def cron_tenant_ids(self) -> list[str]:
        """Default tenant list for scheduled calls, in configured order."""
        return [
            item.strip()
            for item in self.rulebook_cron_tenant_ids.split(",")
            if item.strip()
        ]


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
