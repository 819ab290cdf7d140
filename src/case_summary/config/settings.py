"""Runtime settings loaded from environment variables."""

from functools import lru_cache
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from case_summary.domain.access_scope import CallerRole

NonEmptyStr = Annotated[str, Field(min_length=1)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]
PositiveFloat = Annotated[float, Field(gt=0.0)]
PositiveInt = Annotated[int, Field(gt=0)]


class Settings(BaseSettings):
    """Environment-driven settings for the summary counter runtime."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: NonEmptyStr = Field(validation_alias="DATABASE_URL")
    summary_window_size: PositiveInt = Field(
        default=200,
        validation_alias="SUMMARY_WINDOW_SIZE",
    )
    feed_poll_interval_seconds: NonNegativeFloat = Field(
        default=1.0,
        validation_alias="FEED_POLL_INTERVAL_SECONDS",
    )
    feed_retry_delay_seconds: NonNegativeFloat = Field(
        default=5.0,
        validation_alias="FEED_RETRY_DELAY_SECONDS",
    )
    day_check_interval_seconds: PositiveFloat = Field(
        default=60.0,
        validation_alias="SUMMARY_DAY_CHECK_INTERVAL_SECONDS",
    )
    summary_timezone: NonEmptyStr = Field(default="UTC", validation_alias="SUMMARY_TIMEZONE")
    summary_caller_user_id: NonEmptyStr = Field(validation_alias="SUMMARY_CALLER_USER_ID")
    summary_caller_role: CallerRole = Field(
        default=CallerRole.SUPER_ADMIN,
        validation_alias="SUMMARY_CALLER_ROLE",
    )
    summary_partner_name: NonEmptyStr | None = Field(
        default=None,
        validation_alias="SUMMARY_PARTNER_NAME",
    )
    summary_supervised_user_ids: str | None = Field(
        default=None,
        validation_alias="SUMMARY_SUPERVISED_USER_IDS",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("summary_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(f"unknown timezone: {value}") from error
        return value

    def supervised_user_ids(self) -> frozenset[str]:
        """Return the comma-separated supervised ids as a set."""

        raw = self.summary_supervised_user_ids or ""
        return frozenset(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings."""

    return Settings()  # type: ignore[call-arg]
