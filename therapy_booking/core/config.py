# therapy_booking/core/config.py
import logging
import os
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Storage
    database_url: str = Field(
        default="sqlite:///./therapy_booking.db",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL (postgresql+psycopg2://... in production)",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    redis_url: Optional[str] = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis URL for the availability cache; in-memory fallback when unset",
    )

    # Booking concurrency
    lock_timeout_ms: int = Field(
        default=1500,
        alias="BOOKING_LOCK_TIMEOUT_MS",
        description="Upper bound on waiting for the per-therapist booking lock",
    )
    booking_max_attempts: int = Field(
        default=3,
        alias="BOOKING_MAX_ATTEMPTS",
        description="Attempts for a booking transaction that hits transient storage errors",
    )

    # Lifecycle policy
    no_show_credit_policy: Literal["forfeit", "refund"] = Field(
        default="forfeit",
        alias="NO_SHOW_CREDIT_POLICY",
        description="What happens to a reserved credit when a session is marked no-show",
    )
    completion_grace_minutes: int = Field(default=5, alias="COMPLETION_GRACE_MINUTES")
    deferred_join_grace_minutes: int = Field(
        default=15,
        alias="DEFERRED_JOIN_GRACE_MINUTES",
        description="Minutes past start after which an unjoined deferred-credit session is cancelled",
    )
    join_window_minutes: int = Field(
        default=15,
        alias="JOIN_WINDOW_MINUTES",
        description="How many minutes before start a participant may join",
    )
    follow_up_max_days_ahead: int = Field(default=21, alias="FOLLOW_UP_MAX_DAYS_AHEAD")
    follow_up_default_duration_minutes: int = Field(
        default=30, alias="FOLLOW_UP_DEFAULT_DURATION_MINUTES"
    )

    # Availability defaults
    default_session_duration_minutes: int = Field(
        default=60, alias="DEFAULT_SESSION_DURATION_MINUTES"
    )
    default_therapist_timezone: str = Field(
        default="Africa/Lagos", alias="DEFAULT_THERAPIST_TIMEZONE"
    )
    min_session_duration_minutes: int = 15
    max_session_duration_minutes: int = 240
    availability_cache_tier: Literal["hot", "warm"] = "hot"

    credit_purchase_url: str = Field(default="/credits/purchase", alias="CREDIT_PURCHASE_URL")

    # Collaborators (in-memory fakes when unset)
    video_api_base_url: Optional[str] = Field(default=None, alias="VIDEO_API_BASE_URL")
    video_api_key: Optional[str] = Field(default=None, alias="VIDEO_API_KEY")
    notification_webhook_url: Optional[str] = Field(default=None, alias="NOTIFICATION_WEBHOOK_URL")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("lock_timeout_ms", "booking_max_attempts")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


settings = Settings()
