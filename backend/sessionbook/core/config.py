# backend/sessionbook/core/config.py
from datetime import time
import logging
import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment")

    database_url: str = Field(
        default="sqlite:///./sessionbook.db",
        description="SQLAlchemy URL for the session store",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    redis_url: str = Field(default="redis://localhost:6379/0")
    celery_broker_url: Optional[str] = Field(default=None)

    # Wall-clock zone for "today", Sunday and working-hour rules.
    booking_timezone: str = Field(default="Asia/Kolkata")

    # Scheduling engine
    max_sessions_per_teacher_per_day: int = Field(
        default=4, ge=1, description="Committed sessions a teacher may hold per day"
    )
    max_sessions_per_student_per_day: int = Field(
        default=3, ge=1, description="Active sessions a program may request per day"
    )
    break_buffer_minutes: int = Field(default=15, ge=0)
    back_to_back_blackout_minutes: int = Field(default=60, ge=0)
    slot_step_minutes: int = Field(default=15, ge=1)
    default_slot_duration_minutes: int = Field(default=75, ge=1)
    min_slot_duration_minutes: int = Field(default=15, ge=1)
    max_slot_duration_minutes: int = Field(default=240, ge=1)
    working_day_start: time = Field(default=time(9, 0))
    working_day_end: time = Field(default=time(21, 0))
    latest_session_start: time = Field(default=time(19, 45))

    auto_rejection_reason: str = Field(
        default=(
            "Number of classes exceeded for this teacher on this day. "
            "Maximum of {max_sessions} sessions per day allowed."
        )
    )

    # Meeting links
    jitsi_domain: str = Field(default="meet.jit.si")
    meeting_room_prefix: str = Field(default="sessionbook")
    meeting_platform: str = Field(default="jitsi-meet")

    # Concurrency
    schedule_lock_enabled: bool = Field(default=True)
    schedule_lock_ttl_seconds: int = Field(default=30, ge=1)

    # Notifications
    notifications_enabled: bool = Field(default=True)
    notification_provider: Literal["console", "log"] = Field(default="log")
    outbox_batch_size: int = Field(default=200, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("schedule_lock_enabled", "notifications_enabled", mode="before")
    @classmethod
    def _coerce_bool(cls, value: object) -> bool | object:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return value

    @model_validator(mode="after")
    def _check_working_day(self) -> "Settings":
        if self.working_day_end <= self.working_day_start:
            raise ValueError("working_day_end must be after working_day_start")
        if not (self.working_day_start <= self.latest_session_start < self.working_day_end):
            raise ValueError("latest_session_start must fall inside the working day")
        if self.max_slot_duration_minutes < self.min_slot_duration_minutes:
            raise ValueError("max_slot_duration_minutes must be >= min_slot_duration_minutes")
        return self

    @property
    def broker_url(self) -> str:
        return self.celery_broker_url or self.redis_url


settings = Settings()
logger.debug(
    "[CONFIG] environment=%s timezone=%s max_per_teacher_day=%s",
    settings.environment,
    settings.booking_timezone,
    settings.max_sessions_per_teacher_per_day,
)
