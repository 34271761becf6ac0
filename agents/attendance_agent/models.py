from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


class ScheduleType(str, Enum):
    SIMPLE = "SIMPLE"
    CRON = "CRON"


class AttemptStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Schedule(BaseModel):
    """Weekly check-in configuration for one course."""

    id: int
    course_id: int
    is_active: bool = True
    schedule_type: ScheduleType = ScheduleType.SIMPLE
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    time_of_day: Optional[str] = None
    cron_expression: Optional[str] = None
    # Kept as configuration only; runs are single-attempt with a weekly advance.
    max_retries: int = 6
    retry_interval_minutes: int = 5
    use_separate_channel_token: bool = False
    custom_token: Optional[str] = None
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None

    @field_validator("last_run_at", "next_run_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Course(BaseModel):
    id: int
    user_id: int
    name: str
    url: str


class NotificationChannelConfig(BaseModel):
    is_active: bool = False
    destination: str = ""
    token: str = ""


class UserAccount(BaseModel):
    id: int
    portal_username: str = ""
    portal_secret: str = ""
    channels: Dict[str, NotificationChannelConfig] = Field(default_factory=dict)

    def channel(self, name: str) -> Optional[NotificationChannelConfig]:
        config = self.channels.get(name)
        if config is None or not config.is_active or not config.destination:
            return None
        return config


class AttemptRecord(BaseModel):
    schedule_id: int
    attempt_number: int = 1
    status: AttemptStatus
    message: str
    screenshot_ref: Optional[str] = None
    attempted_at: datetime = Field(default_factory=utc_now)


class Outcome(BaseModel):
    """Result of one automation run, handed to the recorder and notifiers."""

    success: bool
    status: AttemptStatus
    message: str
    screenshot_path: Optional[str] = None

    @classmethod
    def error(cls, message: str, screenshot_path: Optional[str] = None) -> "Outcome":
        return cls(success=False, status=AttemptStatus.ERROR, message=message, screenshot_path=screenshot_path)
