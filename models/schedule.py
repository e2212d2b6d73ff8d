"""Scan schedule model.

One row per user (global, watch_target_id is None) or per watch target.
The last-run markers are the only idempotence state: the scheduler compares
against them and never against process memory.
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from models.scan import new_id
from models.target import DEFAULT_USER_ID


class Schedule(BaseModel):
    """Daily and weekly scan cadence.

    Attributes:
        timezone: IANA timezone the hours/minutes are expressed in
        weekly_day_of_week: 0=Sunday ... 6=Saturday
        weekdays_only: Skip the daily scan on Saturday and Sunday
        last_daily_run_date: Local YYYY-MM-DD of the last daily trigger
        last_weekly_run_date: Local YYYY-MM-DD of the Monday of the last weekly trigger's week
    """

    id: str = Field(default_factory=new_id)
    user_id: str = DEFAULT_USER_ID
    watch_target_id: str | None = None
    timezone: str = "UTC"
    daily_enabled: bool = False
    daily_hour: int = Field(default=9, ge=0, le=23)
    daily_minute: int = Field(default=0, ge=0, le=59)
    weekly_enabled: bool = False
    weekly_day_of_week: int = Field(default=1, ge=0, le=6)
    weekly_hour: int = Field(default=9, ge=0, le=23)
    weekly_minute: int = Field(default=0, ge=0, le=59)
    weekdays_only: bool = False
    last_daily_run_date: str | None = None
    last_weekly_run_date: str | None = None
    updated_at: int = 0

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        value = value.strip() or "UTC"
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{value}'")
        return value

    @property
    def is_global(self) -> bool:
        return self.watch_target_id is None
