"""Request models shared across API route modules."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from garden_watch.models import UtcDatetime


class PresenceRequest(BaseModel):
    subject_id: str
    is_present: bool
    timestamp: UtcDatetime | None = None


class SampleRequest(BaseModel):
    """An already aggregated activity value for the slot containing ``timestamp``."""
    timestamp: UtcDatetime
    value: float = Field(ge=0)


class FlushRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    hour_of_day: int = Field(ge=0, le=23)


class ScheduleRequest(BaseModel):
    task_id: str
    cadence_days: int
    time_of_day: str  # "HH:MM"
    start: date | None = None


class TimestampRequest(BaseModel):
    """Optional event time for fire / acknowledge; defaults to now (UTC)."""
    timestamp: UtcDatetime | None = None
