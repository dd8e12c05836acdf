"""Shared Pydantic models used across the engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

# ── Enums ─────────────────────────────────────────────────────


class AggregationPolicy(str, Enum):
    """How a slot's presence readings fold into one activity value."""

    POSITIVE_COUNT = "positive_count"
    SECONDS_PRESENT = "seconds_present"
    PRESENT_FRACTION = "present_fraction"


class AlertState(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    ALERTING = "alerting"


class InteractionMode(str, Enum):
    """Behaviour of the owl device towards the subject."""

    NORMAL = "normal"
    WELLNESS_CHECK = "wellness_check"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EventKind(str, Enum):
    """Externally visible transitions."""

    ALERT_RAISED = "alert_raised"
    ALERT_CLEARED = "alert_cleared"
    WELLNESS_CHECK_ENTERED = "wellness_check_entered"
    WELLNESS_CHECK_EXITED = "wellness_check_exited"


class Profile(str, Enum):
    """Daily-pattern profile: the pinned healthy reference or recent behaviour."""

    HEALTHY = "healthy"
    CURRENT = "current"


class ScorePolicy(str, Enum):
    """Which scores drive the alert policy."""

    DAILY = "daily"
    SLOT = "slot"


# ── Timestamps ────────────────────────────────────────────────


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


# ── Observations ──────────────────────────────────────────────


class PresenceEvent(BaseModel):
    """One fused presence reading from the sensing layer."""

    subject_id: str
    timestamp: UtcDatetime
    is_present: bool


class ActivitySample(BaseModel):
    """Aggregated activity for one (day-of-week, hour-of-day) slot.

    ``day_of_week`` follows :meth:`datetime.weekday` (Monday is 0).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str
    day_of_week: int = Field(ge=0, le=6)
    hour_of_day: int = Field(ge=0, le=23)
    timestamp: UtcDatetime
    value: float = Field(ge=0)

    @classmethod
    def at(cls, subject_id: str, timestamp: datetime, value: float) -> ActivitySample:
        """Build a sample whose slot is derived from *timestamp* in UTC."""
        timestamp = as_utc(timestamp)
        return cls(
            subject_id=subject_id,
            day_of_week=timestamp.weekday(),
            hour_of_day=timestamp.hour,
            timestamp=timestamp,
            value=value,
        )

    @property
    def slot(self) -> tuple[int, int]:
        return self.day_of_week, self.hour_of_day


# ── Baselines & scores ────────────────────────────────────────


class SlotBaseline(BaseModel):
    """Expected activity and natural spread for one slot."""

    model_config = ConfigDict(frozen=True)

    day_of_week: int = Field(ge=0, le=6)
    hour_of_day: int = Field(ge=0, le=23)
    mean: float
    variability: float = Field(ge=0)
    sample_count: int = Field(ge=0)


class InsufficientData(BaseModel):
    """Returned instead of a baseline or score when history is too thin.

    Callers must handle this distinctly from a zero score.
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    day_of_week: int | None = None
    hour_of_day: int | None = None
    sample_count: int = 0
    required: int = 1
    reason: str = "insufficient_data"


class DailyBaseline(BaseModel):
    """Expected daily total and its spread, pooled over the days before *day*."""

    model_config = ConfigDict(frozen=True)

    day: date
    mean: float
    variability: float = Field(ge=0)
    day_count: int = Field(ge=0)


class DeviationRecord(BaseModel):
    """Variability-normalised distance of a sample from its baseline.

    Day-level records, scored from a whole day's total, carry no
    ``hour_of_day``.
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    day_of_week: int = Field(ge=0, le=6)
    hour_of_day: int | None = Field(default=None, ge=0, le=23)
    timestamp: UtcDatetime
    score: float = Field(ge=0)
    value: float
    baseline_mean: float
    baseline_variability: float


class StateTransition(BaseModel):
    """Audit entry for one alert-policy state change."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    from_state: AlertState
    to_state: AlertState
    timestamp: UtcDatetime
    exceeding: int
    window_length: int


# ── Reminders ─────────────────────────────────────────────────


class ReminderSchedule(BaseModel):
    """A recurring plant-care reminder.

    Fires on every day where ``(day - anchor).days % cadence_days == 0``.
    """

    task_id: str
    cadence_days: int
    time_of_day: time
    anchor: date


class ReminderEvent(BaseModel):
    """A fired reminder and, once known, how long the subject took to respond."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    scheduled_time: UtcDatetime
    fired_time: UtcDatetime
    response_time: timedelta | None = None
    acknowledged: bool = False
    timed_out: bool = False

    @property
    def pending(self) -> bool:
        return not self.acknowledged and not self.timed_out

    @property
    def response_minutes(self) -> float | None:
        if self.response_time is None:
            return None
        return self.response_time.total_seconds() / 60

    @property
    def acknowledged_at(self) -> datetime | None:
        if not self.acknowledged or self.response_time is None:
            return None
        return self.fired_time + self.response_time


class NoPendingReminder(BaseModel):
    """Acknowledgement received while nothing was outstanding for the task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    timestamp: UtcDatetime
    reason: str = "nothing_pending"


class ResponseBaseline(BaseModel):
    """Personal reference for reminder response times, in minutes."""

    model_config = ConfigDict(frozen=True)

    mean: float
    variability: float = Field(ge=0)
    sample_count: int = Field(ge=0)


# ── Outbound events ───────────────────────────────────────────


class AlertEvent(BaseModel):
    """An event surfaced to collaborators (notifications, the owl device)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str
    kind: EventKind
    severity: AlertSeverity
    message: str
    timestamp: UtcDatetime
    alert_state: AlertState | None = None
    interaction_mode: InteractionMode | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── View rows ─────────────────────────────────────────────────
# Serialised with the camelCase keys the garden-watch client reads.


class ActivityHistoryEntry(BaseModel):
    day: str
    actual_activity: float = Field(serialization_alias="actualActivity")
    baseline_activity: float | None = Field(default=None, serialization_alias="baselineActivity")
    deviation_score: float | None = Field(default=None, serialization_alias="deviationScore")
    alert: bool = False


class DailyPatternEntry(BaseModel):
    hour: str
    activity: float | None = None
    expected_activity: float | None = Field(default=None, serialization_alias="expectedActivity")


class WeeklyTaskEntry(BaseModel):
    day: str
    tasks_completed: float = Field(serialization_alias="tasksCompleted")
    garden_time: float = Field(serialization_alias="gardenTime")


class ReminderHistoryEntry(BaseModel):
    week: str
    response_time: float = Field(serialization_alias="responseTime")
    alert: bool = False
