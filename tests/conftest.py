"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from garden_watch.models import ActivitySample, DeviationRecord
from garden_watch.monitors.baseline import BaselineEstimator
from garden_watch.monitors.subject import SubjectMonitor
from garden_watch.notifications.handlers import NotificationDispatcher

# 2024-01-01 is a Monday.
START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

# Daily 09:00 activity for the first two weeks: around 80 with natural
# day-to-day variation, no two weeks alike.
HEALTHY_WEEKS = [
    80.0, 86.0, 74.0, 82.0, 78.0, 88.0, 72.0,
    82.0, 84.0, 76.0, 80.0, 79.0, 86.0, 75.0,
]

# Minutes to acknowledge a daily reminder: two prompt weeks, then two slow ones.
PROMPT_WEEKS = [10, 12, 15, 25, 14, 22, 25, 16, 19, 21, 13, 24, 17, 23]
SLOW_WEEKS = [28, 35, 40, 38, 45, 50, 42, 55, 48, 60, 52, 58, 47, 53]


def declining_value(day: int) -> float:
    """Activity on *day* (1-based) of the four-week decline scenario."""
    if day <= 14:
        return HEALTHY_WEEKS[day - 1]
    return 80.0 * (1 - 0.8 * (day - 14) / 14)


def end_of_day(day: int) -> datetime:
    """Midnight after *day* (1-based) of the scenario."""
    return START.replace(hour=0) + timedelta(days=day)


def sample(subject_id: str, timestamp: datetime, value: float) -> ActivitySample:
    return ActivitySample.at(subject_id, timestamp, value)


def record(score: float, index: int = 0, subject_id: str = "garden") -> DeviationRecord:
    """A scored record ``index`` hours after :data:`START`."""
    ts = START + timedelta(hours=index)
    return DeviationRecord(
        subject_id=subject_id,
        day_of_week=ts.weekday(),
        hour_of_day=ts.hour,
        timestamp=ts,
        score=score,
        value=0.0,
        baseline_mean=0.0,
        baseline_variability=0.0,
    )


@pytest.fixture
def estimator() -> BaselineEstimator:
    return BaselineEstimator("garden")


@pytest.fixture
def monitor() -> SubjectMonitor:
    return SubjectMonitor("garden")


@pytest.fixture
def declined_monitor() -> SubjectMonitor:
    """Monitor fed 28 days of 09:00 samples: two healthy weeks, then a decline.

    Every day is closed at the following midnight.
    """
    m = SubjectMonitor("garden")
    for day in range(1, 29):
        m.process_sample(sample("garden", START + timedelta(days=day - 1), declining_value(day)))
        m.close_days(end_of_day(day))
    return m


@pytest.fixture
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()
