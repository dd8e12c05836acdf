"""Tests for reminder scheduling, response baselines and the interaction mode."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from garden_watch.errors import ConfigurationError
from garden_watch.models import (
    EventKind,
    InsufficientData,
    InteractionMode,
    NoPendingReminder,
    ReminderSchedule,
    ResponseBaseline,
)
from garden_watch.monitors.reminders import ReminderResponseMonitor, latest_due, parse_time_of_day

from conftest import PROMPT_WEEKS, SLOW_WEEKS

TASK = "water-tomatoes"
START_DAY = date(2024, 1, 1)


def _at(day: int, hour: int = 8, minute: int = 0) -> datetime:
    """``day`` is 1-based from 2024-01-01, in UTC."""
    return datetime.combine(START_DAY + timedelta(days=day - 1), time(hour, minute), tzinfo=timezone.utc)


@pytest.fixture
def emitted() -> list:
    return []


@pytest.fixture
def reminders(emitted) -> ReminderResponseMonitor:
    monitor = ReminderResponseMonitor("garden", on_event=emitted.append)
    monitor.schedule(TASK, 1, "08:00", start=START_DAY)
    return monitor


def _respond(monitor: ReminderResponseMonitor, day: int, minutes: int) -> None:
    fired = monitor.tick(_at(day))
    assert len(fired) == 1
    monitor.acknowledge(TASK, fired[0].fired_time + timedelta(minutes=minutes))


class TestSchedule:
    def test_latest_due(self):
        schedule = ReminderSchedule(task_id=TASK, cadence_days=3, time_of_day=time(8), anchor=START_DAY)
        assert latest_due(schedule, _at(5, 9)) == _at(4)
        assert latest_due(schedule, _at(4, 7)) == _at(1)
        assert latest_due(schedule, _at(1, 7)) is None
        assert latest_due(schedule, datetime(2023, 12, 31, 9)) is None

    def test_parse_time_of_day(self):
        assert parse_time_of_day("08:30") == time(8, 30)
        assert parse_time_of_day(time(7)) == time(7)
        with pytest.raises(ConfigurationError):
            parse_time_of_day("25:00")

    @pytest.mark.parametrize("cadence", [0, -2])
    def test_rejects_bad_cadence(self, cadence):
        monitor = ReminderResponseMonitor("garden")
        with pytest.raises(ConfigurationError):
            monitor.schedule(TASK, cadence, "08:00")

    def test_unschedule(self, reminders):
        assert reminders.unschedule(TASK) is True
        assert reminders.unschedule(TASK) is False
        assert reminders.tick(_at(1)) == []


class TestFiring:
    def test_fires_once_per_occurrence(self, reminders):
        assert reminders.tick(_at(1, 7, 59)) == []
        assert len(reminders.tick(_at(1))) == 1
        assert reminders.tick(_at(1, 9)) == []

    def test_missed_occurrences_are_skipped(self, reminders):
        fired = reminders.tick(_at(3, 9))
        assert len(fired) == 1
        assert fired[0].scheduled_time == _at(3)
        assert fired[0].fired_time == _at(3, 9)

    def test_refire_expires_outstanding_reminder(self, reminders):
        first = reminders.fire(TASK, _at(1))
        reminders.fire(TASK, _at(1, 9))
        assert first.timed_out is True
        assert first.response_time == timedelta(hours=2)
        assert len(reminders.pending()) == 1

    def test_timeout_expires_on_tick(self, reminders):
        reminders.tick(_at(1))
        reminders.tick(_at(1, 10))
        (event,) = reminders.events()
        assert event.timed_out is True
        assert not event.pending
        assert reminders.pending() == []


class TestAcknowledge:
    def test_nothing_pending(self, reminders):
        result = reminders.acknowledge(TASK, _at(1))
        assert isinstance(result, NoPendingReminder)
        assert result.reason == "nothing_pending"
        assert reminders.mode is InteractionMode.NORMAL

    def test_response_time(self, reminders):
        reminders.tick(_at(1))
        event = reminders.acknowledge(TASK, _at(1, 8, 12))
        assert event.acknowledged is True
        assert event.response_minutes == 12
        assert event.acknowledged_at == _at(1, 8, 12)
        assert isinstance(reminders.acknowledge(TASK, _at(1, 8, 13)), NoPendingReminder)

    def test_naive_and_offset_timestamps_mix(self, reminders):
        reminders.fire(TASK, datetime(2024, 1, 1, 8, 0))
        event = reminders.acknowledge(TASK, datetime(2024, 1, 1, 9, 12, tzinfo=timezone(timedelta(hours=1))))
        assert event.response_minutes == 12
        assert event.fired_time == _at(1)

    def test_ack_before_fire_rejected(self, reminders):
        reminders.tick(_at(1))
        with pytest.raises(ValueError):
            reminders.acknowledge(TASK, _at(1, 7, 59))


class TestResponseBaseline:
    def test_insufficient_until_three_responses(self, reminders):
        for day, minutes in enumerate(PROMPT_WEEKS[:2], start=1):
            _respond(reminders, day, minutes)
        assert isinstance(reminders.response_baseline(), InsufficientData)

        _respond(reminders, 3, PROMPT_WEEKS[2])
        baseline = reminders.response_baseline()
        assert isinstance(baseline, ResponseBaseline)
        assert baseline.mean == pytest.approx(37 / 3)
        assert baseline.sample_count == 3


class TestInteractionMode:
    def test_four_week_slowdown(self, reminders, emitted):
        modes = []
        for day, minutes in enumerate(PROMPT_WEEKS + SLOW_WEEKS, start=1):
            _respond(reminders, day, minutes)
            modes.append(reminders.mode)

        assert modes[:15] == [InteractionMode.NORMAL] * 15
        assert modes[15:] == [InteractionMode.WELLNESS_CHECK] * 13
        assert [e.kind for e in emitted] == [EventKind.WELLNESS_CHECK_ENTERED]
        assert emitted[0].timestamp == _at(16, 8, 35)

    def test_unanswered_reminder_counts_as_slow(self, reminders, emitted):
        for day, minutes in enumerate(PROMPT_WEEKS[:5], start=1):
            _respond(reminders, day, minutes)
        reminders.tick(_at(6))
        reminders.tick(_at(6, 10))

        assert reminders.mode is InteractionMode.WELLNESS_CHECK
        assert emitted[0].metadata["response_minutes"] == 120.0

    def test_recovers_after_prompt_run(self, reminders, emitted):
        for day, minutes in enumerate(PROMPT_WEEKS + SLOW_WEEKS[:4], start=1):
            _respond(reminders, day, minutes)
        assert reminders.mode is InteractionMode.WELLNESS_CHECK

        _respond(reminders, 19, 10)
        _respond(reminders, 20, 10)
        assert reminders.mode is InteractionMode.WELLNESS_CHECK
        _respond(reminders, 21, 10)
        assert reminders.mode is InteractionMode.NORMAL
        assert [e.kind for e in emitted] == [
            EventKind.WELLNESS_CHECK_ENTERED,
            EventKind.WELLNESS_CHECK_EXITED,
        ]

    def test_slow_relative_to_personal_baseline(self):
        monitor = ReminderResponseMonitor("garden", threshold=timedelta(hours=1))
        monitor.schedule(TASK, 1, "08:00", start=START_DAY)
        for day, minutes in enumerate([5, 6, 4, 5], start=1):
            _respond(monitor, day, minutes)
        assert monitor.mode is InteractionMode.NORMAL

        # Under the absolute threshold but more than 2.5 times the usual five minutes.
        _respond(monitor, 5, 13)
        assert monitor.mode is InteractionMode.WELLNESS_CHECK

    def test_occasional_slower_response_is_not_slow(self, reminders, emitted):
        for day, minutes in enumerate([10, 10, 10, 25, 12, 11, 10], start=1):
            _respond(reminders, day, minutes)
            assert reminders.mode is InteractionMode.NORMAL
        assert emitted == []

    def test_clear_resets_mode(self, reminders):
        reminders.fire(TASK, _at(1))
        reminders.tick(_at(1, 10))
        reminders.clear()
        assert reminders.mode is InteractionMode.NORMAL
        assert reminders.schedules() == []
