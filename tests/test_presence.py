"""Tests for presence aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from garden_watch.errors import ConfigurationError
from garden_watch.models import AggregationPolicy, PresenceEvent
from garden_watch.monitors.presence import PresenceAggregator, slot_start

MONDAY_10 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _feed(aggregator: PresenceAggregator) -> None:
    # Two readings in the first minute collapse; minute 1 is absent.
    aggregator.record_presence("garden", MONDAY_10, True)
    aggregator.record_presence("garden", MONDAY_10.replace(second=30), True)
    aggregator.record_presence("garden", MONDAY_10.replace(minute=1), False)
    aggregator.record_presence("garden", MONDAY_10.replace(minute=2), True)


class TestPresenceAggregator:
    def test_positive_count_counts_distinct_sub_intervals(self):
        aggregator = PresenceAggregator()
        _feed(aggregator)
        s = aggregator.flush_slot("garden", 0, 10)
        assert s is not None
        assert s.value == 2.0
        assert (s.day_of_week, s.hour_of_day) == (0, 10)
        assert s.timestamp == MONDAY_10

    def test_seconds_present(self):
        aggregator = PresenceAggregator(AggregationPolicy.SECONDS_PRESENT)
        _feed(aggregator)
        assert aggregator.flush_slot("garden", 0, 10).value == 120.0

    def test_present_fraction(self):
        aggregator = PresenceAggregator(AggregationPolicy.PRESENT_FRACTION)
        _feed(aggregator)
        assert aggregator.flush_slot("garden", 0, 10).value == pytest.approx(2 / 3)

    def test_report_rate_does_not_change_value(self):
        sparse = PresenceAggregator()
        dense = PresenceAggregator()
        for minute in range(5):
            sparse.record_presence("garden", MONDAY_10.replace(minute=minute), True)
            for second in range(0, 60, 5):
                dense.record_presence("garden", MONDAY_10.replace(minute=minute, second=second), True)
        assert sparse.flush_slot("garden", 0, 10).value == dense.flush_slot("garden", 0, 10).value == 5.0

    def test_empty_slot_yields_nothing(self):
        aggregator = PresenceAggregator()
        assert aggregator.flush_slot("garden", 3, 14) is None

    def test_flush_consumes_bucket(self):
        aggregator = PresenceAggregator()
        _feed(aggregator)
        assert aggregator.flush_slot("garden", 0, 10) is not None
        assert aggregator.flush_slot("garden", 0, 10) is None

    def test_subjects_are_independent(self):
        aggregator = PresenceAggregator()
        aggregator.record_presence("a", MONDAY_10, True)
        aggregator.record_presence("b", MONDAY_10, False)
        assert aggregator.flush_slot("a", 0, 10).value == 1.0
        assert aggregator.flush_slot("b", 0, 10).value == 0.0

    def test_flush_until_closes_only_ended_slots(self):
        aggregator = PresenceAggregator()
        aggregator.record_presence("garden", MONDAY_10.replace(minute=5), True)
        aggregator.record_presence("garden", MONDAY_10.replace(hour=11, minute=5), True)

        closed = aggregator.flush_until("garden", MONDAY_10.replace(hour=11, minute=30))
        assert [s.hour_of_day for s in closed] == [10]
        assert aggregator.pending_slots("garden") == [MONDAY_10.replace(hour=11)]

    def test_to_minutes(self):
        assert PresenceAggregator().to_minutes(30) == 30
        assert PresenceAggregator(sub_interval_seconds=300).to_minutes(3) == 15
        assert PresenceAggregator(AggregationPolicy.SECONDS_PRESENT).to_minutes(600) == 10
        assert PresenceAggregator(AggregationPolicy.PRESENT_FRACTION).to_minutes(0.5) == 30

    @pytest.mark.parametrize("seconds", [0, -60, 7])
    def test_rejects_bad_sub_interval(self, seconds):
        with pytest.raises(ConfigurationError):
            PresenceAggregator(sub_interval_seconds=seconds)


def test_slot_start_truncates_to_hour():
    assert slot_start(datetime(2024, 1, 1, 10, 59, 59, 999, tzinfo=timezone.utc)) == MONDAY_10


def test_naive_readings_are_taken_as_utc():
    aggregator = PresenceAggregator()
    aggregator.record_presence("garden", datetime(2024, 1, 1, 10, 5), True)
    aggregator.record_presence("garden", datetime(2024, 1, 1, 12, 6, tzinfo=timezone(timedelta(hours=2))), True)

    (s,) = aggregator.flush_until("garden", MONDAY_10.replace(hour=11))
    assert s.timestamp == MONDAY_10
    assert s.value == 2.0


def test_presence_event_normalises_to_utc():
    event = PresenceEvent(subject_id="garden", timestamp="2024-01-01T11:00:00+01:00", is_present=True)
    assert event.timestamp == MONDAY_10
    assert event.timestamp.utcoffset() == timedelta(0)
    assert PresenceEvent(subject_id="garden", timestamp=datetime(2024, 1, 1, 10), is_present=True).timestamp == MONDAY_10
