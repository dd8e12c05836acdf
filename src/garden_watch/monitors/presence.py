"""Presence aggregation — fold raw presence readings into hourly activity samples.

The sensing layer delivers one fused boolean per discrete interval.  Each
reading is placed into its hourly slot and, inside the slot, into a
fixed-length sub-interval.  Duplicate readings for the same sub-interval
collapse, so the aggregate does not depend on the sensor's report rate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from garden_watch.errors import ConfigurationError, require_positive
from garden_watch.models import ActivitySample, AggregationPolicy, as_utc

logger = structlog.get_logger(__name__)

SLOT_LENGTH = timedelta(hours=1)
_SLOT_SECONDS = int(SLOT_LENGTH.total_seconds())


def slot_start(timestamp: datetime) -> datetime:
    """Return the start of the hourly slot containing *timestamp*."""
    return timestamp.replace(minute=0, second=0, microsecond=0)


@dataclass
class _SlotBucket:
    start: datetime
    observed: set[int] = field(default_factory=set)
    positive: set[int] = field(default_factory=set)
    readings: int = 0


class PresenceAggregator:
    """Accumulate presence readings and emit one :class:`ActivitySample` per slot.

    Parameters
    ----------
    policy : AggregationPolicy
        ``positive_count`` (default) counts sub-intervals with a positive
        reading, ``seconds_present`` converts that count to seconds and
        ``present_fraction`` divides it by the observed sub-intervals.
    sub_interval_seconds : int
        Sub-interval length; must divide the hour evenly.
    """

    def __init__(
        self,
        policy: AggregationPolicy = AggregationPolicy.POSITIVE_COUNT,
        sub_interval_seconds: int = 60,
    ) -> None:
        require_positive("sub_interval_seconds", sub_interval_seconds)
        if _SLOT_SECONDS % sub_interval_seconds:
            raise ConfigurationError(
                f"sub_interval_seconds must divide {_SLOT_SECONDS}, got {sub_interval_seconds}"
            )
        self._policy = AggregationPolicy(policy)
        self._sub_interval = sub_interval_seconds
        self._buckets: dict[str, dict[datetime, _SlotBucket]] = {}

    @property
    def policy(self) -> AggregationPolicy:
        return self._policy

    # ── Producer side ─────────────────────────────────────────

    def record_presence(self, subject_id: str, timestamp: datetime, is_present: bool) -> None:
        timestamp = as_utc(timestamp)
        start = slot_start(timestamp)
        buckets = self._buckets.setdefault(subject_id, {})
        bucket = buckets.get(start)
        if bucket is None:
            bucket = buckets[start] = _SlotBucket(start=start)

        index = int((timestamp - start).total_seconds()) // self._sub_interval
        bucket.observed.add(index)
        bucket.readings += 1
        if is_present:
            bucket.positive.add(index)

    # ── Slot closing ──────────────────────────────────────────

    def flush_slot(self, subject_id: str, day_of_week: int, hour_of_day: int) -> ActivitySample | None:
        """Close the oldest pending bucket for the given slot.

        Returns ``None`` when the slot saw no readings at all; an empty
        slot must not enter the baseline as a zero.
        """
        buckets = self._buckets.get(subject_id, {})
        matches = sorted(
            start for start in buckets
            if start.weekday() == day_of_week and start.hour == hour_of_day
        )
        if not matches:
            logger.debug(
                "presence.empty_slot",
                subject=subject_id,
                day_of_week=day_of_week,
                hour_of_day=hour_of_day,
            )
            return None
        return self._to_sample(subject_id, buckets.pop(matches[0]))

    def flush_until(self, subject_id: str, now: datetime) -> list[ActivitySample]:
        """Close every bucket whose hour ended at or before *now*, oldest first."""
        now = as_utc(now)
        buckets = self._buckets.get(subject_id, {})
        closed = sorted(start for start in buckets if start + SLOT_LENGTH <= now)
        return [self._to_sample(subject_id, buckets.pop(start)) for start in closed]

    def pending_slots(self, subject_id: str) -> list[datetime]:
        return sorted(self._buckets.get(subject_id, {}))

    def discard(self, subject_id: str) -> None:
        self._buckets.pop(subject_id, None)

    # ── Units ─────────────────────────────────────────────────

    def to_minutes(self, value: float) -> float:
        """Convert a sample value produced by this aggregator into minutes."""
        if self._policy is AggregationPolicy.POSITIVE_COUNT:
            return value * self._sub_interval / 60
        if self._policy is AggregationPolicy.SECONDS_PRESENT:
            return value / 60
        return value * _SLOT_SECONDS / 60

    # ── Internals ─────────────────────────────────────────────

    def _to_sample(self, subject_id: str, bucket: _SlotBucket) -> ActivitySample:
        positive = len(bucket.positive)
        if self._policy is AggregationPolicy.POSITIVE_COUNT:
            value = float(positive)
        elif self._policy is AggregationPolicy.SECONDS_PRESENT:
            value = float(positive * self._sub_interval)
        else:
            value = positive / len(bucket.observed)

        sample = ActivitySample.at(subject_id, bucket.start, value)
        logger.debug(
            "presence.slot_flushed",
            subject=subject_id,
            slot=bucket.start.isoformat(),
            readings=bucket.readings,
            value=value,
        )
        return sample
