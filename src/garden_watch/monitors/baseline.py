"""Baseline estimation — per-slot mean and spread over a rolling window.

Each subject has 168 slots (day-of-week × hour-of-day).  A slot's baseline
is the arithmetic mean and population standard deviation of the samples
retained for it.  Baselines are always rebuilt from the retained window,
never patched, so eager and batched recomputation agree exactly.
"""

from __future__ import annotations

import bisect
import statistics
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Literal

import structlog

from garden_watch.errors import ConfigurationError, require_duration, require_positive
from garden_watch.models import ActivitySample, DailyBaseline, InsufficientData, SlotBaseline, as_utc

logger = structlog.get_logger(__name__)

Slot = tuple[int, int]
RecomputePolicy = Literal["eager", "batched"]

DEFAULT_WINDOW = timedelta(weeks=2)
DEFAULT_RECOMPUTE_EVERY = timedelta(days=1)
DEFAULT_MIN_DAYS = 7


def summarise_slot(slot: Slot, values: list[float]) -> SlotBaseline:
    """Mean and population standard deviation of one slot's values."""
    day_of_week, hour_of_day = slot
    return SlotBaseline(
        day_of_week=day_of_week,
        hour_of_day=hour_of_day,
        mean=statistics.fmean(values),
        variability=statistics.pstdev(values) if len(values) > 1 else 0.0,
        sample_count=len(values),
    )


def _timestamp(sample: ActivitySample) -> datetime:
    return sample.timestamp


class BaselineEstimator:
    """Maintain the retained history and slot baselines of one subject.

    Parameters
    ----------
    subject_id : str
        Owner of every ingested sample.
    window : timedelta
        Length of the retained history (default two weeks).
    min_samples : int
        Samples a slot needs before its baseline is usable.
    min_days : int
        Earlier days a daily baseline needs before it is usable.
    recompute : ``"eager"`` | ``"batched"``
        Rebuild on every ingest, or only when :meth:`recompute` /
        :meth:`maybe_recompute` is called.
    recompute_every : timedelta
        Cadence used by :meth:`maybe_recompute` in batched mode.
    auto_pin_reference : bool
        Pin the snapshot as the healthy reference just before the first
        eviction, i.e. once the first full window has been seen.
    """

    def __init__(
        self,
        subject_id: str,
        *,
        window: timedelta = DEFAULT_WINDOW,
        min_samples: int = 1,
        min_days: int = DEFAULT_MIN_DAYS,
        recompute: RecomputePolicy = "eager",
        recompute_every: timedelta = DEFAULT_RECOMPUTE_EVERY,
        auto_pin_reference: bool = True,
    ) -> None:
        require_duration("window", window)
        require_duration("recompute_every", recompute_every)
        require_positive("min_samples", min_samples)
        require_positive("min_days", min_days)
        if recompute not in ("eager", "batched"):
            raise ConfigurationError(f"recompute must be 'eager' or 'batched', got {recompute!r}")

        self.subject_id = subject_id
        self._window = window
        self._min_samples = min_samples
        self._min_days = min_days
        self._policy: RecomputePolicy = recompute
        self._recompute_every = recompute_every
        self._auto_pin = auto_pin_reference

        self._samples: list[ActivitySample] = []  # sorted by timestamp
        self._baselines: dict[Slot, SlotBaseline] = {}
        self._reference: dict[Slot, SlotBaseline] | None = None
        self._reference_totals: dict[date, float] | None = None
        self._last_recompute: datetime | None = None

    # ── Ingestion ─────────────────────────────────────────────

    def ingest(self, sample: ActivitySample) -> bool:
        """Add *sample* to the retained history and evict expired samples.

        Returns ``False`` when the sample is already older than the window
        and was dropped.
        """
        if sample.subject_id != self.subject_id:
            raise ValueError(
                f"sample for {sample.subject_id!r} ingested by estimator of {self.subject_id!r}"
            )

        newest = max(sample.timestamp, self._samples[-1].timestamp) if self._samples else sample.timestamp
        cutoff = newest - self._window
        if sample.timestamp <= cutoff:
            logger.warning(
                "baseline.sample_too_old",
                subject=self.subject_id,
                timestamp=sample.timestamp.isoformat(),
            )
            return False

        # The reference is the first full window, before the new sample joins it.
        if (
            self._auto_pin
            and self._reference is None
            and self._baselines
            and self._samples
            and self._samples[0].timestamp <= cutoff
        ):
            self.pin_reference()

        bisect.insort(self._samples, sample, key=_timestamp)
        self._evict(cutoff)

        if self._policy == "eager":
            self.recompute()
        return True

    def _evict(self, cutoff: datetime) -> None:
        expired = bisect.bisect_right(self._samples, cutoff, key=_timestamp)
        if not expired:
            return
        del self._samples[:expired]
        logger.debug("baseline.evicted", subject=self.subject_id, count=expired)

    # ── Recomputation ─────────────────────────────────────────

    def recompute(self, now: datetime | None = None) -> int:
        """Rebuild every slot baseline from the retained window.

        The new snapshot replaces the old one in a single assignment so
        concurrent readers never observe a partially built set.  Returns
        the number of slots with a baseline.
        """
        grouped: dict[Slot, list[float]] = defaultdict(list)
        for sample in self._samples:
            grouped[sample.slot].append(sample.value)

        self._baselines = {slot: summarise_slot(slot, values) for slot, values in grouped.items()}
        if now is not None:
            self._last_recompute = as_utc(now)
        else:
            self._last_recompute = self._samples[-1].timestamp if self._samples else None
        logger.debug(
            "baseline.recomputed",
            subject=self.subject_id,
            slots=len(self._baselines),
            samples=len(self._samples),
        )
        return len(self._baselines)

    def recompute_due(self, now: datetime) -> bool:
        if self._last_recompute is None:
            return True
        return as_utc(now) - self._last_recompute >= self._recompute_every

    def maybe_recompute(self, now: datetime) -> bool:
        """Recompute when the batched cadence has elapsed.  Returns ``True`` if it ran."""
        if self._policy == "eager" or not self.recompute_due(now):
            return False
        self.recompute(now)
        return True

    # ── Queries ───────────────────────────────────────────────

    def get_baseline(
        self, subject_id: str, day_of_week: int, hour_of_day: int,
    ) -> SlotBaseline | InsufficientData:
        if subject_id != self.subject_id:
            raise ValueError(f"estimator of {self.subject_id!r} asked about {subject_id!r}")

        baseline = self._baselines.get((day_of_week, hour_of_day))
        count = baseline.sample_count if baseline else 0
        if baseline is None or count < self._min_samples:
            return InsufficientData(
                subject_id=subject_id,
                day_of_week=day_of_week,
                hour_of_day=hour_of_day,
                sample_count=count,
                required=self._min_samples,
            )
        return baseline

    def daily_totals(self, before: date | None = None) -> dict[date, float]:
        """Sum of retained sample values per UTC day, oldest first."""
        totals: dict[date, float] = {}
        for sample in self._samples:
            day = sample.timestamp.date()
            if before is not None and day >= before:
                break
            totals[day] = totals.get(day, 0.0) + sample.value
        return totals

    def daily_baseline(self, day: date) -> DailyBaseline | InsufficientData:
        """Mean and population spread of the daily totals retained before *day*.

        Days on which nothing was recorded inside the window are not
        counted.
        """
        totals = list(self.daily_totals(before=day).values())
        if len(totals) < self._min_days:
            return InsufficientData(
                subject_id=self.subject_id,
                day_of_week=day.weekday(),
                sample_count=len(totals),
                required=self._min_days,
                reason="insufficient_daily_history",
            )
        return DailyBaseline(
            day=day,
            mean=statistics.fmean(totals),
            variability=statistics.pstdev(totals) if len(totals) > 1 else 0.0,
            day_count=len(totals),
        )

    def baselines(self) -> list[SlotBaseline]:
        """Current snapshot, ordered by slot."""
        snapshot = self._baselines
        return [snapshot[slot] for slot in sorted(snapshot)]

    def retained_samples(self) -> list[ActivitySample]:
        return list(self._samples)

    @property
    def policy(self) -> RecomputePolicy:
        return self._policy

    @property
    def window(self) -> timedelta:
        return self._window

    @property
    def last_recompute(self) -> datetime | None:
        return self._last_recompute

    # ── Healthy reference ─────────────────────────────────────

    def pin_reference(self) -> int:
        """Keep the current snapshot as the healthy reference profile."""
        self._reference = dict(self._baselines)
        self._reference_totals = self.daily_totals()
        logger.info("baseline.reference_pinned", subject=self.subject_id, slots=len(self._reference))
        return len(self._reference)

    def reference_baselines(self) -> list[SlotBaseline] | None:
        if self._reference is None:
            return None
        return [self._reference[slot] for slot in sorted(self._reference)]

    def reference_totals(self) -> dict[date, float] | None:
        """Daily totals of the window that was pinned as the reference."""
        return None if self._reference_totals is None else dict(self._reference_totals)

    @property
    def reference_period(self) -> tuple[date, date] | None:
        """First and last day covered by the pinned reference."""
        if not self._reference_totals:
            return None
        days = list(self._reference_totals)
        return days[0], days[-1]

    def clear(self) -> None:
        self._samples.clear()
        self._baselines = {}
        self._reference = None
        self._reference_totals = None
        self._last_recompute = None
