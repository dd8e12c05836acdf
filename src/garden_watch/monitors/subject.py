"""Per-subject monitor — owns every component for one subject behind one lock.

Subjects never share mutable state.  Within a subject, presence readings,
slot flushes, sample processing, recomputation and reminder handling all
run under the same re-entrant lock, which keeps alert-policy evaluation in
arrival order.

Under the default ``daily`` score policy the alert policy sees one score per
day: each finished day's total activity against the mean and spread of the
daily totals retained before it.  A day finishes when a sample for a later
day arrives or when :meth:`SubjectMonitor.close_days` passes its end.  The
``slot`` policy feeds every hourly slot score to the alert policy instead.
"""

from __future__ import annotations

import threading
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, Callable

from garden_watch.logger import subject_logger
from garden_watch.models import (
    ActivityHistoryEntry,
    ActivitySample,
    AlertEvent,
    AlertState,
    DailyPatternEntry,
    DeviationRecord,
    InsufficientData,
    InteractionMode,
    NoPendingReminder,
    Profile,
    ReminderEvent,
    ReminderHistoryEntry,
    ReminderSchedule,
    ScorePolicy,
    SlotBaseline,
    WeeklyTaskEntry,
    as_utc,
    utc_now,
)
from garden_watch.monitors.alerts import AlertPolicyEngine
from garden_watch.monitors.baseline import BaselineEstimator
from garden_watch.monitors.deviation import DEFAULT_EPSILON, DeviationScorer
from garden_watch.monitors.presence import PresenceAggregator
from garden_watch.monitors.reminders import ReminderResponseMonitor
from garden_watch.reports import views

if TYPE_CHECKING:
    from garden_watch.config import Settings

EventListener = Callable[[AlertEvent], None]

DEFAULT_HISTORY_DAYS = 28
_MAX_EVENTS = 500


@dataclass
class DaySummary:
    """Rollup of one UTC calendar day, in sample units.

    ``expected`` and ``scores`` come from slot scoring.  ``baseline`` and
    ``score`` are filled in when the day is closed and scored as a whole.
    """

    day: date
    actual: float = 0.0
    expected: float = 0.0
    samples: int = 0
    scores: list[float] = field(default_factory=list)
    alert: bool = False
    closed: bool = False
    baseline: float | None = None
    score: float | None = None


class SubjectMonitor:
    """Monitoring state for one subject.

    Integration::

        monitor = SubjectMonitor.from_settings("garden", settings)
        monitor.record_presence(ts, True)
        ...
        monitor.close_slots(now)
        monitor.close_days(now)
        monitor.activity_history()
    """

    def __init__(
        self,
        subject_id: str,
        *,
        aggregator: PresenceAggregator | None = None,
        estimator: BaselineEstimator | None = None,
        alert_engine: AlertPolicyEngine | None = None,
        reminders: ReminderResponseMonitor | None = None,
        epsilon: float = DEFAULT_EPSILON,
        history_days: int = DEFAULT_HISTORY_DAYS,
        score_policy: ScorePolicy = ScorePolicy.DAILY,
    ) -> None:
        self.subject_id = subject_id
        self.score_policy = ScorePolicy(score_policy)
        self._log = subject_logger(__name__, subject_id)
        self._lock = threading.RLock()

        self.aggregator = aggregator or PresenceAggregator()
        self.estimator = estimator or BaselineEstimator(subject_id)
        self.scorer = DeviationScorer(self.estimator, epsilon=epsilon)
        self.alert_engine = alert_engine or AlertPolicyEngine(subject_id)
        self.reminders = reminders or ReminderResponseMonitor(subject_id)
        self.reminders.on_event = self._emit

        self._history_days = history_days
        self._days: OrderedDict[date, DaySummary] = OrderedDict()
        self._reference_days: dict[date, tuple[float, int]] | None = None
        self._events: deque[AlertEvent] = deque(maxlen=_MAX_EVENTS)
        self._listeners: list[EventListener] = []

    @classmethod
    def from_settings(cls, subject_id: str, settings: Settings) -> SubjectMonitor:
        """Build a monitor whose components follow *settings*."""
        return cls(
            subject_id,
            aggregator=PresenceAggregator(
                policy=settings.aggregation_policy,
                sub_interval_seconds=settings.sub_interval_seconds,
            ),
            estimator=BaselineEstimator(
                subject_id,
                window=settings.baseline_window,
                min_samples=settings.baseline_min_samples,
                min_days=settings.baseline_min_days,
                recompute=settings.baseline_recompute,
                recompute_every=settings.baseline_recompute_every,
            ),
            alert_engine=AlertPolicyEngine(
                subject_id,
                window_size=settings.alert_window_size,
                threshold=settings.alert_threshold,
                advance_fraction=settings.alert_advance_fraction,
                clear_windows=settings.alert_clear_windows,
            ),
            reminders=ReminderResponseMonitor(
                subject_id,
                threshold=settings.reminder_threshold,
                baseline_multiple=settings.reminder_baseline_multiple,
                baseline_window=settings.reminder_baseline_window,
                min_baseline_samples=settings.reminder_min_baseline_samples,
                recovery_count=settings.reminder_recovery_count,
                timeout=settings.reminder_timeout,
                trailing_count=settings.reminder_trailing_count,
            ),
            epsilon=settings.deviation_epsilon,
            history_days=settings.history_days,
            score_policy=settings.alert_score_policy,
        )

    # ── Listeners ─────────────────────────────────────────────

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: AlertEvent) -> None:
        self._events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                self._log.exception("subject.listener_error", kind=event.kind.value)

    def events(self) -> list[AlertEvent]:
        with self._lock:
            return list(self._events)

    # ── Presence & samples ────────────────────────────────────

    def record_presence(self, timestamp: datetime, is_present: bool) -> None:
        with self._lock:
            self.aggregator.record_presence(self.subject_id, timestamp, is_present)

    def flush_slot(self, day_of_week: int, hour_of_day: int) -> ActivitySample | None:
        """Close one slot and run its sample through the pipeline."""
        with self._lock:
            sample = self.aggregator.flush_slot(self.subject_id, day_of_week, hour_of_day)
            if sample is not None:
                self.process_sample(sample)
            return sample

    def close_slots(self, now: datetime) -> list[ActivitySample]:
        """Close every slot that ended at or before *now*."""
        with self._lock:
            samples = self.aggregator.flush_until(self.subject_id, now)
            for sample in samples:
                self.process_sample(sample)
            return samples

    def process_sample(self, sample: ActivitySample) -> DeviationRecord | InsufficientData:
        """Score *sample* against the current slot baseline, then learn from it.

        Scoring happens before ingestion so a sample is never compared with
        a baseline that already contains it.  A sample the estimator drops
        as too old changes nothing and yields :class:`InsufficientData`.
        """
        if sample.subject_id != self.subject_id:
            raise ValueError(f"sample for {sample.subject_id!r} sent to monitor of {self.subject_id!r}")

        with self._lock:
            if self.score_policy is ScorePolicy.DAILY:
                self._close_days_before(sample.timestamp.date())

            outcome = self.scorer.score(sample)
            if not self.estimator.ingest(sample):
                self._log.warning("subject.sample_rejected", timestamp=sample.timestamp.isoformat())
                return InsufficientData(
                    subject_id=self.subject_id,
                    day_of_week=sample.day_of_week,
                    hour_of_day=sample.hour_of_day,
                    reason="outside_baseline_window",
                )

            if self._reference_days is None and self.estimator.reference_period is not None:
                self._reference_days = self._figures(
                    self.estimator.reference_totals(), *self.estimator.reference_period,
                )

            event = None
            if self.score_policy is ScorePolicy.SLOT:
                event = self.alert_engine.update(outcome)
            self._roll_up(sample, outcome)
            if event is not None:
                self._emit(event)
            return outcome

    def close_days(self, now: datetime) -> list[DeviationRecord | InsufficientData]:
        """Score every tracked day that ended at or before *now*.

        Only used by the ``daily`` score policy; returns the day outcomes
        in calendar order.
        """
        if self.score_policy is not ScorePolicy.DAILY:
            return []
        with self._lock:
            return self._close_days_before(as_utc(now).date())

    def _close_days_before(self, day: date) -> list[DeviationRecord | InsufficientData]:
        outcomes = []
        for summary in list(self._days.values()):
            if summary.day >= day:
                break
            if not summary.closed:
                outcomes.append(self._close_day(summary))
        return outcomes

    def _close_day(self, summary: DaySummary) -> DeviationRecord | InsufficientData:
        outcome = self.scorer.score_day(summary.day, summary.actual)
        event = self.alert_engine.update(outcome)
        summary.closed = True
        if isinstance(outcome, DeviationRecord):
            summary.baseline = outcome.baseline_mean
            summary.score = outcome.score
        summary.alert = self.alert_engine.is_alerting
        self._log.debug(
            "subject.day_closed",
            day=summary.day.isoformat(),
            score=round(summary.score, 3) if summary.score is not None else None,
            state=self.alert_engine.state.value,
        )
        if event is not None:
            self._emit(event)
        return outcome

    def _roll_up(self, sample: ActivitySample, outcome: DeviationRecord | InsufficientData) -> None:
        day = sample.timestamp.date()
        summary = self._days.get(day)
        if summary is None:
            summary = self._days[day] = DaySummary(day=day)
            # Days normally arrive in order; keep the mapping sorted regardless.
            if len(self._days) > 1 and next(reversed(self._days)) != max(self._days):
                self._days = OrderedDict(sorted(self._days.items()))
            while len(self._days) > self._history_days:
                self._days.popitem(last=False)

        summary.actual += sample.value
        summary.samples += 1
        if isinstance(outcome, DeviationRecord):
            summary.expected += outcome.baseline_mean
            summary.scores.append(outcome.score)
        if self.score_policy is ScorePolicy.SLOT:
            summary.alert = self.alert_engine.is_alerting

    def day_summaries(self) -> list[DaySummary]:
        with self._lock:
            return [replace(s, scores=list(s.scores)) for s in self._days.values()]

    def daily_figures(self, start: date, end: date) -> dict[date, tuple[float, int]]:
        """``(activity, acknowledged reminders)`` per tracked day in ``start..end``."""
        with self._lock:
            return self._figures({day: s.actual for day, s in self._days.items()}, start, end)

    def _figures(self, activity: dict[date, float], start: date, end: date) -> dict[date, tuple[float, int]]:
        acks = Counter(
            e.acknowledged_at.date() for e in self.reminders.events() if e.acknowledged_at is not None
        )
        return {
            day: (activity.get(day, 0.0), acks.get(day, 0))
            for day in sorted(set(activity) | set(acks))
            if start <= day <= end
        }

    def reference_days(self) -> dict[date, tuple[float, int]] | None:
        """Figures of the healthy reference period, kept from the moment it was pinned."""
        with self._lock:
            return None if self._reference_days is None else dict(self._reference_days)

    # ── Baselines ─────────────────────────────────────────────

    def recompute_baselines(self, now: datetime | None = None, *, force: bool = True) -> bool:
        """Rebuild baselines now, or only when the batched cadence is due."""
        with self._lock:
            if force:
                self.estimator.recompute(now)
                return True
            return self.estimator.maybe_recompute(now or utc_now())

    def baseline(self, day_of_week: int, hour_of_day: int) -> SlotBaseline | InsufficientData:
        return self.estimator.get_baseline(self.subject_id, day_of_week, hour_of_day)

    # ── Reminders ─────────────────────────────────────────────

    def schedule_reminder(
        self, task_id: str, cadence_days: int, time_of_day: time | str, *, start: date | None = None,
    ) -> ReminderSchedule:
        with self._lock:
            return self.reminders.schedule(task_id, cadence_days, time_of_day, start=start)

    def unschedule_reminder(self, task_id: str) -> bool:
        with self._lock:
            return self.reminders.unschedule(task_id)

    def fire_reminder(self, task_id: str, fired_time: datetime) -> ReminderEvent:
        with self._lock:
            return self.reminders.fire(task_id, fired_time)

    def acknowledge_reminder(self, task_id: str, ack_timestamp: datetime) -> ReminderEvent | NoPendingReminder:
        with self._lock:
            return self.reminders.acknowledge(task_id, ack_timestamp)

    def tick_reminders(self, now: datetime) -> list[ReminderEvent]:
        with self._lock:
            return self.reminders.tick(now)

    # ── State ─────────────────────────────────────────────────

    @property
    def alert_state(self) -> AlertState:
        return self.alert_engine.state

    @property
    def interaction_mode(self) -> InteractionMode:
        return self.reminders.mode

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "subject_id": self.subject_id,
                "alert_state": self.alert_engine.state.value,
                "interaction_mode": self.reminders.mode.value,
                "retained_samples": len(self.estimator.retained_samples()),
                "slots_with_baseline": len(self.estimator.baselines()),
                "reference_pinned": self.estimator.reference_baselines() is not None,
                "score_policy": self.score_policy.value,
                "excluded_outcomes": self.alert_engine.excluded,
                "pending_slots": [s.isoformat() for s in self.aggregator.pending_slots(self.subject_id)],
                "pending_reminders": [e.task_id for e in self.reminders.pending()],
                "days_tracked": len(self._days),
            }

    def stop(self) -> None:
        """Cease monitoring and discard all in-memory history."""
        with self._lock:
            self.aggregator.discard(self.subject_id)
            self.estimator.clear()
            self.alert_engine.reset()
            self.reminders.clear()
            self._days.clear()
            self._reference_days = None
            self._events.clear()
            self._listeners.clear()
            self._log.info("subject.stopped")

    # ── Views ─────────────────────────────────────────────────

    def activity_history(self) -> list[ActivityHistoryEntry]:
        return views.activity_history(self)

    def daily_pattern(self, profile: Profile, day_of_week: int | None = None) -> list[DailyPatternEntry]:
        return views.daily_pattern(self, profile, day_of_week=day_of_week)

    def weekly_task_summary(self, profile: Profile = Profile.CURRENT, today: date | None = None) -> list[WeeklyTaskEntry]:
        return views.weekly_task_summary(self, profile, today=today)

    def reminder_history(self) -> list[ReminderHistoryEntry]:
        return views.reminder_history(self)
