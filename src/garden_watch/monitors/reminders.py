"""Reminder-response monitoring and the interaction-mode state machine.

Plant-care reminders fire on a fixed cadence.  The time the subject needs
to acknowledge each one is compared with an absolute threshold and with a
personal baseline of recent response times.  Persistently slow responses
switch the owl into wellness-check mode; a run of prompt responses
switches it back.  A reminder nobody answers counts as the slowest
possible response, never as missing data.
"""

from __future__ import annotations

import statistics
from collections import deque
from datetime import date, datetime, time, timedelta
from typing import Callable

import structlog

from garden_watch.errors import ConfigurationError, require_duration, require_positive
from garden_watch.models import (
    AlertEvent,
    AlertSeverity,
    EventKind,
    InsufficientData,
    InteractionMode,
    NoPendingReminder,
    ReminderEvent,
    ReminderSchedule,
    ResponseBaseline,
    as_utc,
    utc_now,
)

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLD = timedelta(minutes=30)
DEFAULT_TIMEOUT = timedelta(hours=2)
DEFAULT_BASELINE_WINDOW = timedelta(weeks=2)
DEFAULT_HISTORY = timedelta(weeks=4)
DEFAULT_BASELINE_MULTIPLE = 2.5


def parse_time_of_day(value: time | str) -> time:
    """Accept a :class:`time` or an ``HH:MM[:SS]`` string."""
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid time_of_day {value!r}") from exc


def latest_due(schedule: ReminderSchedule, now: datetime) -> datetime | None:
    """Most recent occurrence of *schedule* at or before *now*."""
    day = now.date()
    offset = (day - schedule.anchor).days
    if offset < 0:
        return None
    day -= timedelta(days=offset % schedule.cadence_days)
    scheduled = datetime.combine(day, schedule.time_of_day, tzinfo=now.tzinfo)
    if scheduled > now:
        day -= timedelta(days=schedule.cadence_days)
        if day < schedule.anchor:
            return None
        scheduled = datetime.combine(day, schedule.time_of_day, tzinfo=now.tzinfo)
    return scheduled


class ReminderResponseMonitor:
    """Schedule reminders, measure response latency and drive the interaction mode.

    Parameters
    ----------
    threshold : timedelta
        Absolute response time above which a response is slow.
    baseline_multiple : float
        A response slower than this multiple of the personal mean is slow.
    baseline_window : timedelta
        How far back responses feed the personal baseline.
    min_baseline_samples : int
        Responses needed before the personal baseline is used.
    recovery_count : int
        Consecutive prompt responses that end wellness-check mode.
    timeout : timedelta
        Unacknowledged reminders expire after this and count as this long.
    trailing_count : int
        Responses averaged into the value compared with the thresholds.
    history : timedelta
        Retention for fired reminders and responses.
    on_event : callable, optional
        Receives an :class:`AlertEvent` on every mode change.
    """

    def __init__(
        self,
        subject_id: str,
        *,
        threshold: timedelta = DEFAULT_THRESHOLD,
        baseline_multiple: float = DEFAULT_BASELINE_MULTIPLE,
        baseline_window: timedelta = DEFAULT_BASELINE_WINDOW,
        min_baseline_samples: int = 3,
        recovery_count: int = 3,
        timeout: timedelta = DEFAULT_TIMEOUT,
        trailing_count: int = 1,
        history: timedelta = DEFAULT_HISTORY,
        on_event: Callable[[AlertEvent], None] | None = None,
    ) -> None:
        require_duration("threshold", threshold)
        require_duration("baseline_window", baseline_window)
        require_duration("timeout", timeout)
        require_duration("history", history)
        require_positive("baseline_multiple", baseline_multiple)
        require_positive("min_baseline_samples", min_baseline_samples)
        require_positive("recovery_count", recovery_count)
        require_positive("trailing_count", trailing_count)
        if history < baseline_window:
            raise ConfigurationError("history must cover at least the baseline window")

        self.subject_id = subject_id
        self._threshold = threshold
        self._multiple = baseline_multiple
        self._baseline_window = baseline_window
        self._min_baseline = min_baseline_samples
        self._recovery_count = recovery_count
        self._timeout = timeout
        self._trailing = trailing_count
        self._history = history
        self.on_event = on_event

        self._schedules: dict[str, ReminderSchedule] = {}
        self._last_fired: dict[str, datetime] = {}
        self._pending: dict[str, ReminderEvent] = {}
        self._events: deque[ReminderEvent] = deque()
        self._responses: deque[tuple[datetime, timedelta]] = deque()

        self._mode = InteractionMode.NORMAL
        self._prompt_streak = 0

    # ── Properties ────────────────────────────────────────────

    @property
    def mode(self) -> InteractionMode:
        return self._mode

    @property
    def threshold(self) -> timedelta:
        return self._threshold

    def events(self) -> list[ReminderEvent]:
        return list(self._events)

    def pending(self) -> list[ReminderEvent]:
        return list(self._pending.values())

    # ── Schedules ─────────────────────────────────────────────

    def schedule(
        self,
        task_id: str,
        cadence_days: int,
        time_of_day: time | str,
        *,
        start: date | None = None,
    ) -> ReminderSchedule:
        """Register (or replace) a recurring reminder."""
        if cadence_days < 1:
            raise ConfigurationError(f"cadence_days must be at least 1, got {cadence_days!r}")
        schedule = ReminderSchedule(
            task_id=task_id,
            cadence_days=cadence_days,
            time_of_day=parse_time_of_day(time_of_day),
            anchor=start or utc_now().date(),
        )
        self._schedules[task_id] = schedule
        logger.info(
            "reminders.scheduled",
            subject=self.subject_id,
            task=task_id,
            cadence_days=cadence_days,
            time_of_day=schedule.time_of_day.isoformat(),
        )
        return schedule

    def unschedule(self, task_id: str) -> bool:
        removed = self._schedules.pop(task_id, None) is not None
        self._last_fired.pop(task_id, None)
        return removed

    def schedules(self) -> list[ReminderSchedule]:
        return list(self._schedules.values())

    # ── Clock ─────────────────────────────────────────────────

    def tick(self, now: datetime) -> list[ReminderEvent]:
        """Advance the monitor to *now*: expire stale reminders, fire due ones.

        Only the latest due occurrence of each schedule fires; occurrences
        missed while the clock was stopped are skipped.
        """
        now = as_utc(now)
        for event in list(self._pending.values()):
            if now - event.fired_time >= self._timeout:
                self._expire(event, event.fired_time + self._timeout)

        fired: list[ReminderEvent] = []
        for schedule in self._schedules.values():
            scheduled = latest_due(schedule, now)
            if scheduled is None:
                continue
            last = self._last_fired.get(schedule.task_id)
            if last is not None and scheduled <= last:
                continue
            fired.append(self.fire(schedule.task_id, now, scheduled_time=scheduled))
        return fired

    def fire(
        self, task_id: str, fired_time: datetime, *, scheduled_time: datetime | None = None,
    ) -> ReminderEvent:
        """Fire a reminder now.  An earlier unanswered one for the task expires first."""
        fired_time = as_utc(fired_time)
        previous = self._pending.get(task_id)
        if previous is not None:
            self._expire(previous, fired_time)

        event = ReminderEvent(
            task_id=task_id,
            scheduled_time=scheduled_time or fired_time,
            fired_time=fired_time,
        )
        self._pending[task_id] = event
        self._last_fired[task_id] = event.scheduled_time
        self._events.append(event)
        self._evict(fired_time)
        logger.info("reminders.fired", subject=self.subject_id, task=task_id, fired=fired_time.isoformat())
        return event

    # ── Responses ─────────────────────────────────────────────

    def acknowledge(self, task_id: str, ack_timestamp: datetime) -> ReminderEvent | NoPendingReminder:
        """Record the subject's response to the outstanding reminder for *task_id*."""
        ack_timestamp = as_utc(ack_timestamp)
        event = self._pending.get(task_id)
        if event is None:
            logger.info("reminders.nothing_pending", subject=self.subject_id, task=task_id)
            return NoPendingReminder(task_id=task_id, timestamp=ack_timestamp)
        if ack_timestamp < event.fired_time:
            raise ValueError(
                f"acknowledgement at {ack_timestamp.isoformat()} precedes fire at "
                f"{event.fired_time.isoformat()}"
            )

        del self._pending[task_id]
        event.response_time = ack_timestamp - event.fired_time
        event.acknowledged = True
        logger.info(
            "reminders.acknowledged",
            subject=self.subject_id,
            task=task_id,
            response_minutes=round(event.response_minutes or 0.0, 1),
        )
        self._record_response(ack_timestamp, event.response_time)
        return event

    def _expire(self, event: ReminderEvent, at: datetime) -> None:
        del self._pending[event.task_id]
        event.timed_out = True
        event.response_time = self._timeout
        logger.warning("reminders.unanswered", subject=self.subject_id, task=event.task_id)
        self._record_response(at, self._timeout)

    def _record_response(self, at: datetime, response: timedelta) -> None:
        baseline = self.response_baseline(at)
        self._responses.append((at, response))
        self._evict(at)
        self._evaluate(at, baseline)

    # ── Baseline ──────────────────────────────────────────────

    def response_baseline(self, at: datetime | None = None) -> ResponseBaseline | InsufficientData:
        """Mean and spread (minutes) of responses within the baseline window before *at*."""
        if at is None:
            at = self._responses[-1][0] if self._responses else utc_now()
        at = as_utc(at)
        cutoff = at - self._baseline_window
        minutes = [r.total_seconds() / 60 for t, r in self._responses if cutoff < t <= at]
        if len(minutes) < self._min_baseline:
            return InsufficientData(
                subject_id=self.subject_id,
                sample_count=len(minutes),
                required=self._min_baseline,
                reason="insufficient_response_history",
            )
        return ResponseBaseline(
            mean=statistics.fmean(minutes),
            variability=statistics.pstdev(minutes) if len(minutes) > 1 else 0.0,
            sample_count=len(minutes),
        )

    def trailing_response(self) -> timedelta | None:
        if not self._responses:
            return None
        recent = [r for _, r in list(self._responses)[-self._trailing:]]
        return sum(recent, timedelta()) / len(recent)

    # ── Mode state machine ────────────────────────────────────

    def _is_slow(self, aggregate: timedelta, baseline: ResponseBaseline | InsufficientData) -> bool:
        if aggregate > self._threshold:
            return True
        if isinstance(baseline, ResponseBaseline):
            return aggregate.total_seconds() / 60 > self._multiple * baseline.mean
        return False

    def _evaluate(self, at: datetime, baseline: ResponseBaseline | InsufficientData) -> None:
        aggregate = self.trailing_response()
        if aggregate is None:
            return

        if self._is_slow(aggregate, baseline):
            self._prompt_streak = 0
            if self._mode is InteractionMode.NORMAL:
                self._switch(InteractionMode.WELLNESS_CHECK, at, aggregate)
            return

        if self._mode is InteractionMode.WELLNESS_CHECK:
            self._prompt_streak += 1
            if self._prompt_streak >= self._recovery_count:
                self._prompt_streak = 0
                self._switch(InteractionMode.NORMAL, at, aggregate)

    def _switch(self, mode: InteractionMode, at: datetime, aggregate: timedelta) -> None:
        self._mode = mode
        minutes = round(aggregate.total_seconds() / 60, 1)
        logger.info("reminders.mode_changed", subject=self.subject_id, mode=mode.value, response_minutes=minutes)

        if mode is InteractionMode.WELLNESS_CHECK:
            event = AlertEvent(
                subject_id=self.subject_id,
                kind=EventKind.WELLNESS_CHECK_ENTERED,
                severity=AlertSeverity.WARNING,
                message=f"Reminder responses are slow ({minutes} min); switching to wellness-check mode.",
                timestamp=at,
                interaction_mode=mode,
                metadata={"response_minutes": minutes},
            )
        else:
            event = AlertEvent(
                subject_id=self.subject_id,
                kind=EventKind.WELLNESS_CHECK_EXITED,
                severity=AlertSeverity.INFO,
                message="Reminder responses are prompt again; back to normal mode.",
                timestamp=at,
                interaction_mode=mode,
                metadata={"response_minutes": minutes},
            )
        if self.on_event is not None:
            self.on_event(event)

    # ── Housekeeping ──────────────────────────────────────────

    def _evict(self, now: datetime) -> None:
        cutoff = now - self._history
        while self._events and self._events[0].fired_time < cutoff and not self._events[0].pending:
            self._events.popleft()
        while self._responses and self._responses[0][0] < cutoff:
            self._responses.popleft()

    def clear(self) -> None:
        self._schedules.clear()
        self._last_fired.clear()
        self._pending.clear()
        self._events.clear()
        self._responses.clear()
        self._mode = InteractionMode.NORMAL
        self._prompt_streak = 0
