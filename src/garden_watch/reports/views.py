"""Read-only views for the presentation layer — pandas-based aggregation.

Each function takes a :class:`SubjectMonitor` and returns the rows one
chart of the garden-watch client plots.  Activity values are reported in
garden minutes; response times in minutes.
"""

from __future__ import annotations

import statistics
from datetime import date, timedelta
from typing import TYPE_CHECKING

import pandas as pd

from garden_watch.models import (
    ActivityHistoryEntry,
    DailyPatternEntry,
    Profile,
    ReminderHistoryEntry,
    ScorePolicy,
    SlotBaseline,
    WeeklyTaskEntry,
    utc_now,
)

if TYPE_CHECKING:
    from garden_watch.monitors.subject import SubjectMonitor

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_HOURS = range(24)


def _round(value: float | None, digits: int = 2) -> float | None:
    return None if value is None else round(float(value), digits)


# ── Activity / deviation history ─────────────────────────────


def activity_history(monitor: SubjectMonitor) -> list[ActivityHistoryEntry]:
    """One entry per elapsed day, labelled from the first tracked day.

    With daily scoring the baseline and score are the day's own, present
    once the day has been closed; with slot scoring they are the sum of
    the slot means and the mean slot score.
    """
    days = monitor.day_summaries()
    if not days:
        return []

    to_minutes = monitor.aggregator.to_minutes
    daily = monitor.score_policy is ScorePolicy.DAILY
    first = days[0].day
    entries: list[ActivityHistoryEntry] = []
    for summary in days:
        if daily:
            scored = summary.score is not None
            baseline = summary.baseline
            score = summary.score
        else:
            scored = bool(summary.scores)
            baseline = summary.expected
            score = statistics.fmean(summary.scores) if scored else None
        entries.append(
            ActivityHistoryEntry(
                day=f"Day {(summary.day - first).days + 1}",
                actual_activity=round(to_minutes(summary.actual), 2),
                baseline_activity=_round(to_minutes(baseline)) if scored else None,
                deviation_score=_round(score) if scored else None,
                alert=summary.alert,
            )
        )
    return entries


def deviation_history(monitor: SubjectMonitor) -> list[dict[str, object]]:
    """``{day, deviationScore, alert}`` rows for the deviation chart."""
    return [
        {"day": e.day, "deviationScore": e.deviation_score, "alert": e.alert}
        for e in activity_history(monitor)
    ]


# ── Daily pattern ─────────────────────────────────────────────


def _hourly_means(baselines: list[SlotBaseline], day_of_week: int | None) -> pd.Series:
    frame = pd.DataFrame(
        [
            {"hour": b.hour_of_day, "mean": b.mean}
            for b in baselines
            if day_of_week is None or b.day_of_week == day_of_week
        ],
        columns=["hour", "mean"],
    )
    if frame.empty:
        return pd.Series(dtype=float)
    return frame.groupby("hour")["mean"].mean()


def daily_pattern(
    monitor: SubjectMonitor,
    profile: Profile,
    *,
    day_of_week: int | None = None,
) -> list[DailyPatternEntry]:
    """24 hourly entries for the healthy reference or the current week.

    ``expected_activity`` always comes from the healthy reference (the
    current baselines until a reference has been pinned).
    """
    estimator = monitor.estimator
    to_minutes = monitor.aggregator.to_minutes
    reference = estimator.reference_baselines()
    if reference is None:
        reference = estimator.baselines()
    expected = _hourly_means(reference, day_of_week)

    if Profile(profile) is Profile.HEALTHY:
        observed = expected
    else:
        samples = estimator.retained_samples()
        frame = pd.DataFrame(
            [{"timestamp": s.timestamp, "dow": s.day_of_week, "hour": s.hour_of_day, "value": s.value} for s in samples],
            columns=["timestamp", "dow", "hour", "value"],
        )
        if not frame.empty:
            newest = samples[-1].timestamp
            frame = frame[frame["timestamp"] > newest - timedelta(days=7)]
            if day_of_week is not None:
                frame = frame[frame["dow"] == day_of_week]
        observed = frame.groupby("hour")["value"].mean() if not frame.empty else pd.Series(dtype=float)

    def _minutes(series: pd.Series, hour: int) -> float | None:
        if hour not in series.index:
            return None
        return round(to_minutes(float(series[hour])), 1)

    return [
        DailyPatternEntry(
            hour=f"{hour}:00",
            activity=_minutes(observed, hour),
            expected_activity=_minutes(expected, hour),
        )
        for hour in _HOURS
    ]


# ── Weekly task summary ───────────────────────────────────────


def _weekday_means(
    figures: dict[date, tuple[float, int]], start: date, end: date, to_minutes,
) -> list[WeeklyTaskEntry]:
    """Per-weekday mean of acknowledged tasks and garden minutes over ``start..end``.

    Days missing from *figures* count as zero.
    """
    frame = pd.DataFrame({"day": pd.date_range(start, end, freq="D").date})
    frame["weekday"] = [d.weekday() for d in frame["day"]]
    frame["minutes"] = [to_minutes(figures.get(d, (0.0, 0))[0]) for d in frame["day"]]
    frame["tasks"] = [figures.get(d, (0.0, 0))[1] for d in frame["day"]]
    means = frame.groupby("weekday")[["tasks", "minutes"]].mean()

    def _mean(index: int, column: str) -> float:
        if index not in means.index:
            return 0.0
        return round(float(means.at[index, column]), 1)

    return [
        WeeklyTaskEntry(day=label, tasks_completed=_mean(index, "tasks"), garden_time=_mean(index, "minutes"))
        for index, label in enumerate(WEEKDAYS)
    ]


def weekly_task_summary(
    monitor: SubjectMonitor,
    profile: Profile = Profile.CURRENT,
    *,
    today: date | None = None,
) -> list[WeeklyTaskEntry]:
    """Monday..Sunday task and garden-time figures for one profile.

    ``current`` gives the totals of the seven days ending *today* (default:
    the latest tracked day).  ``healthy`` averages each weekday over the
    pinned reference period, or over the retained window until a reference
    has been pinned; it is empty while nothing has been retained.
    """
    to_minutes = monitor.aggregator.to_minutes

    if Profile(profile) is Profile.HEALTHY:
        period = monitor.estimator.reference_period
        figures = monitor.reference_days()
        if period is None or figures is None:
            retained = list(monitor.estimator.daily_totals())
            if not retained:
                return []
            period = (retained[0], retained[-1])
            figures = monitor.daily_figures(*period)
        return _weekday_means(figures, *period, to_minutes)

    if today is None:
        candidates = [d.day for d in monitor.day_summaries()]
        candidates += [
            e.acknowledged_at.date() for e in monitor.reminders.events() if e.acknowledged_at is not None
        ]
        today = max(candidates) if candidates else utc_now().date()
    start = today - timedelta(days=6)
    return _weekday_means(monitor.daily_figures(start, today), start, today, to_minutes)


# ── Reminder responses ────────────────────────────────────────


def reminder_history(monitor: SubjectMonitor) -> list[ReminderHistoryEntry]:
    """Mean response time per week since the first retained reminder.

    Unanswered reminders contribute their timeout, like in the mode logic.
    """
    answered = [e for e in monitor.reminders.events() if e.response_time is not None]
    if not answered:
        return []

    first = min(e.fired_time.date() for e in answered)
    frame = pd.DataFrame(
        {
            "week": [(e.fired_time.date() - first).days // 7 + 1 for e in answered],
            "minutes": [e.response_minutes for e in answered],
        }
    )
    threshold = monitor.reminders.threshold.total_seconds() / 60
    means = frame.groupby("week")["minutes"].mean()
    return [
        ReminderHistoryEntry(
            week=f"Week {int(week)}",
            response_time=round(float(mean), 1),
            alert=float(mean) > threshold,
        )
        for week, mean in means.items()
    ]
