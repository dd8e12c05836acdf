"""Read-only data views polled by the garden-watch client."""

from __future__ import annotations

from fastapi import APIRouter, Query

from garden_watch.config import get_settings
from garden_watch.models import Profile
from garden_watch.reports import views

router = APIRouter(prefix="/api/data", tags=["data"])


def _monitor(subject_id: str | None):
    from garden_watch.api.routes.subjects import _registry

    return _registry().get(subject_id or get_settings().default_subject_id)


@router.get("/activity")
async def activity(subject_id: str | None = Query(None)):
    """``{day, actualActivity, baselineActivity, deviationScore, alert}`` per day."""
    monitor = _monitor(subject_id)
    if monitor is None:
        return []
    return [e.model_dump(by_alias=True) for e in monitor.activity_history()]


@router.get("/deviation")
async def deviation(subject_id: str | None = Query(None)):
    monitor = _monitor(subject_id)
    if monitor is None:
        return []
    return views.deviation_history(monitor)


@router.get("/daily-patterns")
async def daily_patterns(
    subject_id: str | None = Query(None),
    day_of_week: int | None = Query(None, ge=0, le=6),
):
    """Healthy reference and current hourly profiles."""
    monitor = _monitor(subject_id)
    if monitor is None:
        return {profile.value: [] for profile in Profile}
    return {
        profile.value: [
            e.model_dump(by_alias=True) for e in monitor.daily_pattern(profile, day_of_week=day_of_week)
        ]
        for profile in Profile
    }


@router.get("/weekly-tasks")
async def weekly_tasks(subject_id: str | None = Query(None)):
    """Healthy reference and current Monday..Sunday task and garden-time figures."""
    monitor = _monitor(subject_id)
    if monitor is None:
        return {profile.value: [] for profile in Profile}
    return {
        profile.value: [e.model_dump(by_alias=True) for e in monitor.weekly_task_summary(profile)]
        for profile in Profile
    }


@router.get("/reminders")
async def reminders(subject_id: str | None = Query(None)):
    monitor = _monitor(subject_id)
    if monitor is None:
        return []
    return [e.model_dump(by_alias=True) for e in monitor.reminder_history()]
