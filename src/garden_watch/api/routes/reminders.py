"""Reminder scheduling and acknowledgement routes."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from garden_watch.api.routes.subjects import _registry, existing_monitor
from garden_watch.api.schemas import ScheduleRequest, TimestampRequest
from garden_watch.models import NoPendingReminder, utc_now

router = APIRouter(tags=["reminders"])


@router.get("/subjects/{subject_id}/reminders")
async def list_reminders(subject_id: str):
    monitor = existing_monitor(subject_id)
    return {
        "schedules": [s.model_dump(mode="json") for s in monitor.reminders.schedules()],
        "pending": [e.model_dump(mode="json") for e in monitor.reminders.pending()],
        "interaction_mode": monitor.interaction_mode.value,
    }


@router.post("/subjects/{subject_id}/reminders", status_code=201)
async def schedule_reminder(subject_id: str, req: ScheduleRequest):
    monitor = _registry().get_or_create(subject_id)
    schedule = monitor.schedule_reminder(req.task_id, req.cadence_days, req.time_of_day, start=req.start)
    return schedule.model_dump(mode="json")


@router.delete("/subjects/{subject_id}/reminders/{task_id}")
async def unschedule_reminder(subject_id: str, task_id: str):
    if not existing_monitor(subject_id).unschedule_reminder(task_id):
        raise HTTPException(404, f"No reminder scheduled for {task_id!r}.")
    return {"removed": True}


@router.post("/subjects/{subject_id}/reminders/{task_id}/fire", status_code=201)
async def fire_reminder(subject_id: str, task_id: str, req: TimestampRequest | None = None):
    monitor = existing_monitor(subject_id)
    fired_at = (req.timestamp if req else None) or utc_now()
    return monitor.fire_reminder(task_id, fired_at).model_dump(mode="json")


@router.post("/subjects/{subject_id}/reminders/{task_id}/ack")
async def acknowledge_reminder(subject_id: str, task_id: str, req: TimestampRequest | None = None):
    """Acknowledge the outstanding reminder; nothing pending is reported, not an error."""
    monitor = existing_monitor(subject_id)
    acked_at = (req.timestamp if req else None) or utc_now()
    result = monitor.acknowledge_reminder(task_id, acked_at)
    if isinstance(result, NoPendingReminder):
        return {"status": result.reason, "task_id": task_id, "interaction_mode": monitor.interaction_mode.value}
    return {
        "status": "acknowledged",
        "event": result.model_dump(mode="json"),
        "interaction_mode": monitor.interaction_mode.value,
    }
