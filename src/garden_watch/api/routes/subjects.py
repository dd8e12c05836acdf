"""Presence ingestion, sample processing and per-subject state routes."""

from __future__ import annotations


from fastapi import APIRouter, HTTPException

from garden_watch.api.schemas import FlushRequest, PresenceRequest, SampleRequest, TimestampRequest
from garden_watch.models import ActivitySample, InsufficientData, PresenceEvent, utc_now
from garden_watch.monitors.registry import MonitorRegistry
from garden_watch.monitors.subject import SubjectMonitor

router = APIRouter(tags=["subjects"])


def _registry() -> MonitorRegistry:
    from garden_watch.api.server import _registry as registry

    if registry is None:
        raise HTTPException(503, "Monitor registry not ready.")
    return registry


def existing_monitor(subject_id: str) -> SubjectMonitor:
    monitor = _registry().get(subject_id)
    if monitor is None:
        raise HTTPException(404, f"Unknown subject {subject_id!r}.")
    return monitor


# ── Presence ──────────────────────────────────────────────────


@router.post("/presence", status_code=201)
async def ingest_presence(req: PresenceRequest):
    """Queue one fused presence reading."""
    from garden_watch.api.server import _pipeline

    if _pipeline is None:
        raise HTTPException(503, "Pipeline not ready.")
    await _pipeline.publish(
        PresenceEvent(subject_id=req.subject_id, timestamp=req.timestamp or utc_now(), is_present=req.is_present)
    )
    return {"queued": True}


@router.post("/presence/batch", status_code=201)
async def ingest_presence_batch(readings: list[PresenceRequest]):
    from garden_watch.api.server import _pipeline

    if _pipeline is None:
        raise HTTPException(503, "Pipeline not ready.")
    events = [
        PresenceEvent(subject_id=r.subject_id, timestamp=r.timestamp or utc_now(), is_present=r.is_present)
        for r in readings
    ]
    await _pipeline.publish_batch(events)
    return {"count": len(events), "queued": True}


# ── Subjects ──────────────────────────────────────────────────


@router.get("/subjects")
async def list_subjects():
    return _registry().subjects()


@router.get("/subjects/{subject_id}")
async def subject_status(subject_id: str):
    return existing_monitor(subject_id).status()


@router.delete("/subjects/{subject_id}")
async def stop_subject(subject_id: str):
    """Stop monitoring and discard the subject's in-memory history."""
    if not _registry().stop(subject_id):
        raise HTTPException(404, f"Unknown subject {subject_id!r}.")
    return {"stopped": True}


@router.get("/subjects/{subject_id}/events")
async def subject_events(subject_id: str):
    return [e.model_dump(mode="json") for e in existing_monitor(subject_id).events()]


# ── Samples & slots ───────────────────────────────────────────


@router.post("/subjects/{subject_id}/samples", status_code=201)
async def process_sample(subject_id: str, req: SampleRequest):
    """Score and learn one aggregated sample, bypassing presence aggregation."""
    monitor = _registry().get_or_create(subject_id)
    outcome = monitor.process_sample(ActivitySample.at(subject_id, req.timestamp, req.value))
    return {
        "scored": not isinstance(outcome, InsufficientData),
        "outcome": outcome.model_dump(mode="json"),
        "alert_state": monitor.alert_state.value,
    }


@router.post("/subjects/{subject_id}/slots/flush")
async def flush_slot(subject_id: str, req: FlushRequest):
    monitor = existing_monitor(subject_id)
    sample = monitor.flush_slot(req.day_of_week, req.hour_of_day)
    return {
        "sample": sample.model_dump(mode="json") if sample else None,
        "alert_state": monitor.alert_state.value,
    }


@router.post("/subjects/{subject_id}/days/close")
async def close_days(subject_id: str, req: TimestampRequest | None = None):
    """Score every day that ended before the given time (default: now)."""
    monitor = existing_monitor(subject_id)
    now = (req.timestamp if req else None) or utc_now()
    outcomes = monitor.close_days(now)
    return {
        "closed": len(outcomes),
        "outcomes": [o.model_dump(mode="json") for o in outcomes],
        "alert_state": monitor.alert_state.value,
    }


# ── Baselines ─────────────────────────────────────────────────


@router.post("/subjects/{subject_id}/baselines/recompute")
async def recompute_baselines(subject_id: str):
    monitor = existing_monitor(subject_id)
    monitor.recompute_baselines()
    return {"slots": len(monitor.estimator.baselines())}


@router.get("/subjects/{subject_id}/baselines/{day_of_week}/{hour_of_day}")
async def get_baseline(subject_id: str, day_of_week: int, hour_of_day: int):
    if not (0 <= day_of_week <= 6 and 0 <= hour_of_day <= 23):
        raise HTTPException(422, "day_of_week must be 0-6 and hour_of_day 0-23.")
    result = existing_monitor(subject_id).baseline(day_of_week, hour_of_day)
    return {"sufficient": not isinstance(result, InsufficientData), **result.model_dump(mode="json")}
