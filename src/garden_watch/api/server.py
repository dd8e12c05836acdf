"""FastAPI application — REST endpoints and background services.

This module wires together all infrastructure:
- CORS + API key auth middleware
- Presence stream feeding the per-subject monitors
- Scheduler ticks (slot closing, reminders, batched recomputation)
- Alert event relay to the notification dispatcher
- Subject, reminder and data-view routes
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from garden_watch.api.middleware import setup_middleware
from garden_watch.api.routes.data import router as data_router
from garden_watch.api.routes.reminders import router as reminders_router
from garden_watch.api.routes.subjects import router as subjects_router
from garden_watch.config import get_settings
from garden_watch.models import AlertEvent, PresenceEvent
from garden_watch.monitors.registry import MonitorRegistry
from garden_watch.notifications.handlers import NotificationDispatcher, create_dispatcher
from garden_watch.scheduler.service import SchedulerService
from garden_watch.streaming.pipeline import StreamPipeline

logger = structlog.get_logger(__name__)

VERSION = "0.1.0"

# ── Shared state (initialised in lifespan) ────────────────────

_registry: MonitorRegistry | None = None
_pipeline: StreamPipeline | None = None
_pipeline_task: asyncio.Task | None = None
_scheduler: SchedulerService | None = None
_dispatcher: NotificationDispatcher | None = None
_relay_task: asyncio.Task | None = None


async def _relay_events(queue: asyncio.Queue[AlertEvent], dispatcher: NotificationDispatcher) -> None:
    while True:
        event = await queue.get()
        try:
            await dispatcher.dispatch(event)
        except Exception:
            logger.exception("server.relay_error", event_id=event.id)
        finally:
            queue.task_done()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hooks."""
    global _registry, _pipeline, _pipeline_task, _scheduler, _dispatcher, _relay_task

    settings = get_settings()
    loop = asyncio.get_running_loop()

    # 1. Notifications; monitors emit synchronously, delivery happens on the loop.
    _dispatcher = create_dispatcher(settings)
    events: asyncio.Queue[AlertEvent] = asyncio.Queue()
    _relay_task = asyncio.create_task(_relay_events(events, _dispatcher))

    def _on_event(event: AlertEvent) -> None:
        loop.call_soon_threadsafe(events.put_nowait, event)

    # 2. Subject monitors
    _registry = MonitorRegistry(settings, listeners=[_on_event])
    _registry.get_or_create(settings.default_subject_id)

    # 3. Presence stream
    _pipeline = StreamPipeline()

    async def _on_presence(event: PresenceEvent) -> None:
        _registry.get_or_create(event.subject_id).record_presence(event.timestamp, event.is_present)  # type: ignore[union-attr]

    _pipeline.add_consumer(_on_presence)
    _pipeline_task = asyncio.create_task(_pipeline.start())

    # 4. Wall-clock scheduler
    if settings.scheduler_enabled:
        _scheduler = SchedulerService(_registry, tick_seconds=settings.scheduler_tick_seconds)
        await _scheduler.start()
        logger.info("server.scheduler_started")

    logger.info("server.started", port=settings.api_port, subject=settings.default_subject_id)

    yield  # ← application runs

    # Shutdown
    if _scheduler:
        await _scheduler.stop()
    if _pipeline:
        await _pipeline.stop()
    if _pipeline_task:
        _pipeline_task.cancel()
    if _relay_task:
        _relay_task.cancel()
    _scheduler = None
    logger.info("server.stopped")


app = FastAPI(
    title="Garden Watch API",
    description="Behavioural baseline and anomaly detection for garden activity monitoring.",
    version=VERSION,
    lifespan=lifespan,
)

# ── Middleware ────────────────────────────────────────────────
setup_middleware(app)

# ── Routers ───────────────────────────────────────────────────
app.include_router(subjects_router)
app.include_router(reminders_router)
app.include_router(data_router)


# ── Health ────────────────────────────────────────────────────

@app.get("/health", tags=["system"])
async def health():
    return {"status": "ok", "pipeline_pending": _pipeline.pending if _pipeline else 0}


@app.get("/system/info", tags=["system"])
async def system_info():
    """Detailed system status for operational monitoring."""
    settings = get_settings()
    return {
        "version": VERSION,
        "pipeline": {
            "running": _pipeline is not None,
            "pending": _pipeline.pending if _pipeline else 0,
            "processed": _pipeline.processed if _pipeline else 0,
        },
        "subjects": _registry.subjects() if _registry else [],
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "running": _scheduler.is_running if _scheduler else False,
            "tick_seconds": settings.scheduler_tick_seconds,
            "stats": _scheduler.stats if _scheduler else None,
        },
        "notifications": {
            "handlers": _dispatcher.handler_names if _dispatcher else [],
        },
        "baseline": {
            "window_weeks": settings.baseline_window_weeks,
            "recompute": settings.baseline_recompute,
        },
    }
