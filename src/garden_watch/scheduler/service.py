"""Scheduler service — wall-clock ticks for slot closing, reminders and recomputation.

Architecture
~~~~~~~~~~~~
The ``SchedulerService`` runs as a background component within the
FastAPI lifespan.  Every ``tick_seconds`` it:

1. Closes every hourly slot that has ended, for every subject, and then
   every day that has ended, which scores the day and advances the alert
   policy.
2. Ticks each subject's reminder monitor (fires due reminders, expires
   unanswered ones).
3. Runs batched baseline recomputation once its cadence has elapsed.

A failure for one subject is logged and does not block the others.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable

import structlog

from garden_watch.errors import require_positive
from garden_watch.models import as_utc, utc_now
from garden_watch.monitors.registry import MonitorRegistry

logger = structlog.get_logger(__name__)


class SchedulerService:
    """Background clock driving every registered subject.

    Integration::

        scheduler = SchedulerService(registry)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        registry: MonitorRegistry,
        *,
        tick_seconds: int = 60,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        require_positive("tick_seconds", tick_seconds)
        self._registry = registry
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None

        self._stats: dict[str, Any] = {
            "last_run": None,
            "total_runs": 0,
            "last_samples": 0,
            "last_days_closed": 0,
            "last_reminders_fired": 0,
            "last_recomputes": 0,
            "last_errors": 0,
        }

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("scheduler.started", tick_seconds=self._tick_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("scheduler.stopped")

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Main loop ─────────────────────────────────────────────

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once(self._clock())
            except Exception:
                logger.exception("scheduler.run_error")
            await asyncio.sleep(self._tick_seconds)

    async def run_once(self, now: datetime) -> dict[str, Any]:
        """Run one tick for every subject at *now* (naive values are taken as UTC)."""
        now = as_utc(now)
        samples = days = fired = recomputes = errors = 0

        for monitor in self._registry.monitors():
            try:
                samples += len(monitor.close_slots(now))
                days += len(monitor.close_days(now))
                fired += len(monitor.tick_reminders(now))
                if monitor.estimator.policy == "batched" and monitor.recompute_baselines(now, force=False):
                    recomputes += 1
            except Exception:
                errors += 1
                logger.exception("scheduler.subject_error", subject=monitor.subject_id)
            await asyncio.sleep(0)

        self._stats.update(
            last_run=now.isoformat(),
            total_runs=self._stats["total_runs"] + 1,
            last_samples=samples,
            last_days_closed=days,
            last_reminders_fired=fired,
            last_recomputes=recomputes,
            last_errors=errors,
        )
        if samples or days or fired or recomputes or errors:
            logger.info(
                "scheduler.tick",
                samples=samples,
                days_closed=days,
                reminders_fired=fired,
                recomputes=recomputes,
                errors=errors,
            )
        return self.stats
