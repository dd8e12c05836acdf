"""Async presence stream connecting the sensing source → subject monitors."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import structlog

from garden_watch.models import PresenceEvent

logger = structlog.get_logger(__name__)

Consumer = Callable[[PresenceEvent], Awaitable[None]]


class StreamPipeline:
    """In-process async pipeline that buffers presence readings and forwards
    them, one at a time and in arrival order, to registered consumers.

    The single consumer loop is what serialises readings from an
    asynchronous sensing source ahead of the per-subject monitors.
    """

    def __init__(self, maxsize: int = 10_000) -> None:
        self._queue: asyncio.Queue[PresenceEvent] = asyncio.Queue(maxsize=maxsize)
        self._consumers: list[Consumer] = []
        self._running = False
        self._processed_total = 0
        self._failed_total = 0

    # ── Configuration ─────────────────────────────────────────

    def add_consumer(self, fn: Consumer) -> None:
        """Register an async callback that receives every reading."""
        self._consumers.append(fn)

    # ── Producer side ─────────────────────────────────────────

    async def publish(self, event: PresenceEvent) -> None:
        await self._queue.put(event)

    async def publish_batch(self, events: list[PresenceEvent]) -> None:
        for event in events:
            await self._queue.put(event)

    # ── Consumer loop ─────────────────────────────────────────

    async def start(self) -> None:
        """Run the consumer loop (as a background task) until :meth:`stop`."""
        self._running = True
        logger.info("stream_pipeline.started", consumers=len(self._consumers))
        last_stats_time = time.monotonic()

        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            for consumer in self._consumers:
                try:
                    await consumer(event)
                except Exception as exc:
                    self._failed_total += 1
                    logger.error(
                        "stream_pipeline.consumer_error",
                        consumer=getattr(consumer, "__qualname__", repr(consumer)),
                        subject=event.subject_id,
                        error=str(exc),
                    )

            self._processed_total += 1
            self._queue.task_done()

            now = time.monotonic()
            if now - last_stats_time >= 60:
                logger.info(
                    "stream_pipeline.stats",
                    processed_total=self._processed_total,
                    failed_total=self._failed_total,
                    queue_pending=self._queue.qsize(),
                )
                last_stats_time = now

    async def drain(self) -> None:
        """Wait until every queued reading has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        self._running = False
        logger.info("stream_pipeline.stopped", processed_total=self._processed_total)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def processed(self) -> int:
        return self._processed_total
