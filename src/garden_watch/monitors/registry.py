"""Registry of per-subject monitors."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog

from garden_watch.monitors.subject import EventListener, SubjectMonitor

if TYPE_CHECKING:
    from garden_watch.config import Settings

logger = structlog.get_logger(__name__)


class MonitorRegistry:
    """Map subject ids to independently owned :class:`SubjectMonitor` instances.

    The registry lock only guards the mapping itself; every monitor keeps
    its own lock and state.
    """

    def __init__(self, settings: Settings | None = None, *, listeners: list[EventListener] | None = None) -> None:
        self._settings = settings
        self._listeners: list[EventListener] = list(listeners or [])
        self._monitors: dict[str, SubjectMonitor] = {}
        self._lock = threading.Lock()

    def add_listener(self, listener: EventListener) -> None:
        """Attach *listener* to current and future monitors."""
        with self._lock:
            self._listeners.append(listener)
            monitors = list(self._monitors.values())
        for monitor in monitors:
            monitor.add_listener(listener)

    def get(self, subject_id: str) -> SubjectMonitor | None:
        return self._monitors.get(subject_id)

    def get_or_create(self, subject_id: str) -> SubjectMonitor:
        with self._lock:
            monitor = self._monitors.get(subject_id)
            if monitor is not None:
                return monitor
            if self._settings is not None:
                monitor = SubjectMonitor.from_settings(subject_id, self._settings)
            else:
                monitor = SubjectMonitor(subject_id)
            for listener in self._listeners:
                monitor.add_listener(listener)
            self._monitors[subject_id] = monitor
        logger.info("registry.subject_added", subject=subject_id)
        return monitor

    def stop(self, subject_id: str) -> bool:
        """Stop monitoring *subject_id* and discard its history."""
        with self._lock:
            monitor = self._monitors.pop(subject_id, None)
        if monitor is None:
            return False
        monitor.stop()
        logger.info("registry.subject_removed", subject=subject_id)
        return True

    def subjects(self) -> list[str]:
        return sorted(self._monitors)

    def monitors(self) -> list[SubjectMonitor]:
        with self._lock:
            return list(self._monitors.values())

    def __contains__(self, subject_id: object) -> bool:
        return subject_id in self._monitors

    def __len__(self) -> int:
        return len(self._monitors)
