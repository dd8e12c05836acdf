"""Scheduler sub-package — wall-clock ticks for every subject."""

from garden_watch.scheduler.service import SchedulerService

__all__ = ["SchedulerService"]
