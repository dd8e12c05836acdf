"""Monitoring engine — aggregation, baselines, scoring, alert policy, reminders."""

from garden_watch.monitors.alerts import AlertPolicyEngine
from garden_watch.monitors.baseline import BaselineEstimator
from garden_watch.monitors.deviation import DeviationScorer, deviation_score
from garden_watch.monitors.presence import PresenceAggregator
from garden_watch.monitors.registry import MonitorRegistry
from garden_watch.monitors.reminders import ReminderResponseMonitor
from garden_watch.monitors.subject import SubjectMonitor

__all__ = [
    "AlertPolicyEngine",
    "BaselineEstimator",
    "DeviationScorer",
    "MonitorRegistry",
    "PresenceAggregator",
    "ReminderResponseMonitor",
    "SubjectMonitor",
    "deviation_score",
]
