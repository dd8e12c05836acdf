"""Exceptions raised by the monitoring engine.

Only configuration problems are raised.  Missing history and
acknowledgements with nothing outstanding are ordinary results
(:class:`~garden_watch.models.InsufficientData`,
:class:`~garden_watch.models.NoPendingReminder`) and never raised.
"""

from __future__ import annotations

from datetime import timedelta


class ConfigurationError(ValueError):
    """A threshold, window or cadence was rejected at registration time."""


def require_positive(name: str, value: float | int) -> None:
    """Raise :class:`ConfigurationError` unless *value* is strictly positive."""
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")


def require_duration(name: str, value: timedelta) -> None:
    """Raise :class:`ConfigurationError` unless *value* is a positive duration."""
    if value <= timedelta(0):
        raise ConfigurationError(f"{name} must be a positive duration, got {value!r}")
