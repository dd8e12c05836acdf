"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from garden_watch.models import AggregationPolicy, ScorePolicy

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """All runtime configuration for the garden-watch engine.

    Values are read from environment variables first, then from a *.env*
    file at the project root.  Every variable lives in the flat
    ``GARDEN_WATCH_`` namespace.

    Engine defaults mirror the documented policy: two-week healthy window,
    hourly slots, one alert score per day, alert threshold 1.5 over a
    trailing window of seven scores, and a 30-minute reminder response
    threshold.  All timestamps are handled in UTC.
    """

    model_config = SettingsConfigDict(
        env_prefix="GARDEN_WATCH_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── API server ────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = int(os.getenv("PORT", "8000"))
    api_secret_key: str = "change-me-to-a-random-secret"
    cors_origins: str = "*"  # comma-separated origins, or "*" for all

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Notifications ─────────────────────────────────────────
    webhook_url: str = ""

    # ── Scheduler ─────────────────────────────────────────────
    scheduler_enabled: bool = True
    scheduler_tick_seconds: int = 60

    # ── Subjects ──────────────────────────────────────────────
    default_subject_id: str = "garden"
    history_days: int = 28  # daily rollups kept for the views

    # ── Presence aggregation ──────────────────────────────────
    aggregation_policy: AggregationPolicy = AggregationPolicy.POSITIVE_COUNT
    sub_interval_seconds: int = 60

    # ── Baseline estimation ───────────────────────────────────
    baseline_window_weeks: int = 2
    baseline_min_samples: int = 1
    baseline_min_days: int = 7  # earlier days a daily score needs
    baseline_recompute: Literal["eager", "batched"] = "eager"
    baseline_recompute_hours: int = 24
    deviation_epsilon: float = 1e-6

    # ── Alert policy ──────────────────────────────────────────
    alert_score_policy: ScorePolicy = ScorePolicy.DAILY
    alert_threshold: float = 1.5
    alert_window_size: int = 7
    alert_advance_fraction: float = 0.5
    alert_clear_windows: int = 3

    # ── Reminder response ─────────────────────────────────────
    reminder_threshold_minutes: float = 30.0
    reminder_baseline_multiple: float = 2.5
    reminder_baseline_weeks: int = 2
    reminder_min_baseline_samples: int = 3
    reminder_recovery_count: int = 3
    reminder_timeout_minutes: int = 120
    reminder_trailing_count: int = 1

    @property
    def baseline_window(self) -> timedelta:
        return timedelta(weeks=self.baseline_window_weeks)

    @property
    def baseline_recompute_every(self) -> timedelta:
        return timedelta(hours=self.baseline_recompute_hours)

    @property
    def reminder_baseline_window(self) -> timedelta:
        return timedelta(weeks=self.reminder_baseline_weeks)

    @property
    def reminder_threshold(self) -> timedelta:
        return timedelta(minutes=self.reminder_threshold_minutes)

    @property
    def reminder_timeout(self) -> timedelta:
        return timedelta(minutes=self.reminder_timeout_minutes)


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
