"""Deviation scoring against slot baselines and pooled daily baselines."""

from __future__ import annotations

from datetime import date, datetime, time, timezone

import structlog

from garden_watch.errors import require_positive
from garden_watch.models import ActivitySample, DeviationRecord, InsufficientData
from garden_watch.monitors.baseline import BaselineEstimator

logger = structlog.get_logger(__name__)

# Keeps a zero-variability baseline finite: a one-sample slot still scores
# large rather than infinite.
DEFAULT_EPSILON = 1e-6


def deviation_score(value: float, mean: float, variability: float, epsilon: float = DEFAULT_EPSILON) -> float:
    """``|value - mean| / (variability + epsilon)``."""
    return abs(value - mean) / (variability + epsilon)


class DeviationScorer:
    """Score samples against the estimator's current snapshot.

    Scoring has no side effects; a slot without a usable baseline yields
    the estimator's :class:`InsufficientData` result unchanged.
    """

    def __init__(self, estimator: BaselineEstimator, epsilon: float = DEFAULT_EPSILON) -> None:
        require_positive("epsilon", epsilon)
        self._estimator = estimator
        self._epsilon = epsilon

    @property
    def epsilon(self) -> float:
        return self._epsilon

    def score(self, sample: ActivitySample) -> DeviationRecord | InsufficientData:
        baseline = self._estimator.get_baseline(
            sample.subject_id, sample.day_of_week, sample.hour_of_day,
        )
        if isinstance(baseline, InsufficientData):
            logger.debug(
                "deviation.no_baseline",
                subject=sample.subject_id,
                day_of_week=sample.day_of_week,
                hour_of_day=sample.hour_of_day,
                sample_count=baseline.sample_count,
            )
            return baseline

        return DeviationRecord(
            subject_id=sample.subject_id,
            day_of_week=sample.day_of_week,
            hour_of_day=sample.hour_of_day,
            timestamp=sample.timestamp,
            score=deviation_score(sample.value, baseline.mean, baseline.variability, self._epsilon),
            value=sample.value,
            baseline_mean=baseline.mean,
            baseline_variability=baseline.variability,
        )

    def score_day(self, day: date, total: float) -> DeviationRecord | InsufficientData:
        """Score one day's total activity against the daily totals before it."""
        baseline = self._estimator.daily_baseline(day)
        if isinstance(baseline, InsufficientData):
            logger.debug(
                "deviation.no_daily_baseline",
                subject=self._estimator.subject_id,
                day=day.isoformat(),
                day_count=baseline.sample_count,
            )
            return baseline

        return DeviationRecord(
            subject_id=self._estimator.subject_id,
            day_of_week=day.weekday(),
            timestamp=datetime.combine(day, time(), tzinfo=timezone.utc),
            score=deviation_score(total, baseline.mean, baseline.variability, self._epsilon),
            value=total,
            baseline_mean=baseline.mean,
            baseline_variability=baseline.variability,
        )
