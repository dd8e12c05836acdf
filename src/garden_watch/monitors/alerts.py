"""Alert policy — hysteresis over a trailing window of deviation scores.

States move one step at a time::

    normal ⇄ elevated ⇄ alerting

A step forward needs ``required`` exceeding scores inside the last
``window_size`` scores; a step back needs ``clear_windows`` consecutive
evaluations with no exceeding score at all.  Only entering and leaving
``alerting`` is visible outside the engine.
"""

from __future__ import annotations

import math
from collections import deque

import structlog

from garden_watch.errors import ConfigurationError, require_positive
from garden_watch.models import (
    AlertEvent,
    AlertSeverity,
    AlertState,
    DeviationRecord,
    EventKind,
    InsufficientData,
    StateTransition,
)

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLD = 1.5
DEFAULT_WINDOW_SIZE = 7
DEFAULT_ADVANCE_FRACTION = 0.5
DEFAULT_CLEAR_WINDOWS = 3

_FORWARD = {
    AlertState.NORMAL: AlertState.ELEVATED,
    AlertState.ELEVATED: AlertState.ALERTING,
    AlertState.ALERTING: AlertState.ALERTING,
}
_BACKWARD = {
    AlertState.ALERTING: AlertState.ELEVATED,
    AlertState.ELEVATED: AlertState.NORMAL,
    AlertState.NORMAL: AlertState.NORMAL,
}


def required_exceeding(window_size: int, advance_fraction: float) -> int:
    """Exceeding scores needed to advance; at least two when the window holds more than one."""
    needed = math.ceil(advance_fraction * window_size - 1e-9)
    return max(needed, min(2, window_size))


class AlertPolicyEngine:
    """Debounce deviation scores of one subject into alert transitions.

    Parameters
    ----------
    subject_id : str
        Owner of the scored records.
    window_size : int
        Number of trailing scores considered (K).
    threshold : float
        A score at or above this counts as exceeding (θ_A).
    advance_fraction : float
        Fraction of the window that must exceed to step forward.
    clear_windows : int
        Consecutive all-clear evaluations needed to step back.
    """

    def __init__(
        self,
        subject_id: str,
        *,
        window_size: int = DEFAULT_WINDOW_SIZE,
        threshold: float = DEFAULT_THRESHOLD,
        advance_fraction: float = DEFAULT_ADVANCE_FRACTION,
        clear_windows: int = DEFAULT_CLEAR_WINDOWS,
    ) -> None:
        require_positive("window_size", window_size)
        require_positive("threshold", threshold)
        require_positive("clear_windows", clear_windows)
        if not 0 < advance_fraction <= 1:
            raise ConfigurationError(f"advance_fraction must be in (0, 1], got {advance_fraction!r}")

        self.subject_id = subject_id
        self._threshold = threshold
        self._clear_windows = clear_windows
        self._required = required_exceeding(window_size, advance_fraction)
        self._window: deque[float] = deque(maxlen=window_size)

        self._state = AlertState.NORMAL
        self._quiet_evaluations = 0
        self._excluded = 0
        self._transitions: list[StateTransition] = []

    # ── Properties ────────────────────────────────────────────

    @property
    def state(self) -> AlertState:
        return self._state

    @property
    def is_alerting(self) -> bool:
        return self._state is AlertState.ALERTING

    @property
    def required(self) -> int:
        return self._required

    @property
    def excluded(self) -> int:
        """Outcomes skipped because their slot had no baseline."""
        return self._excluded

    @property
    def window(self) -> list[float]:
        return list(self._window)

    @property
    def transitions(self) -> list[StateTransition]:
        return list(self._transitions)

    def exceeding(self) -> int:
        return sum(1 for score in self._window if score >= self._threshold)

    # ── Evaluation ────────────────────────────────────────────

    def update(self, outcome: DeviationRecord | InsufficientData) -> AlertEvent | None:
        """Evaluate one scoring outcome.  Must be called in arrival order.

        Returns an :class:`AlertEvent` when ``alerting`` is entered or left.
        """
        if isinstance(outcome, InsufficientData):
            self._excluded += 1
            logger.debug(
                "alerts.outcome_excluded",
                subject=self.subject_id,
                day_of_week=outcome.day_of_week,
                hour_of_day=outcome.hour_of_day,
            )
            return None

        self._window.append(outcome.score)
        exceeding = self.exceeding()
        previous = self._state

        if exceeding >= self._required:
            self._quiet_evaluations = 0
            self._state = _FORWARD[previous]
        elif exceeding == 0:
            self._quiet_evaluations += 1
            if self._quiet_evaluations >= self._clear_windows and previous is not AlertState.NORMAL:
                self._state = _BACKWARD[previous]
                self._quiet_evaluations = 0
        else:
            self._quiet_evaluations = 0

        if self._state is previous:
            return None
        return self._transition(previous, outcome, exceeding)

    def _transition(self, previous: AlertState, record: DeviationRecord, exceeding: int) -> AlertEvent | None:
        self._transitions.append(
            StateTransition(
                subject_id=self.subject_id,
                from_state=previous,
                to_state=self._state,
                timestamp=record.timestamp,
                exceeding=exceeding,
                window_length=len(self._window),
            )
        )
        logger.info(
            "alerts.transition",
            subject=self.subject_id,
            from_state=previous.value,
            to_state=self._state.value,
            exceeding=exceeding,
            window=len(self._window),
        )

        if self._state is AlertState.ALERTING:
            return AlertEvent(
                subject_id=self.subject_id,
                kind=EventKind.ALERT_RAISED,
                severity=AlertSeverity.WARNING,
                message=(
                    f"Garden activity deviates from the usual routine: {exceeding} of the last "
                    f"{len(self._window)} scores were at or above {self._threshold}."
                ),
                timestamp=record.timestamp,
                alert_state=self._state,
                metadata={"exceeding": exceeding, "latest_score": record.score},
            )
        if previous is AlertState.ALERTING:
            return AlertEvent(
                subject_id=self.subject_id,
                kind=EventKind.ALERT_CLEARED,
                severity=AlertSeverity.INFO,
                message="Garden activity is back within the usual routine.",
                timestamp=record.timestamp,
                alert_state=self._state,
            )
        return None

    def reset(self) -> None:
        self._window.clear()
        self._state = AlertState.NORMAL
        self._quiet_evaluations = 0
        self._excluded = 0
        self._transitions.clear()
