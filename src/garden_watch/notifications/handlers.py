"""Notification handlers — log and webhook delivery of alert events.

Architecture
~~~~~~~~~~~~
* **NotificationHandler** — abstract base for delivery channels.
* **LogHandler / WebhookHandler** — concrete channels.
* **NotificationDispatcher** — fan-out with error isolation and results.
* **create_dispatcher()** — factory that wires handlers from settings.

Adding a new channel
~~~~~~~~~~~~~~~~~~~~
1. Subclass ``NotificationHandler``.
2. Implement ``async send(event) -> bool``.
3. Register via ``dispatcher.add_handler(...)`` or add to the factory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import structlog

from garden_watch.models import AlertSeverity

if TYPE_CHECKING:
    from garden_watch.config import Settings
    from garden_watch.models import AlertEvent

logger = structlog.get_logger(__name__)

_SEVERITY_RANK = {AlertSeverity.INFO: 0, AlertSeverity.WARNING: 1, AlertSeverity.CRITICAL: 2}


# ── Dispatch result ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome summary for a single ``dispatch()`` call."""

    event_id: str | None
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0


# ── Abstract handler ──────────────────────────────────────────


class NotificationHandler(ABC):
    """Contract for alert delivery channels.

    ``min_severity`` filters out events below a severity; override
    :meth:`should_handle` for anything more specific.
    """

    name: str = "base"
    min_severity: AlertSeverity = AlertSeverity.INFO

    @abstractmethod
    async def send(self, event: AlertEvent) -> bool:
        """Deliver an event.  Return ``True`` on success."""

    def should_handle(self, event: AlertEvent) -> bool:
        return _SEVERITY_RANK[event.severity] >= _SEVERITY_RANK[self.min_severity]


# ── Concrete handlers ────────────────────────────────────────


class LogHandler(NotificationHandler):
    """Write events to the structured log (always enabled)."""

    name = "log"

    async def send(self, event: AlertEvent) -> bool:
        logger.info(
            "notification.log",
            subject=event.subject_id,
            kind=event.kind.value,
            severity=event.severity.value,
            message=event.message,
        )
        return True


class WebhookHandler(NotificationHandler):
    """POST event JSON to an external webhook URL (e.g. the owl's relay)."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        min_severity: AlertSeverity = AlertSeverity.INFO,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self.min_severity = min_severity

    async def send(self, event: AlertEvent) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=event.model_dump(mode="json"))
                resp.raise_for_status()
            logger.info("notification.webhook_sent", url=self._url, event_id=event.id)
            return True
        except httpx.HTTPError as exc:
            logger.error("notification.webhook_failed", url=self._url, error=str(exc))
            return False


# ── Dispatcher ────────────────────────────────────────────────


class NotificationDispatcher:
    """Fan-out events to registered handlers with error isolation.

    Each handler is invoked independently — a failure in one channel
    never blocks delivery to the others.
    """

    def __init__(self, *, handlers: list[NotificationHandler] | None = None) -> None:
        self._handlers: list[NotificationHandler] = handlers or [LogHandler()]

    def add_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, name: str) -> bool:
        """Remove the first handler matching *name*. Return ``True`` if found."""
        for i, h in enumerate(self._handlers):
            if h.name == name:
                self._handlers.pop(i)
                return True
        return False

    @property
    def handler_names(self) -> list[str]:
        return [h.name for h in self._handlers]

    async def dispatch(self, event: AlertEvent) -> DispatchResult:
        """Send *event* to every handler, collecting per-handler outcomes."""
        sent: list[str] = []
        failed: list[str] = []

        for handler in self._handlers:
            if not handler.should_handle(event):
                continue
            try:
                ok = await handler.send(event)
                (sent if ok else failed).append(handler.name)
            except Exception:
                logger.exception("notification.handler_error", handler=handler.name, event_id=event.id)
                failed.append(handler.name)

        result = DispatchResult(event_id=event.id, sent=sent, failed=failed)
        if result.failed:
            logger.warning("notification.partial_failure", event_id=event.id, failed=result.failed)
        return result

    async def dispatch_many(self, events: list[AlertEvent]) -> list[DispatchResult]:
        return [await self.dispatch(e) for e in events]


# ── Factory ───────────────────────────────────────────────────


def create_dispatcher(settings: Settings) -> NotificationDispatcher:
    """Build a :class:`NotificationDispatcher` wired from application settings.

    * **LogHandler** is always registered.
    * **WebhookHandler** is added when ``settings.webhook_url`` is non-empty.
    """
    dispatcher = NotificationDispatcher()
    if settings.webhook_url:
        dispatcher.add_handler(WebhookHandler(settings.webhook_url))
    return dispatcher
