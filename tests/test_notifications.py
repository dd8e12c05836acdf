"""Tests for notification handlers and the dispatcher."""

from datetime import datetime

import httpx
import pytest

from garden_watch.config import Settings
from garden_watch.models import AlertEvent, AlertSeverity, EventKind
from garden_watch.notifications.handlers import (
    LogHandler,
    NotificationDispatcher,
    NotificationHandler,
    WebhookHandler,
    create_dispatcher,
)


def _event(severity: AlertSeverity = AlertSeverity.WARNING) -> AlertEvent:
    return AlertEvent(
        subject_id="garden",
        kind=EventKind.ALERT_RAISED,
        severity=severity,
        message="Garden activity deviates from the usual routine.",
        timestamp=datetime(2024, 1, 19, 9, 0),
    )


class _Broken(NotificationHandler):
    name = "broken"

    async def send(self, event):
        raise RuntimeError("channel down")


@pytest.mark.asyncio
async def test_log_handler_always_sends(dispatcher):
    result = await dispatcher.dispatch(_event())
    assert result.sent == ["log"]
    assert result.all_ok


@pytest.mark.asyncio
async def test_webhook_posts_event_json():
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(request)
        return httpx.Response(200)

    webhook = WebhookHandler("https://owl.example/hook", transport=httpx.MockTransport(handler))
    event = _event()
    assert await webhook.send(event) is True
    assert posted[0].method == "POST"
    assert b'"kind":"alert_raised"' in posted[0].content.replace(b" ", b"")


@pytest.mark.asyncio
async def test_webhook_failure_is_reported():
    webhook = WebhookHandler(
        "https://owl.example/hook",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    dispatcher = NotificationDispatcher(handlers=[LogHandler(), webhook])
    result = await dispatcher.dispatch(_event())
    assert result.sent == ["log"]
    assert result.failed == ["webhook"]


@pytest.mark.asyncio
async def test_handler_exception_is_isolated():
    dispatcher = NotificationDispatcher(handlers=[_Broken(), LogHandler()])
    result = await dispatcher.dispatch(_event())
    assert result.failed == ["broken"]
    assert result.sent == ["log"]


@pytest.mark.asyncio
async def test_min_severity_filters():
    webhook = WebhookHandler(
        "https://owl.example/hook",
        min_severity=AlertSeverity.WARNING,
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )
    dispatcher = NotificationDispatcher(handlers=[webhook])
    result = await dispatcher.dispatch(_event(AlertSeverity.INFO))
    assert result.sent == []
    assert result.failed == []


def test_create_dispatcher():
    assert create_dispatcher(Settings(_env_file=None, webhook_url="")).handler_names == ["log"]
    assert create_dispatcher(
        Settings(_env_file=None, webhook_url="https://owl.example/hook")
    ).handler_names == ["log", "webhook"]


def test_remove_handler(dispatcher):
    assert dispatcher.remove_handler("log") is True
    assert dispatcher.remove_handler("log") is False
    assert dispatcher.handler_names == []
