"""Notification sub-package — alert event delivery."""

from garden_watch.notifications.handlers import (
    NotificationDispatcher,
    NotificationHandler,
    create_dispatcher,
)

__all__ = ["NotificationDispatcher", "NotificationHandler", "create_dispatcher"]
