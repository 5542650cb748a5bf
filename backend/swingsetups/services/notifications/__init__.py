"""Completion notifications."""

from swingsetups.services.notifications.dispatcher import (
    LoggingDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
    fire_and_forget,
    get_dispatcher,
)

__all__ = [
    "NotificationDispatcher",
    "LoggingDispatcher",
    "WebhookDispatcher",
    "fire_and_forget",
    "get_dispatcher",
]
