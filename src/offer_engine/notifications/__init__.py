"""Best-effort side channels: notifications and the discussion-thread bridge."""

from offer_engine.notifications.dispatcher import NotificationDispatcher, Notifier
from offer_engine.notifications.models import NotificationEvent, NotificationType
from offer_engine.notifications.threads import NullThreadBridge, ThreadBridge
from offer_engine.notifications.webhook import LoggingNotifier, WebhookNotifier

__all__ = [
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationType",
    "Notifier",
    "NullThreadBridge",
    "ThreadBridge",
    "WebhookNotifier",
]
