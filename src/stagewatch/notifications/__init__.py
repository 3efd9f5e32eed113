"""Multi-channel notification dispatch (in-app, email, SMS)."""

from stagewatch.notifications.dispatcher import NotificationDispatcher
from stagewatch.notifications.models import Channel, DispatchResult, Notification, Recipient

__all__ = ["Channel", "DispatchResult", "Notification", "NotificationDispatcher", "Recipient"]
