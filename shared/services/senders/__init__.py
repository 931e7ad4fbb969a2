"""Отправщики уведомлений."""

from .log_sender import LogNotificationSender
from .webhook_sender import WebhookNotificationSender

__all__ = [
    "LogNotificationSender",
    "WebhookNotificationSender",
]
