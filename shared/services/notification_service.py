"""
Сервис уведомлений рабочего дня.

Сессия вызывает его при смене периода и при просрочке задачи и не
зависит от результата: ошибки доставки логируются и не пробрасываются.
"""

from typing import Any, Dict, List, Optional, Sequence

from core.config.settings import settings
from core.logging.logger import logger
from shared.services.senders import LogNotificationSender, WebhookNotificationSender
from shared.templates.notifications import PeriodNotificationType, PeriodTemplateManager


def default_senders() -> List[Any]:
    """Отправщики из настроек: лог всегда, webhook если задан адрес."""
    senders: List[Any] = [LogNotificationSender()]
    if settings.notification_webhook_url:
        senders.append(WebhookNotificationSender())
    return senders


class NotificationService:
    """Рассылка уведомлений через набор отправщиков."""

    def __init__(self, senders: Optional[Sequence[Any]] = None):
        self.senders = list(senders) if senders is not None else default_senders()

    async def notify_period_start(self, period_name: str, pending_count: int) -> bool:
        """Начался новый период."""
        return await self._dispatch(
            PeriodNotificationType.PERIOD_START,
            {"period_name": period_name, "pending_count": pending_count},
        )

    async def notify_overdue(self, task_title: str, minutes_late: int) -> bool:
        """Задача просрочена."""
        return await self._dispatch(
            PeriodNotificationType.TASK_OVERDUE,
            {"task_title": task_title, "minutes_late": minutes_late},
        )

    async def _dispatch(self, notification_type: PeriodNotificationType, variables: Dict[str, Any]) -> bool:
        rendered = PeriodTemplateManager.render(notification_type, variables)
        delivered = False
        for sender in self.senders:
            try:
                if await sender.send(rendered["title"], rendered["message"], {"type": notification_type.value}):
                    delivered = True
            except Exception as e:
                logger.error(
                    f"Error sending notification: {e}",
                    sender=sender.__class__.__name__,
                    type=notification_type.value,
                )
        if not delivered:
            logger.warning("Notification was not delivered", type=notification_type.value)
        return delivered
