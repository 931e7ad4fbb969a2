"""Отправщик уведомлений в лог (по умолчанию и для локального запуска)."""

from typing import Any, Dict, Optional

from core.logging.logger import logger


class LogNotificationSender:
    """Пишет уведомление в лог вместо доставки."""

    async def send(self, title: str, message: str, data: Optional[Dict[str, Any]] = None) -> bool:
        logger.info(f"Notification: {title}", body=message, **(data or {}))
        return True
