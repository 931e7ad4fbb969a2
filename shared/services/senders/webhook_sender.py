"""HTTP webhook отправщик уведомлений (доставку push выполняет внешний сервис)."""

import asyncio
from typing import Any, Dict, Optional

import httpx

from core.config.settings import settings
from core.logging.logger import logger


class WebhookNotificationSender:
    """Отправляет уведомление POST-запросом с JSON."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Инициализация отправщика.

        Args:
            url: Адрес webhook (по умолчанию из settings)
            transport: Транспорт httpx (для тестов)
        """
        self.url = url or settings.notification_webhook_url
        if not self.url:
            raise ValueError("Notification webhook URL is not configured")
        self.timeout = timeout or settings.notification_timeout_seconds
        self.max_retries = max_retries or settings.notification_max_retries
        self.retry_delay = retry_delay
        self.transport = transport

    async def send(self, title: str, message: str, data: Optional[Dict[str, Any]] = None) -> bool:
        payload = {
            "title": title,
            "body": message,
            "data": data or {},
        }
        return await self._send_with_retry(payload)

    async def _send_with_retry(self, payload: Dict[str, Any]) -> bool:
        """
        Отправка с повторными попытками.

        Ответ 4xx не повторяется, сетевые ошибки и 5xx повторяются
        с линейно растущей задержкой.
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(self.url, json=payload)
                    response.raise_for_status()
                    return True

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    if status < 500:
                        logger.warning(
                            "Webhook rejected notification",
                            status_code=status,
                            title=payload["title"],
                        )
                        return False
                    logger.warning(
                        f"Webhook server error, attempt {attempt + 1}/{self.max_retries}",
                        status_code=status,
                    )

                except httpx.HTTPError as e:
                    logger.warning(
                        f"Webhook network error, attempt {attempt + 1}/{self.max_retries}",
                        error=str(e),
                    )

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        return False
