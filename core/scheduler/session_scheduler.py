"""Планировщик таймеров сессии рабочего дня."""

import asyncio
from typing import Awaitable, Callable, List, Optional

from core.config.settings import settings
from core.logging.logger import logger


class SessionScheduler:
    """
    Таймеры сессии: проверка периодов (1 с), пересчёт пропущенных задач (30 с),
    полное обновление данных (60 с).

    Таймеры только отправляют команды в сессию, состояние они не трогают.
    """

    def __init__(
        self,
        session,
        check_interval: Optional[float] = None,
        missing_interval: Optional[float] = None,
        refresh_interval: Optional[float] = None,
    ):
        """Инициализация планировщика."""
        self.session = session
        self.is_running = False
        self.check_interval = check_interval or settings.period_check_interval_seconds
        self.missing_interval = missing_interval or settings.missing_tasks_refresh_seconds
        self.refresh_interval = refresh_interval or settings.data_refresh_seconds
        self._tasks: List[asyncio.Task] = []

        logger.info(
            "SessionScheduler initialized",
            check_interval=self.check_interval,
            missing_interval=self.missing_interval,
            refresh_interval=self.refresh_interval,
        )

    async def start(self):
        """Запуск таймеров."""
        if self.is_running:
            logger.warning("SessionScheduler is already running")
            return

        self.is_running = True
        self._tasks = [
            asyncio.create_task(self._run_every(self.check_interval, self.session.tick, "tick")),
            asyncio.create_task(self._run_every(self.missing_interval, self.session.refresh_missing_tasks, "missing")),
            asyncio.create_task(self._run_every(self.refresh_interval, self.session.refresh_data, "refresh")),
        ]
        logger.info("SessionScheduler started", role=getattr(self.session.role, "value", None))

    async def stop(self):
        """Остановка таймеров."""
        self.is_running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("SessionScheduler stopped")

    async def _run_every(self, interval: float, job: Callable[[], Awaitable], name: str):
        while self.is_running:
            await asyncio.sleep(interval)
            if not self.is_running:
                break
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Сбой одного цикла не останавливает таймер
                logger.error(f"Session timer error: {e}", timer=name)
