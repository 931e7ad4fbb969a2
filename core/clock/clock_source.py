"""Источники текущего времени."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from core.logging.logger import logger
from core.utils.timezone_helper import TimezoneHelper, timezone_helper


class ClockSource(ABC):
    """Источник "сейчас" для резолвера, трекера и планировщика."""

    @abstractmethod
    def now(self) -> datetime:
        """Текущий момент в зоне ресторана."""


class SystemClock(ClockSource):
    """
    Реальное время с возможностью глобального тестового смещения.

    Смещение общее для всех экземпляров процесса: все роли видят одно и то же
    тестовое время. Это инструмент демонстрации, а не механизм синхронизации.
    """

    _test_offset: Optional[timedelta] = None

    def __init__(self, helper: Optional[TimezoneHelper] = None):
        self.helper = helper or timezone_helper

    def now(self) -> datetime:
        real_now = self.helper.now()
        offset = SystemClock._test_offset
        if offset is None:
            return real_now
        return real_now + offset

    @classmethod
    def set_test_time(cls, moment: datetime, helper: Optional[TimezoneHelper] = None) -> None:
        """Включить тестовое время: часы продолжают идти от указанного момента."""
        helper = helper or timezone_helper
        cls._test_offset = helper.localize(moment) - helper.now()
        logger.info("Global test time enabled", test_time=moment.isoformat())

    @classmethod
    def clear_test_time(cls) -> None:
        cls._test_offset = None
        logger.info("Global test time cleared")

    @classmethod
    def has_test_time(cls) -> bool:
        return cls._test_offset is not None


class FixedClock(ClockSource):
    """Управляемые часы для тестов и симуляции дня."""

    def __init__(self, moment: datetime):
        self._moment = moment

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = moment

    def advance(self, **delta) -> datetime:
        """Сдвинуть часы, например advance(minutes=15)."""
        self._moment = self._moment + timedelta(**delta)
        return self._moment
