"""Ежедневный сброс рабочего дня в час сброса (по умолчанию 10:00)."""

from datetime import date, datetime
from typing import Optional

from core.logging.logger import logger
from core.utils.timezone_helper import business_day_of
from shared.models.workflow import ResetEvent


def reset_due(
    previous: Optional[datetime],
    now: datetime,
    last_reset_day: Optional[date],
    reset_hour: int,
) -> Optional[ResetEvent]:
    """
    Событие сброса, если между previous и now пересечена граница рабочего дня.

    Срабатывает по фронту: нужен предыдущий наблюдённый момент. Рабочий день,
    для которого сброс уже был, повторно не сбрасывается, даже если часы
    ушли назад и снова пересекли границу.
    """
    if previous is None:
        return None
    current_day = business_day_of(now, reset_hour)
    previous_day = business_day_of(previous, reset_hour)
    if current_day <= previous_day:
        return None
    if last_reset_day is not None and current_day <= last_reset_day:
        return None
    return ResetEvent(business_day=current_day, previous_business_day=previous_day, fired_at=now)


class DailyResetScheduler:
    """Отслеживает пересечение часа сброса между вызовами."""

    def __init__(self, reset_hour: int):
        self.reset_hour = reset_hour
        self._last_observed: Optional[datetime] = None

    @property
    def last_observed(self) -> Optional[datetime]:
        return self._last_observed

    def observe(self, now: datetime) -> None:
        """Запомнить момент без проверки (при старте сессии)."""
        self._last_observed = now

    def check_and_reset(self, now: datetime, last_reset_day: Optional[date]) -> Optional[ResetEvent]:
        previous = self._last_observed
        self._last_observed = now
        event = reset_due(previous, now, last_reset_day, self.reset_hour)
        if event is not None:
            logger.info(
                "Daily reset boundary crossed",
                business_day=event.business_day.isoformat(),
                previous_business_day=event.previous_business_day.isoformat(),
                reset_hour=self.reset_hour,
            )
        return event
