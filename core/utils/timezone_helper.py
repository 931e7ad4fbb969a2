"""Утилиты для работы с временными зонами и рабочими днями."""

from datetime import datetime, date, time, timedelta
import pytz
from core.config.settings import settings
from core.logging.logger import logger


class TimezoneHelper:
    """Помощник для работы с временными зонами."""

    def __init__(self, default_timezone: str = None):
        """
        Инициализация помощника временных зон.

        Args:
            default_timezone: Временная зона по умолчанию
        """
        self.default_timezone_str = default_timezone or settings.default_timezone
        try:
            self.default_timezone = pytz.timezone(self.default_timezone_str)
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown timezone {self.default_timezone_str}, using UTC")
            self.default_timezone = pytz.UTC

    def now(self) -> datetime:
        """Текущее время в зоне ресторана."""
        return datetime.now(self.default_timezone)

    def localize(self, naive_datetime: datetime) -> datetime:
        """
        Привязывает наивное время к зоне ресторана.

        Уже aware-время переводится в зону ресторана.
        """
        if naive_datetime.tzinfo is not None:
            return naive_datetime.astimezone(self.default_timezone)
        return self.default_timezone.localize(naive_datetime)


def parse_clock_time(value: str) -> time:
    """
    Разбирает время суток в формате HH:MM.

    Raises:
        ValueError: Если строка не в формате HH:MM
    """
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM") from e


def business_day_of(moment: datetime, reset_hour: int) -> date:
    """
    Рабочий день, к которому относится момент.

    Рабочий день начинается в reset_hour по местному времени и длится
    24 часа: в 02:00 ещё идёт вчерашний рабочий день.
    """
    if moment.hour >= reset_hour:
        return moment.date()
    return moment.date() - timedelta(days=1)


def anchor(moment: datetime, day: date, clock: time) -> datetime:
    """
    Момент времени clock в календарный день day в зоне исходного момента.

    Для зон pytz смещение берётся на дату day, а не с исходного момента.
    """
    naive = datetime.combine(day, clock)
    tz = moment.tzinfo
    if tz is None:
        return naive
    localize = getattr(tz, "localize", None)
    if localize is not None:
        return localize(naive)
    return naive.replace(tzinfo=tz)


def business_instant(moment: datetime, business_day: date, clock: time, reset_hour: int) -> datetime:
    """
    Момент времени суток clock внутри рабочего дня business_day.

    Время раньше часа сброса относится к следующей календарной дате.
    """
    day = business_day if clock.hour >= reset_hour else business_day + timedelta(days=1)
    return anchor(moment, day, clock)


# Глобальный экземпляр
timezone_helper = TimezoneHelper()
