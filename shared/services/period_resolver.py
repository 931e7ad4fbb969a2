"""
Определение текущего и следующего периода по времени.

Резолвер не хранит состояния: результат зависит только от каталога и
переданного момента времени.
"""

from datetime import datetime, timedelta
from typing import Iterator, Optional, Tuple

from core.utils.timezone_helper import anchor
from shared.models.workflow import (
    BusinessStatus,
    ControllerMode,
    Period,
    Resolution,
    SessionState,
    WorkflowCatalog,
)


def period_window(period: Period, now: datetime, day_offset: int = 0) -> Tuple[datetime, datetime]:
    """
    Границы периода, привязанные к календарной дате now (со сдвигом в днях).

    Если конец раньше начала, период заканчивается на следующий день.
    """
    day = now.date() + timedelta(days=day_offset)
    start = anchor(now, day, period.start_time)
    end = anchor(now, day, period.end_time)
    if end <= start:
        end += timedelta(days=1)
    return start, end


def _windows(period: Period, now: datetime) -> Iterator[Tuple[datetime, datetime]]:
    # Вчерашний экземпляр нужен для периодов через полночь
    yield period_window(period, now, -1)
    yield period_window(period, now, 0)


def resolve(catalog: WorkflowCatalog, now: datetime) -> Resolution:
    """
    Текущий и следующий период для момента now.

    Событийные периоды (закрытие) по времени не определяются никогда.
    """
    current: Optional[Period] = None
    for period in catalog.time_bound_periods:
        if any(start <= now < end for start, end in _windows(period, now)):
            current = period
            break

    upcoming: Optional[Tuple[datetime, Period]] = None
    for period in catalog.time_bound_periods:
        for day_offset in (0, 1):
            start = anchor(now, now.date() + timedelta(days=day_offset), period.start_time)
            if start > now and (upcoming is None or start < upcoming[0]):
                upcoming = (start, period)

    return Resolution(current=current, next=upcoming[1] if upcoming else None)


def business_status(
    catalog: WorkflowCatalog,
    now: datetime,
    state: Optional[SessionState] = None,
) -> BusinessStatus:
    """Статус работы ресторана для шапки дашборда."""
    if state is not None and state.mode == ControllerMode.WAITING_FOR_NEXT_DAY:
        return BusinessStatus(status="closed", message="已打烊 Closed", next_period=catalog.opening)
    if state is not None and state.mode == ControllerMode.MANUAL_CLOSING and state.current_period:
        return BusinessStatus(
            status="closing",
            message=state.current_period.display_name,
            period=state.current_period,
        )

    resolution = resolve(catalog, now)
    if state is not None and state.mode == ControllerMode.MANUALLY_ADVANCED and state.current_period:
        period = state.current_period
    else:
        period = resolution.current

    if period is not None:
        status = "opening" if period.id == catalog.opening.id else "operating"
        return BusinessStatus(
            status=status,
            message=period.display_name,
            period=period,
            next_period=resolution.next,
        )

    # Промежуток между периодами
    opening_start = anchor(now, now.date(), catalog.opening.start_time)
    if now < opening_start and resolution.next is not None and resolution.next.id == catalog.opening.id:
        return BusinessStatus(status="closed", message="营业前 Pre-Opening", next_period=resolution.next)
    if resolution.next is not None and resolution.next.id != catalog.opening.id:
        return BusinessStatus(status="closed", message="午间休息 Afternoon Break", next_period=resolution.next)
    return BusinessStatus(status="closed", message="已打烊 Closed", next_period=resolution.next)


class PeriodResolver:
    """Обёртка над resolve() с привязанным каталогом."""

    def __init__(self, catalog: WorkflowCatalog):
        self.catalog = catalog

    def resolve(self, now: datetime) -> Resolution:
        return resolve(self.catalog, now)

    def current(self, now: datetime) -> Optional[Period]:
        return resolve(self.catalog, now).current

    def next(self, now: datetime) -> Optional[Period]:
        return resolve(self.catalog, now).next

    def business_status(self, now: datetime, state: Optional[SessionState] = None) -> BusinessStatus:
        return business_status(self.catalog, now, state)
