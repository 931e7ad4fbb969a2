"""Журнал переходов между периодами."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select

from core.config.settings import settings
from core.database.session import DatabaseManager, db_manager
from core.logging.logger import logger
from domain.entities.period_transition import PeriodTransition
from shared.models.workflow import Role


class TransitionAction(str, Enum):
    """Действия, которые попадают в журнал."""
    ENTER = "enter"
    EXIT = "exit"
    MANUAL_ADVANCE = "manual_advance"
    LAST_CUSTOMER_LEFT = "last_customer_left"
    MANUAL_CLOSE = "manual_close"
    RESET = "reset"


class PeriodTransitionJournal:
    """Журнал в памяти процесса."""

    def __init__(self, restaurant_id: Optional[int] = None):
        self.restaurant_id = restaurant_id if restaurant_id is not None else settings.restaurant_id
        self._entries: List[PeriodTransition] = []

    @property
    def entries(self) -> List[PeriodTransition]:
        return list(self._entries)

    def _build(
        self,
        role: Role,
        business_day: date,
        action: TransitionAction,
        from_period_id: Optional[str],
        to_period_id: Optional[str],
        source: str,
        payload: Optional[Dict[str, Any]],
        created_at: Optional[datetime],
    ) -> PeriodTransition:
        return PeriodTransition(
            restaurant_id=self.restaurant_id,
            business_day=business_day,
            role=role.value,
            action=TransitionAction(action).value,
            source=source,
            from_period_id=from_period_id,
            to_period_id=to_period_id,
            payload=payload,
            created_at=created_at or datetime.now(timezone.utc),
        )

    async def record(
        self,
        role: Role,
        business_day: date,
        action: TransitionAction,
        from_period_id: Optional[str] = None,
        to_period_id: Optional[str] = None,
        source: str = "auto",
        payload: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> PeriodTransition:
        entry = self._build(role, business_day, action, from_period_id, to_period_id, source, payload, created_at)
        entry.id = len(self._entries) + 1
        self._entries.append(entry)
        logger.debug(
            "Period transition recorded",
            role=entry.role,
            action=entry.action,
            from_period=from_period_id,
            to_period=to_period_id,
        )
        return entry

    async def has_manually_closed(self, role: Role, business_day: date) -> bool:
        """Закрывала ли роль смену в этот рабочий день."""
        return any(
            entry.role == role.value
            and entry.business_day == business_day
            and entry.action == TransitionAction.MANUAL_CLOSE.value
            for entry in self._entries
        )

    async def closing_triggered(self, business_day: date) -> bool:
        """Объявлял ли кто-то "ушёл последний гость" в этот рабочий день."""
        return any(
            entry.business_day == business_day
            and entry.action == TransitionAction.LAST_CUSTOMER_LEFT.value
            for entry in self._entries
        )

    async def history(self, business_day: date, role: Optional[Role] = None) -> List[PeriodTransition]:
        return [
            entry for entry in self._entries
            if entry.business_day == business_day and (role is None or entry.role == role.value)
        ]


class SqlAlchemyPeriodTransitionJournal(PeriodTransitionJournal):
    """Журнал в базе данных."""

    def __init__(self, database: Optional[DatabaseManager] = None, restaurant_id: Optional[int] = None):
        super().__init__(restaurant_id)
        self.database = database or db_manager

    async def record(
        self,
        role: Role,
        business_day: date,
        action: TransitionAction,
        from_period_id: Optional[str] = None,
        to_period_id: Optional[str] = None,
        source: str = "auto",
        payload: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> PeriodTransition:
        entry = self._build(role, business_day, action, from_period_id, to_period_id, source, payload, created_at)
        async with self.database.session() as session:
            session.add(entry)
            await session.commit()
        return entry

    async def _exists(self, *conditions) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                select(PeriodTransition.id).where(and_(
                    PeriodTransition.restaurant_id == self.restaurant_id,
                    *conditions,
                )).limit(1)
            )
            return result.scalar() is not None

    async def has_manually_closed(self, role: Role, business_day: date) -> bool:
        return await self._exists(
            PeriodTransition.business_day == business_day,
            PeriodTransition.role == role.value,
            PeriodTransition.action == TransitionAction.MANUAL_CLOSE.value,
        )

    async def closing_triggered(self, business_day: date) -> bool:
        return await self._exists(
            PeriodTransition.business_day == business_day,
            PeriodTransition.action == TransitionAction.LAST_CUSTOMER_LEFT.value,
        )

    async def history(self, business_day: date, role: Optional[Role] = None) -> List[PeriodTransition]:
        conditions = [
            PeriodTransition.restaurant_id == self.restaurant_id,
            PeriodTransition.business_day == business_day,
        ]
        if role is not None:
            conditions.append(PeriodTransition.role == role.value)
        async with self.database.session() as session:
            result = await session.execute(
                select(PeriodTransition).where(and_(*conditions)).order_by(PeriodTransition.id)
            )
            return list(result.scalars().all())
