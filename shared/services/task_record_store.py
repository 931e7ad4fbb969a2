"""
Хранилище отчётов о выполнении задач.

Ключ отчёта - (роль, рабочий день, задача). Активным может быть только
один отчёт на ключ: повторная сдача создаёт новый отчёт, а старый
помечается is_active = False и остаётся для истории.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import DBAPIError, OperationalError

from core.config.settings import settings
from core.database.session import DatabaseManager, db_manager
from core.exceptions import PersistenceError, TransitionRejected
from core.logging.logger import logger
from domain.entities.task_record import TaskRecord
from shared.models.workflow import ReviewStatus, Role, TaskTemplate

T = TypeVar("T")


def _initial_review_status(task: TaskTemplate) -> str:
    return ReviewStatus.PENDING.value if task.reviewer_role is not None else ReviewStatus.NONE.value


def _check_pending(record: Optional[TaskRecord]) -> None:
    """Решение принимается только по активному отчёту, ожидающему проверки."""
    if record is None:
        raise TransitionRejected("该任务尚未提交，无法审核", reason="not_submitted")
    if record.review_status != ReviewStatus.PENDING.value:
        raise TransitionRejected("该任务已审核，需重新提交后才能再次审核", reason="not_pending")


def _is_transient(error: DBAPIError) -> bool:
    return isinstance(error, OperationalError) or error.connection_invalidated


class TaskRecordStore(ABC):
    """Интерфейс хранилища отчётов."""

    def __init__(self, restaurant_id: Optional[int] = None):
        self.restaurant_id = restaurant_id if restaurant_id is not None else settings.restaurant_id

    @abstractmethod
    async def submit(
        self,
        role: Role,
        business_day: date,
        task: TaskTemplate,
        evidence: Dict[str, Any],
        submitted_at: datetime,
    ) -> TaskRecord:
        """Сохранить отчёт, заместив активный отчёт по тому же ключу."""

    @abstractmethod
    async def fetch_completed_ids(self, role: Role, business_day: date) -> Set[str]:
        """Id задач с активным отчётом (кроме плавающих)."""

    @abstractmethod
    async def submission_count(self, role: Role, business_day: date, task_id: str) -> int:
        """Сколько отчётов сдано по задаче за день."""

    @abstractmethod
    async def review_decision(
        self,
        business_day: date,
        task_id: str,
        decision: ReviewStatus,
        reason: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> None:
        """Записать решение проверяющего в активный отчёт задачи."""

    @abstractmethod
    async def reopen(self, role: Role, business_day: date, task_id: str) -> None:
        """Снять активный отчёт (задача снова не выполнена)."""

    @abstractmethod
    async def fetch_review_statuses(self, business_day: date) -> Dict[str, ReviewStatus]:
        """Статусы проверки активных отчётов за день."""


class InMemoryTaskRecordStore(TaskRecordStore):
    """Хранилище в памяти процесса (тесты и симуляция)."""

    def __init__(self, restaurant_id: Optional[int] = None):
        super().__init__(restaurant_id)
        self._records: List[TaskRecord] = []
        self._lock = asyncio.Lock()

    def _active(self, business_day: date, task_id: str, role: Optional[Role] = None) -> Optional[TaskRecord]:
        for record in reversed(self._records):
            if (
                record.is_active
                and record.business_day == business_day
                and record.task_id == task_id
                and (role is None or record.role == role.value)
            ):
                return record
        return None

    @property
    def records(self) -> List[TaskRecord]:
        return list(self._records)

    async def submit(self, role, business_day, task, evidence, submitted_at):
        async with self._lock:
            if not task.is_floating:
                previous = self._active(business_day, task.id, role)
                if previous is not None:
                    previous.supersede()
            record = TaskRecord(
                id=len(self._records) + 1,
                restaurant_id=self.restaurant_id,
                business_day=business_day,
                task_id=task.id,
                role=role.value,
                upload_requirement=task.upload_requirement.value,
                is_floating=task.is_floating,
                evidence=dict(evidence),
                submitted_at=submitted_at,
                is_active=True,
                review_status=_initial_review_status(task),
            )
            self._records.append(record)
            return record

    async def fetch_completed_ids(self, role, business_day):
        return {
            record.task_id for record in self._records
            if record.is_active
            and not record.is_floating
            and record.role == role.value
            and record.business_day == business_day
        }

    async def submission_count(self, role, business_day, task_id):
        return sum(
            1 for record in self._records
            if record.role == role.value and record.business_day == business_day and record.task_id == task_id
        )

    async def review_decision(self, business_day, task_id, decision, reason=None, decided_at=None):
        async with self._lock:
            record = self._active(business_day, task_id)
            _check_pending(record)
            record.set_review(decision.value, reason, decided_at)

    async def reopen(self, role, business_day, task_id):
        async with self._lock:
            record = self._active(business_day, task_id, role)
            if record is not None:
                record.supersede()

    async def fetch_review_statuses(self, business_day):
        return {
            record.task_id: ReviewStatus(record.review_status)
            for record in self._records
            if record.is_active
            and record.business_day == business_day
            and record.review_status != ReviewStatus.NONE.value
        }


class SqlAlchemyTaskRecordStore(TaskRecordStore):
    """Хранилище в базе данных с повторными попытками при сбоях соединения."""

    def __init__(
        self,
        database: Optional[DatabaseManager] = None,
        restaurant_id: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        super().__init__(restaurant_id)
        self.database = database or db_manager
        self.max_retries = max_retries or settings.persistence_max_retries
        self.retry_delay = settings.persistence_retry_delay if retry_delay is None else retry_delay

    async def _with_retry(self, operation: str, action: Callable[[Any], Awaitable[T]]) -> T:
        """
        Выполнить операцию в новой сессии с повторными попытками.

        Raises:
            PersistenceError: Все попытки завершились сбоем соединения
            DBAPIError: Постоянная ошибка базы данных (без повторов)
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                async with self.database.session() as session:
                    result = await action(session)
                    await session.commit()
                    return result
            except DBAPIError as e:
                if not _is_transient(e):
                    logger.error("Persistence operation failed", operation=operation, error=str(e))
                    raise
                last_error = e
                logger.warning(
                    f"Database error, attempt {attempt + 1}/{self.max_retries}",
                    operation=operation,
                    error=str(e),
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        logger.error("Persistence operation failed", operation=operation, error=str(last_error))
        raise PersistenceError(f"保存失败，请重试 ({operation})") from last_error

    def _active_query(self, business_day: date, task_id: str, role: Optional[Role] = None):
        conditions = [
            TaskRecord.restaurant_id == self.restaurant_id,
            TaskRecord.business_day == business_day,
            TaskRecord.task_id == task_id,
            TaskRecord.is_active.is_(True),
        ]
        if role is not None:
            conditions.append(TaskRecord.role == role.value)
        return select(TaskRecord).where(and_(*conditions)).order_by(TaskRecord.id.desc())

    async def submit(self, role, business_day, task, evidence, submitted_at):
        async def action(session):
            if not task.is_floating:
                await session.execute(
                    update(TaskRecord)
                    .where(and_(
                        TaskRecord.restaurant_id == self.restaurant_id,
                        TaskRecord.business_day == business_day,
                        TaskRecord.task_id == task.id,
                        TaskRecord.role == role.value,
                        TaskRecord.is_active.is_(True),
                    ))
                    .values(is_active=False)
                )
            record = TaskRecord(
                restaurant_id=self.restaurant_id,
                business_day=business_day,
                task_id=task.id,
                role=role.value,
                upload_requirement=task.upload_requirement.value,
                is_floating=task.is_floating,
                evidence=dict(evidence),
                submitted_at=submitted_at,
                is_active=True,
                review_status=_initial_review_status(task),
            )
            session.add(record)
            await session.flush()
            return record

        return await self._with_retry("submit", action)

    async def fetch_completed_ids(self, role, business_day):
        async def action(session):
            result = await session.execute(
                select(TaskRecord.task_id).where(and_(
                    TaskRecord.restaurant_id == self.restaurant_id,
                    TaskRecord.business_day == business_day,
                    TaskRecord.role == role.value,
                    TaskRecord.is_active.is_(True),
                    TaskRecord.is_floating.is_(False),
                ))
            )
            return set(result.scalars().all())

        return await self._with_retry("fetch_completed_ids", action)

    async def submission_count(self, role, business_day, task_id):
        async def action(session):
            result = await session.execute(
                select(func.count(TaskRecord.id)).where(and_(
                    TaskRecord.restaurant_id == self.restaurant_id,
                    TaskRecord.business_day == business_day,
                    TaskRecord.role == role.value,
                    TaskRecord.task_id == task_id,
                ))
            )
            return int(result.scalar() or 0)

        return await self._with_retry("submission_count", action)

    async def review_decision(self, business_day, task_id, decision, reason=None, decided_at=None):
        async def action(session):
            result = await session.execute(self._active_query(business_day, task_id))
            record = result.scalars().first()
            _check_pending(record)
            record.set_review(decision.value, reason, decided_at)

        await self._with_retry("review_decision", action)

    async def reopen(self, role, business_day, task_id):
        async def action(session):
            await session.execute(
                update(TaskRecord)
                .where(and_(
                    TaskRecord.restaurant_id == self.restaurant_id,
                    TaskRecord.business_day == business_day,
                    TaskRecord.task_id == task_id,
                    TaskRecord.role == role.value,
                    TaskRecord.is_active.is_(True),
                ))
                .values(is_active=False)
            )

        await self._with_retry("reopen", action)

    async def fetch_review_statuses(self, business_day):
        async def action(session):
            result = await session.execute(
                select(TaskRecord.task_id, TaskRecord.review_status).where(and_(
                    TaskRecord.restaurant_id == self.restaurant_id,
                    TaskRecord.business_day == business_day,
                    TaskRecord.is_active.is_(True),
                    TaskRecord.review_status != ReviewStatus.NONE.value,
                ))
            )
            return {task_id: ReviewStatus(status) for task_id, status in result.all()}

        return await self._with_retry("fetch_review_statuses", action)
