"""
Учёт выполненных и пропущенных задач за рабочий день.

Выполнение фиксируется в хранилище отчётов, а список пропущенных задач
вычисляется из каталога, текущего момента и множества выполненных id.
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from core.exceptions import EvidenceValidationError, TransitionRejected, UnknownTaskError
from core.logging.logger import logger
from core.utils.timezone_helper import business_instant
from domain.entities.task_record import TaskRecord
from shared.models.workflow import (
    MissingTask,
    Period,
    ProgressSummary,
    ReviewStatus,
    Role,
    TaskStatus,
    TaskTemplate,
    UploadRequirement,
    WorkflowCatalog,
)
from shared.services.review_service import (
    augment_with_reviews,
    originals_approved,
    resolve_task,
)

# Какое поле отчёта обязательно для требования
EVIDENCE_FIELDS = {
    UploadRequirement.PHOTO: "photos",
    UploadRequirement.TEXT: "text",
    UploadRequirement.AUDIO: "audio",
    UploadRequirement.CHECKLIST: "items",
    UploadRequirement.REVIEW: "decision",
}

EVIDENCE_MESSAGES = {
    UploadRequirement.PHOTO: "请上传照片",
    UploadRequirement.TEXT: "请填写文字说明",
    UploadRequirement.AUDIO: "请录制语音",
    UploadRequirement.CHECKLIST: "请完成检查清单",
    UploadRequirement.REVIEW: "请选择审核结果",
}


def validate_evidence(task: TaskTemplate, evidence: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Проверить отчёт по требованию задачи.

    Raises:
        EvidenceValidationError: Обязательное поле отсутствует или пустое
    """
    payload = dict(evidence or {})
    field_name = EVIDENCE_FIELDS.get(task.upload_requirement)
    if field_name is None:
        return payload

    value = payload.get(field_name)
    if isinstance(value, str):
        value = value.strip()
    if not value:
        raise EvidenceValidationError(
            f"「{task.title}」{EVIDENCE_MESSAGES[task.upload_requirement]}"
        )
    return payload


def is_task_complete(
    task: TaskTemplate,
    completed_ids: Iterable[str],
    review_statuses: Optional[Mapping[str, ReviewStatus]] = None,
) -> bool:
    """Задача проверки выполнена, только если все исходные задачи одобрены."""
    if task.id not in completed_ids:
        return False
    if task.is_review:
        return originals_approved(task, review_statuses or {})
    return True


def merge_missing(
    previous: Sequence[MissingTask],
    scanned: Sequence[MissingTask],
    completed_ids: Iterable[str],
) -> Tuple[MissingTask, ...]:
    """
    Объединить ранее пропущенные задачи с результатом сканирования.

    Порядок сохраняется, каждая задача встречается один раз, выполненные убираются.
    """
    completed = set(completed_ids)
    merged: List[MissingTask] = []
    seen: Set[str] = set()
    for item in list(previous) + list(scanned):
        if item.task.id in seen or item.task.id in completed:
            continue
        seen.add(item.task.id)
        merged.append(item)
    return tuple(merged)


class TaskTracker:
    """Трекер выполнения задач одного ресторана."""

    def __init__(self, catalog: WorkflowCatalog, store=None):
        self.catalog = catalog
        self.store = store

    def _deadline(self, business_day: date, now: datetime, clock) -> datetime:
        return business_instant(now, business_day, clock, self.catalog.reset_hour)

    def period_for(self, period: Period, role: Role) -> Period:
        """Период с задачами проверки для роли (для периода закрытия)."""
        if period.id == self.catalog.closing_period_id:
            return augment_with_reviews(period, role)
        return period

    async def complete(
        self,
        role: Role,
        business_day: date,
        task_id: str,
        evidence: Optional[Mapping[str, Any]],
        submitted_at: datetime,
    ) -> TaskRecord:
        """
        Сдать задачу.

        Повторная сдача замещает предыдущий отчёт. Для плавающих задач
        каждая сдача сохраняется отдельно и задача не становится выполненной.

        Raises:
            UnknownTaskError: Задачи нет в каталоге
            TransitionRejected: Задача информационная или чужой роли
            EvidenceValidationError: Отчёт не соответствует требованию
            PersistenceError: Хранилище не приняло отчёт
        """
        task = resolve_task(self.catalog, task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        if task.is_notice:
            raise TransitionRejected(f"「{task.title}」为提示事项，无需提交", reason="notice_task")
        if task.role != role:
            raise TransitionRejected(f"「{task.title}」不属于当前岗位", reason="wrong_role")

        payload = validate_evidence(task, evidence)
        record = await self.store.submit(role, business_day, task, payload, submitted_at)
        logger.info(
            "Task submitted",
            role=role.value,
            task_id=task.id,
            business_day=business_day.isoformat(),
            floating=task.is_floating,
        )
        return record

    async def fetch_completed(self, role: Role, business_day: date) -> Set[str]:
        return await self.store.fetch_completed_ids(role, business_day)

    async def submission_count(self, role: Role, business_day: date, task_id: str) -> int:
        """Сколько раз за день сдана задача (для плавающих задач)."""
        return await self.store.submission_count(role, business_day, task_id)

    def missing_tasks(
        self,
        role: Role,
        business_day: date,
        now: datetime,
        completed_ids: Iterable[str],
        current_period_id: Optional[str] = None,
    ) -> List[MissingTask]:
        """
        Пропущенные задачи роли на момент now.

        Учитываются только периоды с фиксированным временем, которые уже
        закончились в рамках business_day и не являются текущими.
        Событийные периоды (закрытие) не сканируются: их задачи проверяет
        только подтверждение закрытия.
        """
        completed = set(completed_ids)
        missing: List[MissingTask] = []
        for period in self.catalog.time_bound_periods:
            if period.id == current_period_id:
                continue
            if self._deadline(business_day, now, period.end_time) > now:
                continue
            for task in period.trackable_tasks_for(role):
                if task.id not in completed:
                    missing.append(MissingTask(task=task, period_name=period.display_name, period_id=period.id))
        return missing

    def incomplete_in_period(
        self,
        period: Period,
        role: Role,
        completed_ids: Iterable[str],
        review_statuses: Optional[Mapping[str, ReviewStatus]] = None,
    ) -> List[MissingTask]:
        """Невыполненные задачи периода как пропущенные (для ручных переходов)."""
        completed = set(completed_ids)
        return [
            MissingTask(task=task, period_name=period.display_name, period_id=period.id)
            for task in period.trackable_tasks_for(role)
            if not is_task_complete(task, completed, review_statuses)
        ]

    def task_statuses(
        self,
        period: Optional[Period],
        role: Role,
        business_day: date,
        now: datetime,
        completed_ids: Iterable[str],
        review_statuses: Optional[Mapping[str, ReviewStatus]] = None,
    ) -> Dict[str, TaskStatus]:
        """Статусы задач текущего периода."""
        if period is None:
            return {}
        completed = set(completed_ids)
        statuses = {}
        for task in period.trackable_tasks_for(role):
            done = is_task_complete(task, completed, review_statuses)
            deadline = self.task_deadline(task, period, business_day, now)
            statuses[task.id] = TaskStatus(
                task_id=task.id,
                completed=done,
                overdue=not done and deadline is not None and now >= deadline,
            )
        return statuses

    def task_deadline(self, task: TaskTemplate, period: Period, business_day: date, now: datetime) -> Optional[datetime]:
        clock = task.end_time or period.end_time
        if clock is None:
            return None
        return self._deadline(business_day, now, clock)

    def overdue_tasks(
        self,
        period: Optional[Period],
        role: Role,
        business_day: date,
        now: datetime,
        completed_ids: Iterable[str],
        already_notified: Iterable[str] = (),
    ) -> List[Tuple[TaskTemplate, int]]:
        """Просроченные задачи текущего периода, о которых ещё не уведомляли."""
        if period is None:
            return []
        completed = set(completed_ids)
        notified = set(already_notified)
        overdue = []
        for task in period.trackable_tasks_for(role):
            if task.id in completed or task.id in notified:
                continue
            deadline = self.task_deadline(task, period, business_day, now)
            if deadline is not None and now >= deadline:
                minutes_late = int((now - deadline).total_seconds() // 60)
                overdue.append((task, minutes_late))
        return overdue

    def progress(
        self,
        role: Role,
        completed_ids: Iterable[str],
        missing: Sequence[MissingTask] = (),
        review_statuses: Optional[Mapping[str, ReviewStatus]] = None,
    ) -> ProgressSummary:
        """Сводка выполнения роли за день."""
        completed = set(completed_ids)
        tasks: List[TaskTemplate] = []
        for period in self.catalog.periods:
            tasks.extend(self.period_for(period, role).trackable_tasks_for(role))
        done = sum(1 for task in tasks if is_task_complete(task, completed, review_statuses))
        return ProgressSummary(
            role=role,
            total_tasks=len(tasks),
            completed_tasks=done,
            missing_titles=tuple(item.task.title for item in missing),
        )
