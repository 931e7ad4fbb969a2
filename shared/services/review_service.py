"""
Проверка задач дежурного менеджера.

Задача с reviewer_role после сдачи порождает задачу проверки
review-<task_id> для проверяющей роли. Решение проверяющего пишется
в отчёт исходной задачи: approved или rejected с причиной.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional

from core.exceptions import TransitionRejected, UnknownTaskError
from core.logging.logger import logger
from shared.models.workflow import (
    Period,
    ReviewStatus,
    Role,
    TaskTemplate,
    UploadRequirement,
    WorkflowCatalog,
)

REVIEW_TASK_PREFIX = "review-"
REVIEW_TITLE_PREFIX = "审核："


def review_task_id(task_id: str) -> str:
    return f"{REVIEW_TASK_PREFIX}{task_id}"


def review_task_for(original: TaskTemplate) -> TaskTemplate:
    """Задача проверки для исходной задачи (одна и та же при каждом вызове)."""
    if original.reviewer_role is None:
        raise ValueError(f"Task {original.id} does not require review")
    return TaskTemplate(
        id=review_task_id(original.id),
        title=f"{REVIEW_TITLE_PREFIX}{original.title}",
        role=original.reviewer_role,
        description=original.description,
        upload_requirement=UploadRequirement.REVIEW,
        linked_task_ids=(original.id,),
        autogenerated=True,
        period_id=original.period_id,
    )


def resolve_task(catalog: WorkflowCatalog, task_id: str) -> Optional[TaskTemplate]:
    """Найти задачу каталога или сгенерированную задачу проверки."""
    task = catalog.find_task(task_id)
    if task is not None:
        return task
    if task_id.startswith(REVIEW_TASK_PREFIX):
        original = catalog.find_task(task_id[len(REVIEW_TASK_PREFIX):])
        if original is not None and original.reviewer_role is not None:
            return review_task_for(original)
    return None


def review_tasks_for_period(period: Period, reviewer: Role) -> List[TaskTemplate]:
    """Задачи проверки, которые роль reviewer должна выполнить в периоде."""
    return [
        review_task_for(task)
        for task in period.tasks
        if task.reviewer_role == reviewer
    ]


def augment_with_reviews(period: Period, reviewer: Role) -> Period:
    return period.with_extra_tasks(review_tasks_for_period(period, reviewer))


def originals_approved(task: TaskTemplate, review_statuses: Mapping[str, ReviewStatus]) -> bool:
    return all(review_statuses.get(linked) == ReviewStatus.APPROVED for linked in task.linked_task_ids)


@dataclass(frozen=True)
class ReviewOutcome:
    """Результат решения проверяющего."""
    original_task_id: str
    review_task_id: str
    status: ReviewStatus
    reason: Optional[str] = None


class ReviewService:
    """Решения по задачам проверки."""

    def __init__(self, catalog: WorkflowCatalog, store):
        self.catalog = catalog
        self.store = store

    def _original(self, task_id: str) -> TaskTemplate:
        task = self.catalog.find_task(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        if task.reviewer_role is None:
            raise TransitionRejected(f"任务「{task.title}」无需审核", reason="review_not_required")
        return task

    async def approve(
        self,
        reviewer: Role,
        business_day: date,
        task_id: str,
        decided_at: datetime,
    ) -> ReviewOutcome:
        """
        Одобрить исходную задачу и отметить задачу проверки выполненной.

        Raises:
            TransitionRejected: Роль не является проверяющей или задача не сдана
            PersistenceError: Хранилище недоступно
        """
        original = self._original(task_id)
        self._check_reviewer(original, reviewer)
        review_task = review_task_for(original)

        await self.store.review_decision(business_day, original.id, ReviewStatus.APPROVED, decided_at=decided_at)
        await self.store.submit(
            reviewer,
            business_day,
            review_task,
            {"decision": ReviewStatus.APPROVED.value},
            decided_at,
        )
        logger.info(
            "Review approved",
            task_id=original.id,
            reviewer=reviewer.value,
            business_day=business_day.isoformat(),
        )
        return ReviewOutcome(original.id, review_task.id, ReviewStatus.APPROVED)

    async def reject(
        self,
        reviewer: Role,
        business_day: date,
        task_id: str,
        reason: str,
        decided_at: datetime,
    ) -> ReviewOutcome:
        """Отклонить исходную задачу и вернуть задачу проверки в работу."""
        if not reason or not reason.strip():
            raise TransitionRejected("请填写驳回原因", reason="reject_reason_required")
        original = self._original(task_id)
        self._check_reviewer(original, reviewer)
        review_task = review_task_for(original)

        await self.store.review_decision(
            business_day,
            original.id,
            ReviewStatus.REJECTED,
            reason=reason.strip(),
            decided_at=decided_at,
        )
        await self.store.reopen(reviewer, business_day, review_task.id)
        logger.info(
            "Review rejected",
            task_id=original.id,
            reviewer=reviewer.value,
            reason=reason,
            business_day=business_day.isoformat(),
        )
        return ReviewOutcome(original.id, review_task.id, ReviewStatus.REJECTED, reason.strip())

    async def statuses(self, business_day: date) -> Dict[str, ReviewStatus]:
        return await self.store.fetch_review_statuses(business_day)

    @staticmethod
    def _check_reviewer(original: TaskTemplate, reviewer: Role) -> None:
        if original.reviewer_role != reviewer:
            raise TransitionRejected(
                f"只有{original.reviewer_role.value}可以审核「{original.title}」",
                reason="not_reviewer",
            )
