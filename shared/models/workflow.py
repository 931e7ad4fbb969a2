"""Модели данных рабочего дня: периоды, шаблоны задач и состояние сессии."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple


class Role(str, Enum):
    """Роли сотрудников."""
    MANAGER = "manager"            # Управляющий зала (前厅)
    CHEF = "chef"                  # Шеф-повар (后厨)
    DUTY_MANAGER = "duty_manager"  # Дежурный менеджер (值班经理)


class UploadRequirement(str, Enum):
    """Какой отчёт требуется при выполнении задачи."""
    NONE = "none"
    PHOTO = "photo"
    TEXT = "text"
    AUDIO = "audio"
    CHECKLIST = "checklist"
    REVIEW = "review"  # Проверка чужой задачи (审核)


class ReviewStatus(str, Enum):
    """Статус проверки задачи."""
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ControllerMode(str, Enum):
    """Режим контроллера переходов между периодами."""
    AUTOMATIC = "automatic"
    MANUALLY_ADVANCED = "manually_advanced"
    MANUAL_CLOSING = "manual_closing"
    WAITING_FOR_NEXT_DAY = "waiting_for_next_day"


@dataclass(frozen=True)
class TaskTemplate:
    """Шаблон задачи из конфигурации ресторана."""

    id: str
    title: str
    role: Role
    description: str = ""
    upload_requirement: UploadRequirement = UploadRequirement.NONE
    is_notice: bool = False      # Информационная, не выполняется
    is_floating: bool = False    # Можно сдавать сколько угодно раз, не отслеживается
    linked_task_ids: Tuple[str, ...] = ()
    autogenerated: bool = False
    reviewer_role: Optional[Role] = None  # Требует проверки этой ролью
    period_id: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @property
    def is_review(self) -> bool:
        return self.upload_requirement == UploadRequirement.REVIEW and bool(self.linked_task_ids)

    @property
    def is_trackable(self) -> bool:
        """Задача участвует в учёте выполненных/пропущенных."""
        return not self.is_notice and not self.is_floating


@dataclass(frozen=True)
class Period:
    """Период рабочего дня."""

    id: str
    name: str
    display_name: str
    start_time: Optional[time]
    end_time: Optional[time]
    is_event_driven: bool = False
    ordinal: int = 0
    tasks: Tuple[TaskTemplate, ...] = ()

    @property
    def is_time_bound(self) -> bool:
        return not self.is_event_driven and self.start_time is not None and self.end_time is not None

    def tasks_for(self, role: Role) -> List[TaskTemplate]:
        """Задачи периода для роли."""
        return [task for task in self.tasks if task.role == role]

    def trackable_tasks_for(self, role: Role) -> List[TaskTemplate]:
        return [task for task in self.tasks_for(role) if task.is_trackable]

    def with_extra_tasks(self, extra: Iterable[TaskTemplate]) -> "Period":
        """Копия периода с дополнительными задачами (без дублей по id)."""
        known = {task.id for task in self.tasks}
        added = tuple(task for task in extra if task.id not in known)
        if not added:
            return self
        return replace(self, tasks=self.tasks + added)


@dataclass(frozen=True)
class WorkflowCatalog:
    """Каталог периодов и задач одного ресторана."""

    periods: Tuple[Period, ...]
    floating_tasks: Tuple[TaskTemplate, ...] = ()
    closing_period_id: str = "closing"
    reset_hour: int = 10
    closing_fallback_time: Optional[time] = None
    restaurant_name: str = ""

    def get(self, period_id: Optional[str]) -> Optional[Period]:
        for period in self.periods:
            if period.id == period_id:
                return period
        return None

    @property
    def opening(self) -> Period:
        """Первый период дня."""
        return self.periods[0]

    @property
    def closing(self) -> Optional[Period]:
        return self.get(self.closing_period_id)

    @property
    def time_bound_periods(self) -> List[Period]:
        return [period for period in self.periods if period.is_time_bound]

    def next_time_bound_after(self, period_id: str) -> Period:
        """Следующий по порядку период с фиксированным временем (с переходом на начало дня)."""
        period = self.get(period_id)
        if period is not None:
            for candidate in self.periods:
                if candidate.ordinal > period.ordinal and candidate.is_time_bound:
                    return candidate
        return self.time_bound_periods[0]

    def find_task(self, task_id: str) -> Optional[TaskTemplate]:
        for period in self.periods:
            for task in period.tasks:
                if task.id == task_id:
                    return task
        for task in self.floating_tasks:
            if task.id == task_id:
                return task
        return None


@dataclass(frozen=True)
class Resolution:
    """Результат определения текущего периода."""
    current: Optional[Period]
    next: Optional[Period]


@dataclass(frozen=True)
class MissingTask:
    """Пропущенная задача с названием периода, в котором её пропустили."""
    task: TaskTemplate
    period_name: str
    period_id: Optional[str] = None


@dataclass(frozen=True)
class TaskStatus:
    """Статус задачи текущего периода."""
    task_id: str
    completed: bool = False
    overdue: bool = False
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SessionState:
    """Единое состояние сессии сотрудника. Заменяется целиком при каждом переходе."""

    business_day: date
    mode: ControllerMode = ControllerMode.AUTOMATIC
    manually_advanced_period_id: Optional[str] = None
    current_period: Optional[Period] = None
    next_period: Optional[Period] = None
    completed_task_ids: FrozenSet[str] = frozenset()
    missing_tasks: Tuple[MissingTask, ...] = ()
    task_statuses: Mapping[str, TaskStatus] = field(default_factory=dict)
    overdue_notified: FrozenSet[str] = frozenset()
    review_statuses: Mapping[str, ReviewStatus] = field(default_factory=dict)

    @property
    def is_manual_closing(self) -> bool:
        return self.mode == ControllerMode.MANUAL_CLOSING

    @property
    def is_waiting_for_next_day(self) -> bool:
        return self.mode == ControllerMode.WAITING_FOR_NEXT_DAY

    @property
    def current_period_id(self) -> Optional[str]:
        return self.current_period.id if self.current_period else None

    @property
    def missing_task_ids(self) -> List[str]:
        return [item.task.id for item in self.missing_tasks]

    def evolve(self, **changes) -> "SessionState":
        return replace(self, **changes)


@dataclass(frozen=True)
class CompletionView:
    """Представление выполнения за день (вычисляемое)."""
    completed_task_ids: FrozenSet[str]
    missing_tasks: Tuple[MissingTask, ...]


@dataclass(frozen=True)
class ResetEvent:
    """Событие ежедневного сброса."""
    business_day: date
    previous_business_day: Optional[date]
    fired_at: datetime


@dataclass(frozen=True)
class ProgressSummary:
    """Прогресс сотрудника за рабочий день."""
    role: Role
    total_tasks: int
    completed_tasks: int
    missing_titles: Tuple[str, ...] = ()

    @property
    def pending_tasks(self) -> int:
        return self.total_tasks - self.completed_tasks

    @property
    def completion_rate(self) -> int:
        """Процент выполнения (целое, как в отчётах)."""
        if self.total_tasks == 0:
            return 0
        return round(self.completed_tasks / self.total_tasks * 100)


@dataclass(frozen=True)
class BusinessStatus:
    """Статус работы ресторана для отображения."""
    status: str  # closed | opening | operating | closing
    message: str
    period: Optional[Period] = None
    next_period: Optional[Period] = None
