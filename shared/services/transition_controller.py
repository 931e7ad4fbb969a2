"""
Контроллер переходов между периодами.

Все методы - чистые функции над SessionState: принимают состояние и момент
времени, возвращают Transition с новым состоянием целиком и списком событий
для журнала и уведомлений. Побочных эффектов здесь нет.

Режимы:
    AUTOMATIC            - текущий период определяется по часам
    MANUALLY_ADVANCED    - период переключён вручную раньше времени
    MANUAL_CLOSING       - "ушёл последний гость", идёт закрытие
    WAITING_FOR_NEXT_DAY - смена закрыта, ждём открытия
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Mapping, Optional, Tuple

from core.exceptions import ClosingBlocked, TransitionRejected
from core.logging.logger import logger
from core.utils.timezone_helper import business_instant
from shared.models.workflow import (
    ControllerMode,
    MissingTask,
    Period,
    ReviewStatus,
    Role,
    SessionState,
    TaskTemplate,
    WorkflowCatalog,
)
from shared.services.period_resolver import resolve
from shared.services.task_tracker import TaskTracker, is_task_complete, merge_missing


@dataclass(frozen=True)
class TransitionEvent:
    """Что произошло при переходе (для журнала и уведомлений)."""
    action: str  # enter, exit, manual_advance, last_customer_left, manual_close, reset, overdue, repaired
    period: Optional[Period] = None
    previous: Optional[Period] = None
    source: str = "auto"
    task: Optional[TaskTemplate] = None
    minutes_late: int = 0
    pending_count: int = 0
    detail: Optional[str] = None


@dataclass(frozen=True)
class Transition:
    """Новое состояние и события перехода."""
    state: SessionState
    events: Tuple[TransitionEvent, ...] = ()

    def then(self, other: "Transition") -> "Transition":
        return Transition(other.state, self.events + other.events)


class TransitionController:
    """Машина состояний периодов для одной роли."""

    ACTIVE_MODES = (ControllerMode.AUTOMATIC, ControllerMode.MANUALLY_ADVANCED)

    def __init__(self, catalog: WorkflowCatalog, role: Role, tracker: Optional[TaskTracker] = None):
        self.catalog = catalog
        self.role = role
        self.tracker = tracker or TaskTracker(catalog)

    @property
    def follows_closing_trigger(self) -> bool:
        """Дежурный менеджер переходит в закрытие вслед за управляющим."""
        return self.role == Role.DUTY_MANAGER

    # ------------------------------------------------------------------
    # Вспомогательные вычисления
    # ------------------------------------------------------------------

    def _instant(self, state: SessionState, now: datetime, clock) -> datetime:
        return business_instant(now, state.business_day, clock, self.catalog.reset_hour)

    def _pending_count(self, period: Optional[Period], state: SessionState) -> int:
        if period is None:
            return 0
        return sum(
            1 for task in period.trackable_tasks_for(self.role)
            if not is_task_complete(task, state.completed_task_ids, state.review_statuses)
        )

    def _with_statuses(self, state: SessionState, now: datetime) -> SessionState:
        statuses = self.tracker.task_statuses(
            state.current_period,
            self.role,
            state.business_day,
            now,
            state.completed_task_ids,
            state.review_statuses,
        )
        if statuses == dict(state.task_statuses):
            return state
        return state.evolve(task_statuses=statuses)

    def _rescan_missing(self, state: SessionState, now: datetime, extra: Iterable[MissingTask] = ()) -> SessionState:
        scanned = self.tracker.missing_tasks(
            self.role,
            state.business_day,
            now,
            state.completed_task_ids,
            current_period_id=state.current_period_id,
        )
        missing = merge_missing(state.missing_tasks, list(extra) + scanned, state.completed_task_ids)
        if missing == state.missing_tasks:
            return state
        return state.evolve(missing_tasks=missing)

    def _change_events(
        self,
        previous: Optional[Period],
        current: Optional[Period],
        state: SessionState,
        source: str,
    ) -> Tuple[TransitionEvent, ...]:
        events = []
        if previous is not None:
            events.append(TransitionEvent("exit", period=previous, source=source))
        if current is not None:
            events.append(TransitionEvent(
                "enter",
                period=current,
                previous=previous,
                source=source,
                pending_count=self._pending_count(current, state),
            ))
        return tuple(events)

    def outstanding_for_closing(self, state: SessionState) -> List[MissingTask]:
        """Всё, что мешает закрыть смену: пропущенные и невыполненные задачи закрытия."""
        outstanding = list(state.missing_tasks)
        if state.current_period is not None:
            known = {item.task.id for item in outstanding}
            outstanding.extend(
                item for item in self.tracker.incomplete_in_period(
                    state.current_period,
                    self.role,
                    state.completed_task_ids,
                    state.review_statuses,
                )
                if item.task.id not in known
            )
        return outstanding

    # ------------------------------------------------------------------
    # Состояние при старте
    # ------------------------------------------------------------------

    def initial_state(
        self,
        business_day: date,
        now: datetime,
        completed_ids: Iterable[str] = (),
        review_statuses: Optional[Mapping[str, ReviewStatus]] = None,
        manually_closed: bool = False,
        closing_triggered: bool = False,
    ) -> Transition:
        """
        Состояние новой сессии.

        Args:
            manually_closed: Смена этой роли уже закрыта сегодня (по журналу)
            closing_triggered: Кто-то уже объявил "ушёл последний гость"
        """
        state = SessionState(
            business_day=business_day,
            completed_task_ids=frozenset(completed_ids),
            review_statuses=dict(review_statuses or {}),
        )
        if manually_closed:
            return Transition(state.evolve(
                mode=ControllerMode.WAITING_FOR_NEXT_DAY,
                next_period=self.catalog.opening,
            ))

        transition = self._follow_clock(state, now, source="auto")
        if closing_triggered and self.follows_closing_trigger:
            transition = transition.then(self.last_customer_left(transition.state, now, source="follow"))
        return transition

    # ------------------------------------------------------------------
    # Периодическая переоценка
    # ------------------------------------------------------------------

    def _follow_clock(self, state: SessionState, now: datetime, source: str = "auto") -> Transition:
        resolution = resolve(self.catalog, now)
        previous = state.current_period
        changed = (previous.id if previous else None) != (resolution.current.id if resolution.current else None)

        new_state = state
        if changed:
            new_state = new_state.evolve(current_period=resolution.current, task_statuses={})
        if new_state.next_period != resolution.next:
            new_state = new_state.evolve(next_period=resolution.next)

        events: Tuple[TransitionEvent, ...] = ()
        if changed:
            new_state = self._rescan_missing(new_state, now)
            events = self._change_events(previous, resolution.current, new_state, source)
            logger.info(
                "Period changed",
                role=self.role.value,
                from_period=previous.id if previous else None,
                to_period=resolution.current.id if resolution.current else None,
                business_day=state.business_day.isoformat(),
            )
        return Transition(self._with_statuses(new_state, now), events)

    def _overdue(self, state: SessionState, now: datetime) -> Transition:
        overdue = self.tracker.overdue_tasks(
            state.current_period,
            self.role,
            state.business_day,
            now,
            state.completed_task_ids,
            state.overdue_notified,
        )
        if not overdue:
            return Transition(state)
        events = tuple(
            TransitionEvent("overdue", period=state.current_period, task=task, minutes_late=minutes)
            for task, minutes in overdue
        )
        notified = state.overdue_notified | {task.id for task, _ in overdue}
        return Transition(state.evolve(overdue_notified=notified), events)

    def _fallback_due(self, state: SessionState, now: datetime) -> bool:
        fallback = self.catalog.closing_fallback_time
        if fallback is None or self.catalog.closing is None:
            return False
        return now >= self._instant(state, now, fallback)

    def tick(self, state: SessionState, now: datetime) -> Transition:
        """
        Переоценка по часам (раз в секунду).

        Выполняет согласование ручного перехода, выход из ожидания,
        резервное закрытие, обновление статусов и поиск просрочек.
        """
        if state.mode == ControllerMode.WAITING_FOR_NEXT_DAY:
            resolution = resolve(self.catalog, now)
            if resolution.current is not None and resolution.current.id == self.catalog.opening.id:
                logger.info("Opening reached, leaving waiting state", role=self.role.value)
                resumed = state.evolve(mode=ControllerMode.AUTOMATIC)
                return self._follow_clock(resumed, now)
            return Transition(state)

        if state.mode == ControllerMode.MANUAL_CLOSING:
            return Transition(self._with_statuses(state, now))

        if self._fallback_due(state, now):
            logger.warning(
                "Closing fallback time reached without last-customer signal",
                role=self.role.value,
                business_day=state.business_day.isoformat(),
            )
            return self.last_customer_left(state, now, source="fallback")

        transition = Transition(state)
        if state.mode == ControllerMode.MANUALLY_ADVANCED:
            transition = self.reconcile(state, now)
            if transition.state.mode == ControllerMode.MANUALLY_ADVANCED:
                current = Transition(self._with_statuses(transition.state, now), transition.events)
                return current.then(self._overdue(current.state, now))

        transition = transition.then(self._follow_clock(transition.state, now))
        return transition.then(self._overdue(transition.state, now))

    def refresh_missing(self, state: SessionState, now: datetime) -> Transition:
        """Пересчёт пропущенных задач (раз в 30 секунд и при смене периода)."""
        if state.mode == ControllerMode.WAITING_FOR_NEXT_DAY:
            return Transition(state)
        return Transition(self._rescan_missing(state, now))

    # ------------------------------------------------------------------
    # Ручные переходы
    # ------------------------------------------------------------------

    def advance_to(self, state: SessionState, now: datetime, period_id: Optional[str] = None) -> Transition:
        """
        Перейти к следующему периоду раньше времени.

        Невыполненные задачи покидаемого (и пропускаемых) периодов
        попадают в список пропущенных.

        Raises:
            TransitionRejected: Переход невозможен в текущем режиме или к этому периоду
        """
        if state.mode not in self.ACTIVE_MODES:
            raise TransitionRejected("当前状态无法切换时段", reason="invalid_mode")
        current = state.current_period
        if current is None:
            raise TransitionRejected("当前没有进行中的时段", reason="no_current_period")

        if period_id is None:
            target = self.catalog.next_time_bound_after(current.id)
        else:
            target = self.catalog.get(period_id)
            if target is None:
                raise TransitionRejected(f"未知时段: {period_id}", reason="unknown_period")
        if not target.is_time_bound:
            raise TransitionRejected("闭店请使用「最后一位顾客离开」", reason="event_driven_target")
        if target.ordinal <= current.ordinal:
            raise TransitionRejected("只能切换到后续时段", reason="not_forward")

        exited: List[MissingTask] = []
        for period in self.catalog.periods:
            if current.ordinal <= period.ordinal < target.ordinal and period.is_time_bound:
                exited.extend(self.tracker.incomplete_in_period(
                    period, self.role, state.completed_task_ids, state.review_statuses,
                ))

        following = self.catalog.next_time_bound_after(target.id)
        new_state = state.evolve(
            mode=ControllerMode.MANUALLY_ADVANCED,
            manually_advanced_period_id=target.id,
            current_period=target,
            next_period=following if following.ordinal > target.ordinal else None,
            task_statuses={},
        )
        new_state = self._rescan_missing(new_state, now, extra=exited)
        new_state = self._with_statuses(new_state, now)

        logger.info(
            "Period advanced manually",
            role=self.role.value,
            from_period=current.id,
            to_period=target.id,
            missing=len(new_state.missing_tasks),
        )
        events = (TransitionEvent("manual_advance", period=target, previous=current, source="manual"),)
        return Transition(new_state, events + self._change_events(current, target, new_state, "manual"))

    def reconcile(self, state: SessionState, now: datetime) -> Transition:
        """Вернуться в AUTOMATIC, когда время догнало ручной переход."""
        if state.mode != ControllerMode.MANUALLY_ADVANCED:
            return Transition(state)
        target = self.catalog.get(state.manually_advanced_period_id)
        if target is None:
            return Transition(state)

        resolved = resolve(self.catalog, now).current
        caught_up = (resolved is not None and resolved.id == target.id) or \
            self._instant(state, now, target.start_time) <= now
        if not caught_up:
            return Transition(state)

        logger.info("Manual advance reconciled", role=self.role.value, period_id=target.id)
        return Transition(state.evolve(
            mode=ControllerMode.AUTOMATIC,
            manually_advanced_period_id=None,
        ))

    def last_customer_left(self, state: SessionState, now: datetime, source: str = "manual") -> Transition:
        """
        Перейти в закрытие по сигналу "ушёл последний гость".

        Все изменения применяются одной заменой состояния.
        """
        if state.mode not in self.ACTIVE_MODES:
            raise TransitionRejected("已在闭店流程中", reason="invalid_mode")
        closing = self.catalog.closing
        if closing is None:
            raise TransitionRejected("未配置闭店时段", reason="no_closing_period")

        previous = state.current_period
        exited: List[MissingTask] = []
        if previous is not None and previous.is_time_bound:
            exited = self.tracker.incomplete_in_period(
                previous, self.role, state.completed_task_ids, state.review_statuses,
            )

        new_state = state.evolve(
            mode=ControllerMode.MANUAL_CLOSING,
            manually_advanced_period_id=None,
            current_period=self.tracker.period_for(closing, self.role),
            next_period=None,
            task_statuses={},
        )
        new_state = self._rescan_missing(new_state, now, extra=exited)
        new_state = self._with_statuses(new_state, now)

        logger.info(
            "Last customer left, closing started",
            role=self.role.value,
            source=source,
            from_period=previous.id if previous else None,
            missing=len(new_state.missing_tasks),
        )
        events = (TransitionEvent("last_customer_left", period=new_state.current_period, previous=previous, source=source),)
        return Transition(new_state, events + self._change_events(previous, new_state.current_period, new_state, source))

    def closing_complete(self, state: SessionState, now: datetime) -> Transition:
        """
        Подтвердить закрытие смены.

        Raises:
            TransitionRejected: Смена не в режиме закрытия
            ClosingBlocked: Есть пропущенные или невыполненные задачи закрытия
        """
        if state.mode != ControllerMode.MANUAL_CLOSING:
            raise TransitionRejected("请先确认最后一位顾客已离开", reason="not_closing")

        outstanding = self.outstanding_for_closing(state)
        if outstanding:
            raise ClosingBlocked(f"还有 {len(outstanding)} 项任务未完成，无法闭店", outstanding)

        closing = state.current_period
        new_state = state.evolve(
            mode=ControllerMode.WAITING_FOR_NEXT_DAY,
            manually_advanced_period_id=None,
            current_period=None,
            next_period=self.catalog.opening,
            missing_tasks=(),
            task_statuses={},
        )
        logger.info("Closing completed", role=self.role.value, business_day=state.business_day.isoformat())
        events = (
            TransitionEvent("manual_close", period=closing, source="manual"),
            TransitionEvent("exit", period=closing, source="manual"),
        )
        return Transition(new_state, events)

    # ------------------------------------------------------------------
    # Данные из хранилища
    # ------------------------------------------------------------------

    def apply_completion(self, state: SessionState, now: datetime, task_id: str) -> Transition:
        """Учесть подтверждённую хранилищем сдачу задачи."""
        if task_id in state.completed_task_ids and task_id not in state.missing_task_ids:
            return Transition(state)
        new_state = state.evolve(
            completed_task_ids=state.completed_task_ids | {task_id},
            missing_tasks=tuple(item for item in state.missing_tasks if item.task.id != task_id),
        )
        return Transition(self._with_statuses(new_state, now))

    def remove_completion(self, state: SessionState, now: datetime, task_id: str) -> Transition:
        """Вернуть задачу в работу (задача проверки после отклонения)."""
        if task_id not in state.completed_task_ids:
            return Transition(state)
        new_state = state.evolve(completed_task_ids=state.completed_task_ids - {task_id})
        return Transition(self._with_statuses(new_state, now))

    def apply_review_statuses(
        self,
        state: SessionState,
        now: datetime,
        statuses: Mapping[str, ReviewStatus],
    ) -> Transition:
        merged = dict(state.review_statuses)
        merged.update(statuses)
        if merged == dict(state.review_statuses):
            return Transition(state)
        return Transition(self._with_statuses(state.evolve(review_statuses=merged), now))

    def apply_data(
        self,
        state: SessionState,
        now: datetime,
        completed_ids: Iterable[str],
        review_statuses: Mapping[str, ReviewStatus],
        closing_triggered: bool = False,
    ) -> Transition:
        """Полное обновление данными хранилища (раз в минуту)."""
        completed = frozenset(completed_ids)
        new_state = state.evolve(
            completed_task_ids=completed,
            review_statuses=dict(review_statuses),
            missing_tasks=tuple(item for item in state.missing_tasks if item.task.id not in completed),
        )
        transition = Transition(self._with_statuses(new_state, now))
        if closing_triggered and self.follows_closing_trigger and new_state.mode in self.ACTIVE_MODES:
            transition = transition.then(self.last_customer_left(transition.state, now, source="follow"))
        return transition

    # ------------------------------------------------------------------
    # Сброс и самопроверка
    # ------------------------------------------------------------------

    def reset(self, state: SessionState, business_day: date, now: datetime) -> Transition:
        """Начать новый рабочий день: всё состояние сессии очищается."""
        fresh = SessionState(business_day=business_day)
        transition = Transition(fresh, (TransitionEvent(
            "reset",
            previous=state.current_period,
            source="system",
            detail=state.business_day.isoformat(),
        ),))
        return transition.then(self._follow_clock(fresh, now, source="system"))

    def self_check(self, state: SessionState, now: datetime) -> Transition:
        """
        Найти и исправить недопустимое состояние.

        Исправление: AUTOMATIC по часам (или WAITING без текущего периода).
        """
        problem = None
        if state.mode == ControllerMode.MANUAL_CLOSING and state.current_period is None:
            problem = "manual closing without current period"
        elif state.mode == ControllerMode.MANUALLY_ADVANCED and (
            state.manually_advanced_period_id is None
            or self.catalog.get(state.manually_advanced_period_id) is None
        ):
            problem = "manual advance without valid target"
        elif state.current_period is not None and self.catalog.get(state.current_period.id) is None:
            problem = f"unknown current period {state.current_period.id}"
        elif state.mode == ControllerMode.AUTOMATIC and state.current_period is not None \
                and state.current_period.is_event_driven:
            problem = "event-driven period current in automatic mode"
        elif state.mode == ControllerMode.WAITING_FOR_NEXT_DAY and state.current_period is not None:
            problem = "current period set while waiting for next day"

        if problem is None:
            return Transition(state)

        logger.warning(
            "Invalid session state repaired",
            role=self.role.value,
            problem=problem,
            mode=state.mode.value,
            business_day=state.business_day.isoformat(),
        )
        event = TransitionEvent("repaired", previous=state.current_period, source="system", detail=problem)

        if state.mode == ControllerMode.WAITING_FOR_NEXT_DAY:
            return Transition(state.evolve(current_period=None, next_period=self.catalog.opening), (event,))

        repaired = state.evolve(
            mode=ControllerMode.AUTOMATIC,
            manually_advanced_period_id=None,
            current_period=None,
            task_statuses={},
        )
        return Transition(repaired, (event,)).then(self._follow_clock(repaired, now, source="system"))
