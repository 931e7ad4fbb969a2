"""
Сессия рабочего дня одной роли.

Сессия владеет единственным SessionState. Любое изменение проходит через
dispatch(команда): команды выполняются строго по очереди под asyncio.Lock,
поэтому таймеры и действия оператора не могут перемешать частичные записи.

Обращения к хранилищу (сдача задачи, решение проверяющего, обновление
данных) выполняются до dispatch, вне блокировки: состояние меняется только
после того, как хранилище подтвердило операцию.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Mapping, Optional, Set

from core.clock.clock_source import ClockSource, SystemClock
from core.logging.logger import logger
from core.utils.timezone_helper import business_day_of
from domain.entities.task_record import TaskRecord
from shared.models.workflow import (
    BusinessStatus,
    CompletionView,
    ProgressSummary,
    ReviewStatus,
    Role,
    SessionState,
    WorkflowCatalog,
)
from shared.services.daily_reset import DailyResetScheduler
from shared.services.notification_service import NotificationService
from shared.services.period_resolver import business_status
from shared.services.period_transition_journal import PeriodTransitionJournal, TransitionAction
from shared.services.review_service import ReviewOutcome, ReviewService, resolve_task
from shared.services.task_tracker import TaskTracker
from shared.services.transition_controller import Transition, TransitionController, TransitionEvent


# ----------------------------------------------------------------------
# Команды
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Tick:
    """Переоценка по часам (сброс дня, самопроверка, периоды, просрочки)."""


@dataclass(frozen=True)
class RefreshMissingTasks:
    """Пересчёт пропущенных задач."""


@dataclass(frozen=True)
class RefreshData:
    business_day: date
    completed_ids: frozenset
    review_statuses: Mapping[str, ReviewStatus] = field(default_factory=dict)
    closing_triggered: bool = False


@dataclass(frozen=True)
class AdvancePeriod:
    period_id: Optional[str] = None


@dataclass(frozen=True)
class LastCustomerLeft:
    source: str = "manual"


@dataclass(frozen=True)
class CompleteClosing:
    pass


@dataclass(frozen=True)
class ApplyCompletion:
    business_day: date
    task_id: str
    review_status: Optional[ReviewStatus] = None


@dataclass(frozen=True)
class ApplyReviewOutcome:
    business_day: date
    outcome: ReviewOutcome


@dataclass(frozen=True)
class ResetDay:
    """Принудительный сброс (например, после смены тестового времени)."""
    business_day: date


JOURNAL_ACTIONS = {
    "enter": TransitionAction.ENTER,
    "exit": TransitionAction.EXIT,
    "manual_advance": TransitionAction.MANUAL_ADVANCE,
    "last_customer_left": TransitionAction.LAST_CUSTOMER_LEFT,
    "manual_close": TransitionAction.MANUAL_CLOSE,
    "reset": TransitionAction.RESET,
}


class ShiftSession:
    """Сессия дашборда одной роли."""

    def __init__(
        self,
        catalog: WorkflowCatalog,
        role: Role,
        store,
        clock: Optional[ClockSource] = None,
        journal: Optional[PeriodTransitionJournal] = None,
        notifier: Optional[NotificationService] = None,
        state_store=None,
    ):
        self.catalog = catalog
        self.role = role
        self.store = store
        self.clock = clock or SystemClock()
        self.journal = journal or PeriodTransitionJournal()
        self.notifier = notifier or NotificationService()
        self.state_store = state_store

        self.tracker = TaskTracker(catalog, store)
        self.controller = TransitionController(catalog, role, self.tracker)
        self.reviews = ReviewService(catalog, store)
        self.reset_scheduler = DailyResetScheduler(catalog.reset_hour)

        self._state: Optional[SessionState] = None
        self._last_reset_day: Optional[date] = None
        self._lock = asyncio.Lock()
        self._notification_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Чтение состояния
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._state is None:
            raise RuntimeError("Session not started. Call start() first.")
        return self._state

    @property
    def is_started(self) -> bool:
        return self._state is not None

    def completion_view(self) -> CompletionView:
        state = self.state
        return CompletionView(completed_task_ids=state.completed_task_ids, missing_tasks=state.missing_tasks)

    def progress(self) -> ProgressSummary:
        state = self.state
        return self.tracker.progress(self.role, state.completed_task_ids, state.missing_tasks, state.review_statuses)

    def business_status(self) -> BusinessStatus:
        return business_status(self.catalog, self.clock.now(), self.state)

    # ------------------------------------------------------------------
    # Жизненный цикл
    # ------------------------------------------------------------------

    async def start(self) -> SessionState:
        """
        Запустить сессию: восстановить снимок текущего рабочего дня
        или построить состояние по часам, журналу и хранилищу.
        """
        now = self.clock.now()
        business_day = business_day_of(now, self.catalog.reset_hour)

        completed = await self.store.fetch_completed_ids(self.role, business_day)
        review_statuses = await self.store.fetch_review_statuses(business_day)

        restored = None
        if self.state_store is not None:
            restored = await self.state_store.load(self.role, self.catalog, business_day)

        async with self._lock:
            if restored is not None:
                logger.info("Session restored from snapshot", role=self.role.value, mode=restored.mode.value)
                transition = self.controller.apply_data(restored, now, completed, review_statuses)
            else:
                manually_closed = await self.journal.has_manually_closed(self.role, business_day)
                closing_triggered = await self.journal.closing_triggered(business_day)
                transition = self.controller.initial_state(
                    business_day,
                    now,
                    completed_ids=completed,
                    review_statuses=review_statuses,
                    manually_closed=manually_closed,
                    closing_triggered=closing_triggered,
                )
            self._last_reset_day = business_day
            self.reset_scheduler.observe(now)
            await self._commit(transition)

        logger.info(
            "Shift session started",
            role=self.role.value,
            business_day=business_day.isoformat(),
            mode=self.state.mode.value,
            period=self.state.current_period_id,
        )
        return self.state

    async def close(self) -> None:
        """Остановить сессию: дождаться уведомлений и сохранить снимок."""
        await self.flush_notifications()
        if self.state_store is not None and self._state is not None:
            await self.state_store.save(self.role, self._state)
        logger.info("Shift session closed", role=self.role.value)

    # ------------------------------------------------------------------
    # Команды
    # ------------------------------------------------------------------

    async def dispatch(self, command: Any) -> SessionState:
        """
        Выполнить команду над состоянием.

        Raises:
            TransitionRejected: Переход отклонён, состояние не изменилось
        """
        async with self._lock:
            now = self.clock.now()
            transition = self._reduce(self.state, command, now)
            await self._commit(transition)
            return self._state

    def _reduce(self, state: SessionState, command: Any, now) -> Transition:
        controller = self.controller

        if isinstance(command, Tick):
            transition = Transition(state)
            event = self.reset_scheduler.check_and_reset(now, self._last_reset_day)
            if event is not None:
                self._last_reset_day = event.business_day
                transition = controller.reset(state, event.business_day, now)
            transition = transition.then(controller.self_check(transition.state, now))
            return transition.then(controller.tick(transition.state, now))

        if isinstance(command, RefreshMissingTasks):
            return controller.refresh_missing(state, now)

        if isinstance(command, AdvancePeriod):
            return controller.advance_to(state, now, command.period_id)

        if isinstance(command, LastCustomerLeft):
            return controller.last_customer_left(state, now, source=command.source)

        if isinstance(command, CompleteClosing):
            return controller.closing_complete(state, now)

        if isinstance(command, ResetDay):
            self._last_reset_day = command.business_day
            self.reset_scheduler.observe(now)
            return controller.reset(state, command.business_day, now)

        if not isinstance(command, (ApplyCompletion, ApplyReviewOutcome, RefreshData)):
            raise ValueError(f"Unknown command: {command!r}")

        # Данные другого рабочего дня отбрасываются
        if command.business_day != state.business_day:
            logger.warning(
                "Stale command dropped",
                command=command.__class__.__name__,
                command_day=command.business_day.isoformat(),
                business_day=state.business_day.isoformat(),
            )
            return Transition(state)

        if isinstance(command, ApplyCompletion):
            transition = controller.apply_completion(state, now, command.task_id)
            if command.review_status is not None:
                transition = transition.then(controller.apply_review_statuses(
                    transition.state, now, {command.task_id: command.review_status},
                ))
            return transition

        if isinstance(command, ApplyReviewOutcome):
            outcome = command.outcome
            transition = controller.apply_review_statuses(state, now, {outcome.original_task_id: outcome.status})
            if outcome.status == ReviewStatus.APPROVED:
                return transition.then(controller.apply_completion(transition.state, now, outcome.review_task_id))
            return transition.then(controller.remove_completion(transition.state, now, outcome.review_task_id))

        return controller.apply_data(
            state,
            now,
            command.completed_ids,
            command.review_statuses,
            closing_triggered=command.closing_triggered,
        )

    async def _commit(self, transition: Transition) -> None:
        """Заменить состояние целиком и обработать события перехода."""
        previous = self._state
        self._state = transition.state

        for event in transition.events:
            await self._journal(event)
            self._notify(event)

        if self.state_store is not None and transition.state != previous:
            await self.state_store.save(self.role, transition.state)

    async def _journal(self, event: TransitionEvent) -> None:
        action = JOURNAL_ACTIONS.get(event.action)
        if action is None:
            return
        to_period = None
        if event.action in ("exit", "manual_close"):
            from_period = event.period.id if event.period else None
        else:
            from_period = event.previous.id if event.previous else None
            to_period = event.period.id if event.period else None
        payload = {"previous_business_day": event.detail} if event.action == "reset" else None
        try:
            await self.journal.record(
                self.role,
                self._state.business_day,
                action,
                from_period_id=from_period,
                to_period_id=to_period,
                source=event.source,
                payload=payload,
            )
        except Exception as e:
            logger.error(f"Failed to record period transition: {e}", action=event.action, role=self.role.value)

    def _notify(self, event: TransitionEvent) -> None:
        if event.action == "enter" and event.period is not None:
            coro = self.notifier.notify_period_start(event.period.display_name, event.pending_count)
        elif event.action == "overdue" and event.task is not None:
            coro = self.notifier.notify_overdue(event.task.title, event.minutes_late)
        else:
            return
        task = asyncio.create_task(coro)
        self._notification_tasks.add(task)
        task.add_done_callback(self._notification_tasks.discard)

    async def flush_notifications(self) -> None:
        """Дождаться отправки уже запущенных уведомлений."""
        if self._notification_tasks:
            await asyncio.gather(*list(self._notification_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Операции для UI
    # ------------------------------------------------------------------

    async def tick(self) -> SessionState:
        return await self.dispatch(Tick())

    async def refresh_missing_tasks(self) -> SessionState:
        return await self.dispatch(RefreshMissingTasks())

    async def refresh_data(self) -> SessionState:
        """Перечитать выполненные задачи, статусы проверки и сигнал закрытия."""
        business_day = self.state.business_day
        completed = await self.store.fetch_completed_ids(self.role, business_day)
        review_statuses = await self.store.fetch_review_statuses(business_day)
        closing_triggered = await self.journal.closing_triggered(business_day)
        return await self.dispatch(RefreshData(
            business_day=business_day,
            completed_ids=frozenset(completed),
            review_statuses=review_statuses,
            closing_triggered=closing_triggered,
        ))

    async def advance_period(self, period_id: Optional[str] = None) -> SessionState:
        return await self.dispatch(AdvancePeriod(period_id))

    async def last_customer_left(self) -> SessionState:
        return await self.dispatch(LastCustomerLeft())

    async def complete_closing(self) -> SessionState:
        return await self.dispatch(CompleteClosing())

    async def reset_day(self) -> SessionState:
        now = self.clock.now()
        return await self.dispatch(ResetDay(business_day_of(now, self.catalog.reset_hour)))

    async def complete_task(self, task_id: str, evidence: Optional[Dict[str, Any]] = None) -> TaskRecord:
        """
        Сдать задачу: сначала хранилище, потом состояние.

        При ошибке хранилища состояние не меняется.
        """
        business_day = self.state.business_day
        record = await self.tracker.complete(self.role, business_day, task_id, evidence, self.clock.now())

        task = resolve_task(self.catalog, task_id)
        if task is not None and not task.is_floating:
            review_status = ReviewStatus.PENDING if task.reviewer_role is not None else None
            await self.dispatch(ApplyCompletion(business_day, task.id, review_status))
        return record

    async def submission_count(self, task_id: str) -> int:
        return await self.tracker.submission_count(self.role, self.state.business_day, task_id)

    async def approve_review(self, task_id: str) -> SessionState:
        """Одобрить задачу task_id (исходную задачу, не задачу проверки)."""
        business_day = self.state.business_day
        outcome = await self.reviews.approve(self.role, business_day, task_id, self.clock.now())
        return await self.dispatch(ApplyReviewOutcome(business_day, outcome))

    async def reject_review(self, task_id: str, reason: str) -> SessionState:
        business_day = self.state.business_day
        outcome = await self.reviews.reject(self.role, business_day, task_id, reason, self.clock.now())
        return await self.dispatch(ApplyReviewOutcome(business_day, outcome))
