"""Unit-тесты для сессии рабочего дня."""

import pytest
from unittest.mock import AsyncMock
from datetime import date

from core.exceptions import ClosingBlocked, PersistenceError, TransitionRejected
from core.state.session_state_store import SessionStateStore
from shared.models.workflow import ControllerMode, ReviewStatus, Role
from shared.services.shift_session import ApplyCompletion, ShiftSession, Tick


@pytest.fixture
def make_session(clock, store, journal, notifier):
    """Фабрика сессий с общими часами, хранилищем и журналом."""
    def _make(catalog, role=Role.MANAGER, **kwargs):
        return ShiftSession(catalog, role, store, clock=clock, journal=journal, notifier=notifier, **kwargs)
    return _make


class TestStart:
    """Тесты для запуска сессии."""

    @pytest.mark.asyncio
    async def test_start_by_clock(self, make_session, scenario_catalog, journal, mock_sender):
        session = make_session(scenario_catalog)

        state = await session.start()
        await session.flush_notifications()

        assert state.mode == ControllerMode.AUTOMATIC
        assert state.current_period.id == "opening"
        assert [entry.action for entry in journal.entries] == ["enter"]
        mock_sender.send.assert_awaited_once_with(
            "新时段开始",
            "开店时段已开始，您有 1 个任务待完成",
            {"type": "period_start"},
        )

    @pytest.mark.asyncio
    async def test_state_before_start(self, make_session, scenario_catalog):
        session = make_session(scenario_catalog)

        assert session.is_started is False
        with pytest.raises(RuntimeError):
            _ = session.state

    @pytest.mark.asyncio
    async def test_restart_after_closing(self, make_session, scenario_catalog, clock, at):
        """Смена, закрытая по журналу, после перезапуска ждёт следующего дня."""
        clock.set(at(12, 0))
        session = make_session(scenario_catalog)
        await session.start()
        await session.complete_task("opening-task-1")
        await session.complete_task("lunch-task-1")
        await session.last_customer_left()
        await session.complete_closing()

        restarted = make_session(scenario_catalog)
        state = await restarted.start()

        assert state.mode == ControllerMode.WAITING_FOR_NEXT_DAY

    @pytest.mark.asyncio
    async def test_restore_from_snapshot(self, make_session, scenario_catalog, clock, at):
        clock.set(at(12, 0))
        state_store = SessionStateStore(backend="memory")
        session = make_session(scenario_catalog, state_store=state_store)
        await session.start()
        await session.last_customer_left()
        await session.close()

        restarted = make_session(scenario_catalog, state_store=state_store)
        state = await restarted.start()

        assert state.mode == ControllerMode.MANUAL_CLOSING
        assert state.current_period.id == "closing"
        assert "lunch-task-1" in state.missing_task_ids


class TestCommands:
    """Тесты для команд сессии."""

    @pytest.mark.asyncio
    async def test_complete_task(self, make_session, scenario_catalog):
        session = make_session(scenario_catalog)
        await session.start()

        record = await session.complete_task("opening-task-1")

        assert record.task_id == "opening-task-1"
        assert "opening-task-1" in session.state.completed_task_ids
        assert session.state.task_statuses["opening-task-1"].completed is True
        assert session.progress().completed_tasks == 1

    @pytest.mark.asyncio
    async def test_store_failure_keeps_state(self, make_session, scenario_catalog, store):
        session = make_session(scenario_catalog)
        await session.start()
        before = session.state
        store.submit = AsyncMock(side_effect=PersistenceError("db down"))

        with pytest.raises(PersistenceError):
            await session.complete_task("opening-task-1")

        assert session.state is before

    @pytest.mark.asyncio
    async def test_floating_task_not_completed(self, make_session, scenario_catalog):
        session = make_session(scenario_catalog)
        await session.start()

        await session.complete_task("floating-incident", {"text": "冰柜异响"})
        await session.complete_task("floating-incident", {"text": "已报修"})

        assert await session.submission_count("floating-incident") == 2
        assert "floating-incident" not in session.state.completed_task_ids

    @pytest.mark.asyncio
    async def test_stale_command_dropped(self, make_session, scenario_catalog):
        session = make_session(scenario_catalog)
        await session.start()
        before = session.state

        state = await session.dispatch(ApplyCompletion(date(2024, 4, 30), "opening-task-1"))

        assert state is before

    @pytest.mark.asyncio
    async def test_unknown_command(self, make_session, scenario_catalog):
        session = make_session(scenario_catalog)
        await session.start()

        with pytest.raises(ValueError):
            await session.dispatch(object())

    @pytest.mark.asyncio
    async def test_rejected_transition_keeps_state(self, make_session, scenario_catalog):
        session = make_session(scenario_catalog)
        await session.start()
        before = session.state

        with pytest.raises(TransitionRejected):
            await session.complete_closing()

        assert session.state is before

    @pytest.mark.asyncio
    async def test_advance_and_reconcile(self, make_session, scenario_catalog, clock, journal, at):
        session = make_session(scenario_catalog)
        await session.start()

        await session.advance_period("lunch-service")
        assert session.state.mode == ControllerMode.MANUALLY_ADVANCED
        assert session.completion_view().missing_tasks[0].task.id == "opening-task-1"

        clock.set(at(11, 30))
        await session.tick()

        assert session.state.mode == ControllerMode.AUTOMATIC
        assert "manual_advance" in [entry.action for entry in journal.entries]

    @pytest.mark.asyncio
    async def test_overdue_notification(self, make_session, scenario_catalog, clock, mock_sender, at):
        clock.set(at(11, 45))
        session = make_session(scenario_catalog)
        await session.start()
        await session.flush_notifications()
        mock_sender.send.reset_mock()

        clock.set(at(12, 5))
        await session.tick()
        await session.tick()
        await session.flush_notifications()

        mock_sender.send.assert_awaited_once_with(
            "任务逾期提醒",
            "\"巡台\"任务已逾期 5 分钟，请尽快完成",
            {"type": "task_overdue"},
        )


class TestDailyReset:
    """Тесты для сброса рабочего дня из таймера."""

    @pytest.mark.asyncio
    async def test_reset_on_tick(self, make_session, scenario_catalog, clock, journal, at):
        session = make_session(scenario_catalog)
        await session.start()
        await session.complete_task("opening-task-1")

        clock.set(at(10, 0, date(2024, 5, 2)))
        state = await session.dispatch(Tick())

        assert state.business_day == date(2024, 5, 2)
        assert state.completed_task_ids == frozenset()
        assert state.current_period.id == "opening"
        assert "reset" in [entry.action for entry in journal.entries]

    @pytest.mark.asyncio
    async def test_backward_jump_does_not_reset_twice(self, make_session, scenario_catalog, clock, journal, at):
        session = make_session(scenario_catalog)
        await session.start()

        clock.set(at(10, 0, date(2024, 5, 2)))
        await session.tick()
        clock.set(at(9, 59, date(2024, 5, 2)))
        await session.tick()
        clock.set(at(10, 1, date(2024, 5, 2)))
        await session.tick()

        resets = [entry for entry in journal.entries if entry.action == "reset"]
        assert len(resets) == 1
        assert session.state.business_day == date(2024, 5, 2)


class TestReviewWorkflow:
    """Тесты для проверки задач дежурного менеджера управляющим."""

    @pytest.mark.asyncio
    async def test_reject_then_approve(self, make_session, review_catalog, clock, journal, at):
        clock.set(at(21, 0))
        manager = make_session(review_catalog, Role.MANAGER)
        duty = make_session(review_catalog, Role.DUTY_MANAGER)
        await manager.start()
        await duty.start()
        await manager.complete_task("opening-task-1")

        # Проверять нечего, пока задача не сдана
        with pytest.raises(TransitionRejected) as exc_info:
            await manager.approve_review("closing-duty-1")
        assert exc_info.value.reason == "not_submitted"

        await manager.last_customer_left()
        assert [t.id for t in manager.state.current_period.tasks_for(Role.MANAGER)] == ["review-closing-duty-1"]

        # Дежурный менеджер следует за сигналом закрытия
        await duty.refresh_data()
        assert duty.state.mode == ControllerMode.MANUAL_CLOSING
        await duty.complete_task("closing-duty-1", {"photos": ["gas.jpg"]})
        await duty.complete_task("closing-duty-2")
        assert duty.state.review_statuses["closing-duty-1"] == ReviewStatus.PENDING

        await manager.reject_review("closing-duty-1", "照片不清楚")
        assert manager.state.review_statuses["closing-duty-1"] == ReviewStatus.REJECTED
        with pytest.raises(ClosingBlocked) as blocked:
            await manager.complete_closing()
        assert [item.task.id for item in blocked.value.outstanding] == ["review-closing-duty-1"]

        await duty.complete_task("closing-duty-1", {"photos": ["gas-2.jpg"]})
        await manager.refresh_data()
        assert manager.state.review_statuses["closing-duty-1"] == ReviewStatus.PENDING

        await manager.approve_review("closing-duty-1")
        assert "review-closing-duty-1" in manager.state.completed_task_ids

        await manager.complete_closing()
        await duty.complete_closing()

        assert manager.state.mode == ControllerMode.WAITING_FOR_NEXT_DAY
        assert duty.state.mode == ControllerMode.WAITING_FOR_NEXT_DAY
        assert await journal.has_manually_closed(Role.DUTY_MANAGER, date(2024, 5, 1))

    @pytest.mark.asyncio
    async def test_only_reviewer_can_decide(self, make_session, review_catalog, clock, at):
        clock.set(at(21, 0))
        duty = make_session(review_catalog, Role.DUTY_MANAGER)
        await duty.start()

        with pytest.raises(TransitionRejected) as exc_info:
            await duty.approve_review("closing-duty-1")
        assert exc_info.value.reason == "not_reviewer"

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, make_session, review_catalog, clock, at):
        clock.set(at(21, 0))
        manager = make_session(review_catalog, Role.MANAGER)
        await manager.start()

        with pytest.raises(TransitionRejected) as exc_info:
            await manager.reject_review("closing-duty-1", "  ")
        assert exc_info.value.reason == "reject_reason_required"

    @pytest.mark.asyncio
    async def test_decision_only_for_pending(self, make_session, review_catalog, clock, store, at):
        """Повторное решение без новой сдачи отклоняется, состояние не меняется."""
        clock.set(at(21, 0))
        manager = make_session(review_catalog, Role.MANAGER)
        duty = make_session(review_catalog, Role.DUTY_MANAGER)
        await manager.start()
        await duty.start()
        await duty.complete_task("closing-duty-1", {"photos": ["gas.jpg"]})
        await manager.refresh_data()

        await manager.reject_review("closing-duty-1", "照片不清楚")
        rejected_state = manager.state

        # Отклонённую задачу нельзя одобрить без повторной сдачи
        with pytest.raises(TransitionRejected) as exc_info:
            await manager.approve_review("closing-duty-1")
        assert exc_info.value.reason == "not_pending"
        assert manager.state is rejected_state
        assert await store.fetch_review_statuses(date(2024, 5, 1)) == {"closing-duty-1": ReviewStatus.REJECTED}

        await duty.complete_task("closing-duty-1", {"photos": ["gas-2.jpg"]})
        await manager.refresh_data()
        await manager.approve_review("closing-duty-1")
        approved_state = manager.state

        # Одобренную задачу нельзя отклонить задним числом
        with pytest.raises(TransitionRejected) as exc_info:
            await manager.reject_review("closing-duty-1", "再看一次")
        assert exc_info.value.reason == "not_pending"
        assert manager.state is approved_state
        assert manager.state.review_statuses["closing-duty-1"] == ReviewStatus.APPROVED
        assert "review-closing-duty-1" in manager.state.completed_task_ids
        assert await store.fetch_review_statuses(date(2024, 5, 1)) == {"closing-duty-1": ReviewStatus.APPROVED}
