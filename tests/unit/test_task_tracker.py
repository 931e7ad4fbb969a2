"""Unit-тесты для трекера выполнения задач."""

import pytest
from datetime import date

from core.exceptions import EvidenceValidationError, TransitionRejected, UnknownTaskError
from shared.models.workflow import MissingTask, ReviewStatus, Role, TaskTemplate, UploadRequirement
from shared.services.task_tracker import (
    TaskTracker,
    is_task_complete,
    merge_missing,
    validate_evidence,
)


def _task(task_id: str, upload: UploadRequirement = UploadRequirement.NONE) -> TaskTemplate:
    return TaskTemplate(id=task_id, title=task_id, role=Role.MANAGER, upload_requirement=upload)


class TestValidateEvidence:
    """Тесты для проверки отчёта."""

    def test_no_requirement(self):
        assert validate_evidence(_task("t1"), None) == {}

    def test_photo_required(self):
        with pytest.raises(EvidenceValidationError):
            validate_evidence(_task("t1", UploadRequirement.PHOTO), {"photos": []})

    def test_blank_text_rejected(self):
        with pytest.raises(EvidenceValidationError):
            validate_evidence(_task("t1", UploadRequirement.TEXT), {"text": "   "})

    def test_valid_checklist(self):
        payload = validate_evidence(_task("t1", UploadRequirement.CHECKLIST), {"items": ["ok"], "note": "x"})

        assert payload == {"items": ["ok"], "note": "x"}


class TestMergeMissing:
    """Тесты для объединения списков пропущенных задач."""

    def test_order_and_dedupe(self):
        a = MissingTask(task=_task("a"), period_name="开店")
        b = MissingTask(task=_task("b"), period_name="开店")
        c = MissingTask(task=_task("c"), period_name="午市")

        merged = merge_missing([a, b], [b, c], completed_ids=set())

        assert [item.task.id for item in merged] == ["a", "b", "c"]

    def test_completed_removed(self):
        a = MissingTask(task=_task("a"), period_name="开店")
        b = MissingTask(task=_task("b"), period_name="开店")

        merged = merge_missing([a], [b], completed_ids={"a"})

        assert [item.task.id for item in merged] == ["b"]


class TestMissingTasks:
    """Тесты для вычисления пропущенных задач."""

    def test_nothing_missing_during_period(self, scenario_catalog, business_day, at):
        tracker = TaskTracker(scenario_catalog)

        assert tracker.missing_tasks(Role.MANAGER, business_day, at(10, 15), set(), "opening") == []

    def test_ended_period_tasks_missing(self, scenario_catalog, business_day, at):
        tracker = TaskTracker(scenario_catalog)

        missing = tracker.missing_tasks(Role.MANAGER, business_day, at(11, 0), set())

        assert [(item.task.id, item.period_name) for item in missing] == [("opening-task-1", "开店")]

    def test_notice_never_missing(self, scenario_catalog, business_day, at):
        tracker = TaskTracker(scenario_catalog)

        missing = tracker.missing_tasks(Role.MANAGER, business_day, at(15, 0), {"opening-task-1"})

        assert [item.task.id for item in missing] == ["lunch-task-1"]

    def test_current_period_excluded(self, scenario_catalog, business_day, at):
        tracker = TaskTracker(scenario_catalog)

        missing = tracker.missing_tasks(Role.MANAGER, business_day, at(15, 0), set(), "lunch-service")

        assert [item.task.id for item in missing] == ["opening-task-1"]

    def test_after_midnight_same_business_day(self, scenario_catalog, business_day, at):
        """В 02:00 следующей даты идёт тот же рабочий день."""
        tracker = TaskTracker(scenario_catalog)

        missing = tracker.missing_tasks(Role.CHEF, business_day, at(2, 0, date(2024, 5, 2)), set())

        assert [item.task.id for item in missing] == ["opening-chef-1"]

    def test_monotonic_over_day(self, scenario_catalog, business_day, at):
        """Без новых выполнений список пропущенных только растёт."""
        tracker = TaskTracker(scenario_catalog)
        previous = set()
        for hour in range(10, 24):
            current = {item.task.id for item in tracker.missing_tasks(Role.MANAGER, business_day, at(hour, 0), set())}
            assert previous <= current
            previous = current


class TestTaskStatuses:
    """Тесты для статусов и просрочек."""

    def test_overdue_by_task_deadline(self, scenario_catalog, business_day, at):
        tracker = TaskTracker(scenario_catalog)
        lunch = scenario_catalog.get("lunch-service")

        statuses = tracker.task_statuses(lunch, Role.MANAGER, business_day, at(12, 5), set())

        assert statuses["lunch-task-1"].overdue is True
        assert "lunch-notice-1" not in statuses

    def test_overdue_reported_once(self, scenario_catalog, business_day, at):
        tracker = TaskTracker(scenario_catalog)
        lunch = scenario_catalog.get("lunch-service")

        first = tracker.overdue_tasks(lunch, Role.MANAGER, business_day, at(12, 20), set())
        second = tracker.overdue_tasks(lunch, Role.MANAGER, business_day, at(12, 25), set(), {"lunch-task-1"})

        assert [(task.id, minutes) for task, minutes in first] == [("lunch-task-1", 20)]
        assert second == []

    def test_review_task_needs_approval(self, review_catalog):
        tracker = TaskTracker(review_catalog)
        closing = tracker.period_for(review_catalog.closing, Role.MANAGER)
        review = closing.tasks_for(Role.MANAGER)[0]

        assert review.id == "review-closing-duty-1"
        assert not is_task_complete(review, {review.id}, {"closing-duty-1": ReviewStatus.PENDING})
        assert is_task_complete(review, {review.id}, {"closing-duty-1": ReviewStatus.APPROVED})

    def test_progress(self, scenario_catalog):
        tracker = TaskTracker(scenario_catalog)

        progress = tracker.progress(Role.MANAGER, {"opening-task-1"})

        assert progress.total_tasks == 2
        assert progress.completed_tasks == 1
        assert progress.completion_rate == 50


class TestComplete:
    """Тесты для сдачи задач."""

    @pytest.mark.asyncio
    async def test_complete_and_resubmit(self, scenario_catalog, store, business_day, at):
        """Повторная сдача замещает отчёт, задача остаётся выполненной."""
        tracker = TaskTracker(scenario_catalog, store)

        await tracker.complete(Role.MANAGER, business_day, "opening-task-1", None, at(10, 5))
        await tracker.complete(Role.MANAGER, business_day, "opening-task-1", None, at(10, 6))

        assert await tracker.fetch_completed(Role.MANAGER, business_day) == {"opening-task-1"}
        assert len([r for r in store.records if r.is_active]) == 1

    @pytest.mark.asyncio
    async def test_floating_not_tracked(self, scenario_catalog, store, business_day, at):
        tracker = TaskTracker(scenario_catalog, store)

        for minute in range(3):
            await tracker.complete(Role.MANAGER, business_day, "floating-incident", {"text": "漏水"}, at(12, minute))

        assert await tracker.submission_count(Role.MANAGER, business_day, "floating-incident") == 3
        assert await tracker.fetch_completed(Role.MANAGER, business_day) == set()

    @pytest.mark.asyncio
    async def test_notice_rejected(self, scenario_catalog, store, business_day, at):
        tracker = TaskTracker(scenario_catalog, store)

        with pytest.raises(TransitionRejected) as exc_info:
            await tracker.complete(Role.MANAGER, business_day, "lunch-notice-1", None, at(12, 0))

        assert exc_info.value.reason == "notice_task"
        assert store.records == []

    @pytest.mark.asyncio
    async def test_wrong_role_rejected(self, scenario_catalog, store, business_day, at):
        tracker = TaskTracker(scenario_catalog, store)

        with pytest.raises(TransitionRejected) as exc_info:
            await tracker.complete(Role.CHEF, business_day, "opening-task-1", None, at(10, 5))

        assert exc_info.value.reason == "wrong_role"

    @pytest.mark.asyncio
    async def test_unknown_task(self, scenario_catalog, store, business_day, at):
        tracker = TaskTracker(scenario_catalog, store)

        with pytest.raises(UnknownTaskError):
            await tracker.complete(Role.MANAGER, business_day, "no-such-task", None, at(10, 5))

    @pytest.mark.asyncio
    async def test_missing_evidence(self, scenario_catalog, store, business_day, at):
        tracker = TaskTracker(scenario_catalog, store)

        with pytest.raises(EvidenceValidationError):
            await tracker.complete(Role.CHEF, business_day, "opening-chef-1", {}, at(10, 5))
        assert store.records == []
