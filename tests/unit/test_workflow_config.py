"""Unit-тесты для загрузки конфигурации периодов и задач."""

import pytest
from datetime import time

from core.config.workflow_config import build_catalog, load_catalog
from core.exceptions import WorkflowConfigError
from shared.models.workflow import Role, UploadRequirement


def _workflow(*periods, **extra):
    data = {"periods": list(periods)}
    data.update(extra)
    return data


OPENING = {"id": "opening", "display_name": "开店", "start": "10:00", "end": "10:30"}
CLOSING = {"id": "closing", "display_name": "闭店", "event_driven": True}


class TestBuildCatalog:
    """Тесты для проверки конфигурации."""

    def test_minimal(self):
        catalog = build_catalog(_workflow(OPENING, CLOSING), reset_hour=10, closing_fallback_time=None)

        assert [period.id for period in catalog.periods] == ["opening", "closing"]
        assert [period.ordinal for period in catalog.periods] == [0, 1]
        assert catalog.closing.is_event_driven is True
        assert catalog.closing_fallback_time is None

    def test_fallback_override(self):
        catalog = build_catalog(_workflow(OPENING, CLOSING), closing_fallback_time="23:45")

        assert catalog.closing_fallback_time == time(23, 45)

    def test_overlap_rejected(self):
        overlapping = {"id": "prep", "display_name": "备餐", "start": "10:15", "end": "11:00"}

        with pytest.raises(WorkflowConfigError, match="overlap"):
            build_catalog(_workflow(OPENING, overlapping, CLOSING))

    def test_overnight_overlap_rejected(self):
        night = {"id": "night", "display_name": "夜班", "start": "22:00", "end": "10:15"}

        with pytest.raises(WorkflowConfigError):
            build_catalog(_workflow(OPENING, night, CLOSING))

    def test_missing_closing(self):
        with pytest.raises(WorkflowConfigError, match="Closing period"):
            build_catalog(_workflow(OPENING))

    def test_first_period_event_driven(self):
        with pytest.raises(WorkflowConfigError):
            build_catalog(_workflow(CLOSING, OPENING))

    def test_duplicate_task_id(self):
        opening = dict(OPENING, tasks=[
            {"id": "t1", "title": "A", "role": "manager"},
            {"id": "t1", "title": "B", "role": "chef"},
        ])

        with pytest.raises(WorkflowConfigError, match="Duplicate task"):
            build_catalog(_workflow(opening, CLOSING))

    def test_bad_time_format(self):
        with pytest.raises(WorkflowConfigError):
            build_catalog(_workflow(dict(OPENING, start="25:99"), CLOSING))

    def test_time_bound_without_end(self):
        with pytest.raises(WorkflowConfigError):
            build_catalog(_workflow({"id": "opening", "display_name": "开店", "start": "10:00"}, CLOSING))

    def test_reviewer_must_differ(self):
        closing = dict(CLOSING, tasks=[
            {"id": "c1", "title": "A", "role": "manager", "reviewer_role": "manager"},
        ])

        with pytest.raises(WorkflowConfigError):
            build_catalog(_workflow(OPENING, closing))

    def test_unknown_linked_task(self):
        closing = dict(CLOSING, tasks=[
            {"id": "c1", "title": "A", "role": "manager", "linked_tasks": ["ghost"]},
        ])

        with pytest.raises(WorkflowConfigError, match="unknown task"):
            build_catalog(_workflow(OPENING, closing))


class TestDefaultWorkflow:
    """Тесты для встроенной конфигурации."""

    def test_loads(self, default_catalog):
        assert default_catalog.opening.id == "opening"
        assert default_catalog.closing.is_event_driven is True
        assert default_catalog.closing_fallback_time == time(23, 30)

    def test_duty_manager_tasks_reviewed_by_manager(self, default_catalog):
        duty_tasks = default_catalog.closing.tasks_for(Role.DUTY_MANAGER)

        assert duty_tasks
        assert all(task.reviewer_role == Role.MANAGER for task in duty_tasks)

    def test_floating_tasks(self, default_catalog):
        assert all(task.is_floating for task in default_catalog.floating_tasks)
        assert default_catalog.find_task("floating-chef-waste").upload_requirement == UploadRequirement.PHOTO

    def test_missing_file(self, tmp_path):
        with pytest.raises(WorkflowConfigError):
            load_catalog(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("periods: [", encoding="utf-8")

        with pytest.raises(WorkflowConfigError):
            load_catalog(path)
