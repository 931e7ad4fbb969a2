"""
Загрузка каталога периодов и задач ресторана.

Каталог читается из YAML один раз на сессию и дальше не меняется
до конца рабочего дня.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from core.config.settings import settings
from core.exceptions import WorkflowConfigError
from core.logging.logger import logger
from core.utils.timezone_helper import parse_clock_time
from shared.models.workflow import (
    Period,
    Role,
    TaskTemplate,
    UploadRequirement,
    WorkflowCatalog,
)

DEFAULT_WORKFLOW_PATH = Path(__file__).with_name("default_workflow.yaml")

MINUTES_PER_DAY = 24 * 60


def _clock(value: Optional[str]) -> Optional[time]:
    return parse_clock_time(value) if value else None


class TaskSchema(BaseModel):
    """Схема задачи в файле конфигурации."""
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    role: Role
    description: str = ""
    upload: UploadRequirement = UploadRequirement.NONE
    notice: bool = False
    floating: bool = False
    linked_tasks: List[str] = Field(default_factory=list)
    reviewer_role: Optional[Role] = None
    start: Optional[str] = None
    end: Optional[str] = None

    @field_validator('start', 'end')
    @classmethod
    def validate_clock(cls, v):
        """Время в формате HH:MM."""
        if v is not None:
            parse_clock_time(v)
        return v

    @model_validator(mode='after')
    def validate_review(self):
        if self.reviewer_role is not None and self.reviewer_role == self.role:
            raise ValueError(f"Task {self.id}: reviewer_role must differ from role")
        if self.notice and self.floating:
            raise ValueError(f"Task {self.id}: notice task cannot be floating")
        return self

    def to_template(self, period_id: Optional[str]) -> TaskTemplate:
        return TaskTemplate(
            id=self.id,
            title=self.title,
            role=self.role,
            description=self.description,
            upload_requirement=self.upload,
            is_notice=self.notice,
            is_floating=self.floating,
            linked_task_ids=tuple(self.linked_tasks),
            reviewer_role=self.reviewer_role,
            period_id=period_id,
            start_time=_clock(self.start),
            end_time=_clock(self.end),
        )


class PeriodSchema(BaseModel):
    """Схема периода в файле конфигурации."""
    id: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    name: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    event_driven: bool = False
    tasks: List[TaskSchema] = Field(default_factory=list)

    @field_validator('start', 'end')
    @classmethod
    def validate_clock(cls, v):
        if v is not None:
            parse_clock_time(v)
        return v

    @model_validator(mode='after')
    def validate_bounds(self):
        if not self.event_driven and (self.start is None or self.end is None):
            raise ValueError(f"Period {self.id}: time-bound period needs start and end")
        if not self.event_driven and self.start == self.end:
            raise ValueError(f"Period {self.id}: start and end must differ")
        return self


class WorkflowSchema(BaseModel):
    """Схема файла конфигурации ресторана."""
    restaurant_name: str = ""
    closing_period_id: str = "closing"
    closing_fallback_time: Optional[str] = None
    reset_hour: Optional[int] = Field(None, ge=0, le=23)
    periods: List[PeriodSchema] = Field(..., min_length=1)
    floating_tasks: List[TaskSchema] = Field(default_factory=list)

    @field_validator('closing_fallback_time')
    @classmethod
    def validate_fallback(cls, v):
        if v is not None:
            parse_clock_time(v)
        return v


def _intervals(period: Period) -> List[Tuple[int, int]]:
    """Интервалы периода в минутах от полуночи (с разбиением через полночь)."""
    start = period.start_time.hour * 60 + period.start_time.minute
    end = period.end_time.hour * 60 + period.end_time.minute
    if end > start:
        return [(start, end)]
    return [(start, MINUTES_PER_DAY), (0, end)]


def _check_overlaps(periods: List[Period]) -> None:
    bound = [period for period in periods if period.is_time_bound]
    for i, first in enumerate(bound):
        for second in bound[i + 1:]:
            for a_start, a_end in _intervals(first):
                for b_start, b_end in _intervals(second):
                    if a_start < b_end and b_start < a_end:
                        raise WorkflowConfigError(
                            f"Periods '{first.id}' and '{second.id}' overlap"
                        )


def build_catalog(
    data: Dict,
    reset_hour: Optional[int] = None,
    closing_fallback_time: Union[str, None, bool] = False,
) -> WorkflowCatalog:
    """
    Построить и проверить каталог из словаря конфигурации.

    Args:
        data: Содержимое YAML-файла
        reset_hour: Час ежедневного сброса (по умолчанию из файла или настроек)
        closing_fallback_time: Переопределение резервного времени закрытия;
            False - взять из файла или настроек, None - отключить

    Raises:
        WorkflowConfigError: Если конфигурация некорректна
    """
    try:
        schema = WorkflowSchema.model_validate(data)
    except ValidationError as e:
        raise WorkflowConfigError(f"Invalid workflow configuration: {e}") from e

    periods: List[Period] = []
    seen_tasks: Dict[str, str] = {}
    for ordinal, raw in enumerate(schema.periods):
        if any(period.id == raw.id for period in periods):
            raise WorkflowConfigError(f"Duplicate period id '{raw.id}'")
        tasks = []
        for raw_task in raw.tasks:
            if raw_task.id in seen_tasks:
                raise WorkflowConfigError(f"Duplicate task id '{raw_task.id}'")
            seen_tasks[raw_task.id] = raw.id
            tasks.append(raw_task.to_template(raw.id))
        periods.append(Period(
            id=raw.id,
            name=raw.name or raw.id,
            display_name=raw.display_name,
            start_time=_clock(raw.start),
            end_time=None if raw.event_driven else _clock(raw.end),
            is_event_driven=raw.event_driven,
            ordinal=ordinal,
            tasks=tuple(tasks),
        ))

    floating = []
    for raw_task in schema.floating_tasks:
        if raw_task.id in seen_tasks:
            raise WorkflowConfigError(f"Duplicate task id '{raw_task.id}'")
        seen_tasks[raw_task.id] = ""
        floating.append(replace(raw_task.to_template(None), is_floating=True))

    for period in periods:
        for task in period.tasks:
            for linked in task.linked_task_ids:
                if linked not in seen_tasks:
                    raise WorkflowConfigError(f"Task '{task.id}' links unknown task '{linked}'")

    if not any(period.id == schema.closing_period_id for period in periods):
        raise WorkflowConfigError(f"Closing period '{schema.closing_period_id}' is not defined")
    if not periods[0].is_time_bound:
        raise WorkflowConfigError(f"First period '{periods[0].id}' must be time-bound")

    _check_overlaps(periods)

    if closing_fallback_time is False:
        fallback_raw = schema.closing_fallback_time or settings.closing_fallback_time
    else:
        fallback_raw = closing_fallback_time

    catalog = WorkflowCatalog(
        periods=tuple(periods),
        floating_tasks=tuple(floating),
        closing_period_id=schema.closing_period_id,
        reset_hour=reset_hour if reset_hour is not None else (
            schema.reset_hour if schema.reset_hour is not None else settings.daily_reset_hour
        ),
        closing_fallback_time=_clock(fallback_raw) if fallback_raw else None,
        restaurant_name=schema.restaurant_name,
    )
    logger.debug(
        "Workflow catalog built",
        restaurant=catalog.restaurant_name,
        periods=len(catalog.periods),
        tasks=len(seen_tasks),
    )
    return catalog


def load_catalog(path: Union[str, Path, None] = None, **overrides) -> WorkflowCatalog:
    """
    Загрузить каталог ресторана из YAML.

    Args:
        path: Путь к файлу (по умолчанию settings.workflow_config_path или встроенный)
    """
    config_path = Path(path or settings.workflow_config_path or DEFAULT_WORKFLOW_PATH)
    try:
        with config_path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise WorkflowConfigError(f"Cannot read workflow configuration {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise WorkflowConfigError(f"Malformed YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise WorkflowConfigError(f"Workflow configuration {config_path} must be a mapping")

    catalog = build_catalog(data, **overrides)
    logger.info("Workflow catalog loaded", path=str(config_path), periods=len(catalog.periods))
    return catalog
