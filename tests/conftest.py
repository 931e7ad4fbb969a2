"""
Конфигурация pytest для тестов ShiftOps
Общие фикстуры: каталоги периодов, управляемые часы, хранилища в памяти и моки уведомлений
"""
import pytest
from unittest.mock import AsyncMock
from datetime import date, datetime

import pytz

from core.clock.clock_source import FixedClock
from core.config.workflow_config import build_catalog, load_catalog
from shared.services.notification_service import NotificationService
from shared.services.period_transition_journal import PeriodTransitionJournal
from shared.services.task_record_store import InMemoryTaskRecordStore


TZ = pytz.timezone("Asia/Shanghai")
BUSINESS_DAY = date(2024, 5, 1)


# =============================================================================
# Конфигурации ресторана
# =============================================================================

SCENARIO_WORKFLOW = {
    "restaurant_name": "测试店",
    "periods": [
        {
            "id": "opening",
            "display_name": "开店",
            "start": "10:00",
            "end": "10:30",
            "tasks": [
                {"id": "opening-task-1", "title": "开门检查", "role": "manager"},
                {"id": "opening-chef-1", "title": "检查冷库", "role": "chef", "upload": "photo"},
            ],
        },
        {
            "id": "lunch-service",
            "display_name": "午市",
            "start": "11:30",
            "end": "14:00",
            "tasks": [
                {"id": "lunch-task-1", "title": "巡台", "role": "manager", "end": "12:00"},
                {"id": "lunch-notice-1", "title": "高峰期注意翻台", "role": "manager", "notice": True},
            ],
        },
        {
            "id": "closing",
            "display_name": "闭店",
            "event_driven": True,
            "start": "22:00",
            "tasks": [
                {"id": "closing-chef-1", "title": "关闭燃气", "role": "chef", "upload": "photo"},
            ],
        },
    ],
    "floating_tasks": [
        {"id": "floating-incident", "title": "异常上报", "role": "manager", "upload": "text"},
    ],
}

REVIEW_WORKFLOW = {
    "restaurant_name": "测试店",
    "periods": [
        {
            "id": "opening",
            "display_name": "开店",
            "start": "10:00",
            "end": "10:30",
            "tasks": [
                {"id": "opening-task-1", "title": "开门检查", "role": "manager"},
            ],
        },
        {
            "id": "closing",
            "display_name": "闭店",
            "event_driven": True,
            "start": "22:00",
            "tasks": [
                {
                    "id": "closing-duty-1",
                    "title": "关闭燃气",
                    "role": "duty_manager",
                    "upload": "photo",
                    "reviewer_role": "manager",
                },
                {"id": "closing-duty-2", "title": "锁门", "role": "duty_manager"},
            ],
        },
    ],
}


def local(hour: int, minute: int = 0, day: date = BUSINESS_DAY) -> datetime:
    """Момент в зоне ресторана."""
    return TZ.localize(datetime(day.year, day.month, day.day, hour, minute))


@pytest.fixture
def at():
    """Фабрика моментов времени: at(10, 15) или at(2, 0, date(2024, 5, 2))."""
    return local


@pytest.fixture
def business_day():
    return BUSINESS_DAY


@pytest.fixture
def scenario_catalog():
    """Каталог из сценариев: открытие, обед, событийное закрытие (без резервного времени)."""
    return build_catalog(SCENARIO_WORKFLOW, reset_hour=10, closing_fallback_time=None)


@pytest.fixture
def make_catalog():
    """Фабрика сценарного каталога с переопределениями (например, closing_fallback_time)."""
    def _make(**overrides):
        overrides.setdefault("reset_hour", 10)
        return build_catalog(SCENARIO_WORKFLOW, **overrides)
    return _make


@pytest.fixture
def review_catalog():
    """Каталог с задачей дежурного менеджера, которую проверяет управляющий."""
    return build_catalog(REVIEW_WORKFLOW, reset_hour=10, closing_fallback_time=None)


@pytest.fixture
def default_catalog():
    """Встроенная конфигурация ресторана."""
    return load_catalog(reset_hour=10)


# =============================================================================
# Часы, хранилища, уведомления
# =============================================================================

@pytest.fixture
def clock():
    """Управляемые часы, стартуют в 10:15 рабочего дня."""
    return FixedClock(local(10, 15))


@pytest.fixture
def store():
    return InMemoryTaskRecordStore(restaurant_id=1)


@pytest.fixture
def journal():
    return PeriodTransitionJournal(restaurant_id=1)


@pytest.fixture
def mock_sender():
    """Мок отправщика уведомлений."""
    sender = AsyncMock()
    sender.send.return_value = True
    return sender


@pytest.fixture
def notifier(mock_sender):
    return NotificationService([mock_sender])
