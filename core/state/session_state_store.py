"""
Хранение снимков состояния сессии (in-memory или Redis).

Снимок нужен, чтобы перезапущенная сессия продолжила рабочий день с тем же
режимом (ручное закрытие, ожидание следующего дня) и тем же списком
пропущенных задач.
"""

from datetime import date, timedelta
from typing import Any, Dict, Optional

from core.config.settings import settings
from core.logging.logger import logger
from shared.models.workflow import (
    ControllerMode,
    MissingTask,
    ReviewStatus,
    Role,
    SessionState,
    WorkflowCatalog,
)
from shared.services.review_service import augment_with_reviews, resolve_task


def state_to_snapshot(state: SessionState) -> Dict[str, Any]:
    """Сериализация состояния в словарь для JSON."""
    return {
        'business_day': state.business_day.isoformat(),
        'mode': state.mode.value,
        'manually_advanced_period_id': state.manually_advanced_period_id,
        'current_period_id': state.current_period_id,
        'next_period_id': state.next_period.id if state.next_period else None,
        'completed_task_ids': sorted(state.completed_task_ids),
        'missing_tasks': [
            {'task_id': item.task.id, 'period_name': item.period_name, 'period_id': item.period_id}
            for item in state.missing_tasks
        ],
        'overdue_notified': sorted(state.overdue_notified),
        'review_statuses': {task_id: status.value for task_id, status in state.review_statuses.items()},
    }


def state_from_snapshot(data: Dict[str, Any], catalog: WorkflowCatalog, role: Role) -> SessionState:
    """
    Восстановление состояния из снимка.

    Период закрытия восстанавливается вместе с задачами проверки роли,
    неизвестные каталогу задачи пропускаются.
    """
    current = catalog.get(data.get('current_period_id'))
    if current is not None and current.id == catalog.closing_period_id:
        current = augment_with_reviews(current, role)

    missing = []
    for item in data.get('missing_tasks', []):
        task = resolve_task(catalog, item['task_id'])
        if task is not None:
            missing.append(MissingTask(task=task, period_name=item['period_name'], period_id=item.get('period_id')))

    return SessionState(
        business_day=date.fromisoformat(data['business_day']),
        mode=ControllerMode(data['mode']),
        manually_advanced_period_id=data.get('manually_advanced_period_id'),
        current_period=current,
        next_period=catalog.get(data.get('next_period_id')),
        completed_task_ids=frozenset(data.get('completed_task_ids', [])),
        missing_tasks=tuple(missing),
        overdue_notified=frozenset(data.get('overdue_notified', [])),
        review_statuses={
            task_id: ReviewStatus(status) for task_id, status in data.get('review_statuses', {}).items()
        },
    )


class SessionStateStore:
    """Хранилище снимков состояния сессий (in-memory или Redis)."""

    def __init__(self, backend: Optional[str] = None, redis_cache=None, restaurant_id: Optional[int] = None):
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._backend = backend or settings.state_backend
        self._redis_cache = redis_cache
        self._state_ttl = timedelta(minutes=settings.state_ttl_minutes)
        self.restaurant_id = restaurant_id if restaurant_id is not None else settings.restaurant_id

        if self._backend == 'redis':
            logger.info("SessionStateStore: using Redis backend")
        else:
            logger.info("SessionStateStore: using in-memory backend")

    @property
    def backend(self) -> str:
        return self._backend

    def _get_key(self, role: Role) -> str:
        return f"session_state:{self.restaurant_id}:{role.value}"

    async def _init_redis(self):
        """Ленивая инициализация Redis."""
        if self._backend != 'redis':
            return
        if self._redis_cache is None:
            from core.cache.redis_cache import cache
            self._redis_cache = cache
        if not self._redis_cache.is_connected:
            try:
                await self._redis_cache.connect()
            except Exception as e:
                logger.error(f"Failed to connect to Redis for session state: {e}")
                self._backend = 'memory'
                logger.warning("Falling back to in-memory session state")

    async def save(self, role: Role, state: SessionState) -> None:
        snapshot = state_to_snapshot(state)
        key = self._get_key(role)
        if self._backend == 'redis':
            await self._init_redis()
            if self._backend == 'redis':
                await self._redis_cache.set(key, snapshot, ttl=self._state_ttl)
        # Всегда храним в памяти для быстрого доступа
        self._snapshots[key] = snapshot

    async def load(self, role: Role, catalog: WorkflowCatalog, business_day: date) -> Optional[SessionState]:
        """Снимок роли за указанный рабочий день (снимок другого дня не восстанавливается)."""
        key = self._get_key(role)
        snapshot = self._snapshots.get(key)
        if snapshot is None and self._backend == 'redis':
            await self._init_redis()
            if self._backend == 'redis':
                snapshot = await self._redis_cache.get(key)

        if not snapshot:
            return None
        if snapshot.get('business_day') != business_day.isoformat():
            logger.info(
                "Discarding session snapshot from another business day",
                role=role.value,
                snapshot_day=snapshot.get('business_day'),
                business_day=business_day.isoformat(),
            )
            await self.clear(role)
            return None

        try:
            return state_from_snapshot(snapshot, catalog, role)
        except (KeyError, ValueError) as e:
            logger.warning(f"Malformed session snapshot ignored: {e}", role=role.value)
            await self.clear(role)
            return None

    async def clear(self, role: Role) -> None:
        key = self._get_key(role)
        self._snapshots.pop(key, None)
        if self._backend == 'redis':
            await self._init_redis()
            if self._backend == 'redis':
                await self._redis_cache.delete(key)
