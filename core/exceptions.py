"""Исключения движка периодов и задач."""

from typing import List, Optional, Sequence


class WorkflowError(Exception):
    """Базовая ошибка ShiftOps."""


class WorkflowConfigError(WorkflowError, ValueError):
    """Некорректная конфигурация периодов или задач."""


class TransitionRejected(WorkflowError, ValueError):
    """Переход отклонён, состояние не изменилось."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or "invalid_transition"


class ClosingBlocked(TransitionRejected):
    """Закрытие смены невозможно, пока есть невыполненные задачи."""

    def __init__(self, message: str, outstanding: Sequence, reason: str = "outstanding_tasks"):
        super().__init__(message, reason=reason)
        self.outstanding: List = list(outstanding)

    @property
    def count(self) -> int:
        return len(self.outstanding)


class UnknownTaskError(WorkflowError, KeyError):
    """Задача не найдена в каталоге."""

    def __str__(self) -> str:
        return f"Unknown task: {self.args[0]}" if self.args else "Unknown task"


class EvidenceValidationError(WorkflowError, ValueError):
    """Отчёт не соответствует требованию задачи."""


class PersistenceError(WorkflowError):
    """Хранилище не приняло операцию после всех попыток."""
