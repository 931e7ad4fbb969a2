"""
Модуль доменных сущностей ShiftOps
"""

from .base import Base
from .task_record import TaskRecord
from .period_transition import PeriodTransition

__all__ = [
    "Base",
    "TaskRecord",
    "PeriodTransition",
]
