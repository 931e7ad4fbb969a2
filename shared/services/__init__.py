"""Shared services package."""

from .period_resolver import PeriodResolver, resolve, business_status
from .task_tracker import TaskTracker
from .transition_controller import TransitionController, Transition, TransitionEvent
from .daily_reset import DailyResetScheduler
from .review_service import ReviewService

__all__ = [
    'PeriodResolver',
    'resolve',
    'business_status',
    'TaskTracker',
    'TransitionController',
    'Transition',
    'TransitionEvent',
    'DailyResetScheduler',
    'ReviewService'
]
