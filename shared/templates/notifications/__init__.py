"""Шаблоны уведомлений ShiftOps."""

from .period_templates import PeriodNotificationType, PeriodTemplateManager

__all__ = ["PeriodNotificationType", "PeriodTemplateManager"]
