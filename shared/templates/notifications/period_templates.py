"""Шаблоны уведомлений о периодах и задачах."""

from enum import Enum
from string import Template
from typing import Any, Dict

from core.logging.logger import logger


class PeriodNotificationType(str, Enum):
    """Типы уведомлений рабочего дня."""
    PERIOD_START = "period_start"
    TASK_OVERDUE = "task_overdue"


class PeriodTemplateManager:
    """Менеджер шаблонов уведомлений рабочего дня."""

    TEMPLATES = {
        PeriodNotificationType.PERIOD_START: {
            "title": "新时段开始",
            "plain": "${period_name}时段已开始，您有 ${pending_count} 个任务待完成",
        },
        PeriodNotificationType.TASK_OVERDUE: {
            "title": "任务逾期提醒",
            "plain": "\"${task_title}\"任务已逾期 ${minutes_late} 分钟，请尽快完成",
        },
    }

    @classmethod
    def render(cls, notification_type: PeriodNotificationType, variables: Dict[str, Any]) -> Dict[str, str]:
        """
        Рендеринг шаблона уведомления.

        Returns:
            Словарь с title и message
        """
        template_data = cls.TEMPLATES.get(notification_type)
        if not template_data:
            logger.warning(f"Template not found for {notification_type}")
            return {"title": "通知", "message": ""}

        return {
            "title": Template(template_data["title"]).safe_substitute(variables),
            "message": Template(template_data["plain"]).safe_substitute(variables),
        }
