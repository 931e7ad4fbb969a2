"""Модель отчёта о выполнении задачи (журнал выполнения за рабочий день)."""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.sql import func

from .base import Base


class TaskRecord(Base):
    """Отчёт сотрудника по задаче."""

    __tablename__ = "task_records"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, nullable=False, index=True)
    business_day = Column(Date, nullable=False, index=True)

    # Что и кем выполнено
    task_id = Column(String(100), nullable=False, index=True)
    role = Column(String(32), nullable=False)  # manager, chef, duty_manager
    upload_requirement = Column(String(32), nullable=False, default="none")
    is_floating = Column(Boolean, default=False, nullable=False)
    evidence = Column(JSON, nullable=True)  # {"photos": [...], "text": "...", "items": [...]}

    submitted_at = Column(DateTime(timezone=True), nullable=False)
    # Повторная сдача замещает предыдущий отчёт
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Проверка (для задач дежурного менеджера)
    review_status = Column(String(32), nullable=False, default="none")  # none, pending, approved, rejected
    review_reason = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_task_records_day_role", "restaurant_id", "business_day", "role"),
    )

    def supersede(self) -> None:
        """Отметить отчёт как замещённый повторной сдачей."""
        self.is_active = False

    def set_review(self, status: str, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        self.review_status = status
        self.review_reason = reason
        self.reviewed_at = at

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация отчёта в словарь."""
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "business_day": self.business_day.isoformat() if self.business_day else None,
            "task_id": self.task_id,
            "role": self.role,
            "upload_requirement": self.upload_requirement,
            "evidence": self.evidence,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "is_active": self.is_active,
            "review_status": self.review_status,
            "review_reason": self.review_reason,
        }

    def __repr__(self) -> str:
        return (
            f"<TaskRecord(id={self.id}, task_id='{self.task_id}', role='{self.role}', "
            f"day={self.business_day}, active={self.is_active})>"
        )
