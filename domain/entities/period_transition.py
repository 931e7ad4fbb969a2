"""Модель журнала переходов между периодами."""

from typing import Any, Dict

from sqlalchemy import Column, Date, DateTime, Integer, JSON, String
from sqlalchemy.sql import func

from .base import Base


class PeriodTransition(Base):
    """Запись о входе, выходе или ручном переключении периода."""

    __tablename__ = "period_transitions"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, nullable=False, index=True)
    business_day = Column(Date, nullable=False, index=True)

    role = Column(String(32), nullable=False)  # manager, chef, duty_manager
    # enter, exit, manual_advance, last_customer_left, manual_close, reset
    action = Column(String(32), nullable=False, index=True)
    source = Column(String(32), nullable=False, default="auto")  # auto, manual, fallback, system

    from_period_id = Column(String(100), nullable=True)
    to_period_id = Column(String(100), nullable=True)
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация записи в словарь."""
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "business_day": self.business_day.isoformat() if self.business_day else None,
            "role": self.role,
            "action": self.action,
            "source": self.source,
            "from_period_id": self.from_period_id,
            "to_period_id": self.to_period_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
