"""Симуляция рабочего дня ресторана."""
