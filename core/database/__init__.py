"""Модуль базы данных."""

from .session import (
    db_manager,
    init_database,
    close_database,
    DatabaseManager
)

__all__ = [
    "db_manager",
    "init_database",
    "close_database",
    "DatabaseManager"
]
