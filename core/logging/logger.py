"""
Модуль логирования для ShiftOps
Реализует структурированное логирование с контекстом в виде kwargs
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Стандартные атрибуты LogRecord, которые не считаются контекстом
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime"}


def _context_of(record: logging.LogRecord) -> dict:
    """Возвращает дополнительный контекст записи."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """Форматтер для вывода логов в JSON формате"""

    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись лога в JSON"""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        # Добавляем дополнительные поля если есть
        log_entry.update(_context_of(record))

        # Добавляем exception info если есть
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ContextFormatter(logging.Formatter):
    """Текстовый форматтер, дописывающий контекст в конец строки."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_of(record)
        if context:
            line += " | " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


class StructuredLogger:
    """Структурированный логгер с дополнительным контекстом"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_context(self, level: int, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Логирует сообщение с дополнительным контекстом"""
        extra = {}
        for key, value in kwargs.items():
            if value is None:
                continue
            # Имена атрибутов LogRecord нельзя перезаписывать через extra
            extra[f"ctx_{key}" if key in _RESERVED_ATTRS else key] = value

        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Логирует debug сообщение"""
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Логирует info сообщение"""
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Логирует warning сообщение"""
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Логирует error сообщение"""
        self._log_with_context(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        """Логирует critical сообщение"""
        self._log_with_context(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Логирует exception с traceback"""
        self._log_with_context(logging.ERROR, message, exc_info=True, **kwargs)


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Настраивает логирование для приложения"""
    from core.config.settings import settings

    level_name = (level or settings.log_level).upper()
    fmt = log_format or settings.log_format

    root_logger = logging.getLogger()
    root_logger.setLevel(level_name)

    # Очищаем существующие handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if settings.log_file:
        handler: logging.Handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level_name)

    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ContextFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger.addHandler(handler)


# Создаем основной логгер
logger = StructuredLogger("shiftops")
