"""Redis хранилище снимков состояния сессий ShiftOps."""

import json
from datetime import timedelta
from typing import Any, Dict, Optional, Union

import redis.asyncio as redis

from core.config.settings import settings
from core.logging.logger import logger


class RedisCache:
    """
    Асинхронный доступ к Redis для снимков сессий.

    Все ключи хранятся под общим префиксом, значения - JSON-словари.
    При отключённом Redis операции не выполняются и возвращают пустой результат.
    """

    def __init__(self, redis_url: Optional[str] = None, db: Optional[int] = None, prefix: str = "shiftops"):
        self.redis_url = redis_url or settings.redis_url
        self.db = db if db is not None else settings.redis_db
        self.prefix = prefix
        self.redis: Optional[redis.Redis] = None
        self.is_connected = False

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def connect(self) -> None:
        """
        Подключение к Redis.

        Raises:
            redis.RedisError: Сервер недоступен
        """
        client = redis.from_url(
            self.redis_url,
            db=self.db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}", url=self.redis_url)
            await client.aclose()
            self.is_connected = False
            raise

        self.redis = client
        self.is_connected = True
        logger.info("Redis snapshot storage connected", db=self.db)

    async def disconnect(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        self.is_connected = False
        logger.info("Redis snapshot storage disconnected")

    async def ping(self) -> bool:
        """Проверка доступности сервера."""
        if not self.is_connected:
            return False
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def set(self, key: str, value: Dict[str, Any], ttl: Optional[Union[int, timedelta]] = None) -> bool:
        """
        Сохранить снимок.

        Args:
            ttl: Время жизни в секундах или timedelta (снимок не переживает рабочий день)
        """
        if not self.is_connected:
            logger.warning("Redis not connected, snapshot not stored", key=key)
            return False

        ttl_seconds = int(ttl.total_seconds()) if isinstance(ttl, timedelta) else ttl
        try:
            stored = await self.redis.set(
                self._key(key),
                json.dumps(value, ensure_ascii=False, default=str),
                ex=ttl_seconds,
            )
        except Exception as e:
            logger.error(f"Failed to store snapshot: {e}", key=key)
            return False
        return bool(stored)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Прочитать снимок; повреждённое значение считается отсутствующим."""
        if not self.is_connected:
            logger.warning("Redis not connected, snapshot not loaded", key=key)
            return None

        try:
            raw = await self.redis.get(self._key(key))
        except Exception as e:
            logger.error(f"Failed to load snapshot: {e}", key=key)
            return None
        if raw is None:
            return None

        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Snapshot is not valid JSON, ignored", key=key)
            return None

    async def delete(self, key: str) -> bool:
        if not self.is_connected:
            return False
        try:
            return bool(await self.redis.delete(self._key(key)))
        except Exception as e:
            logger.error(f"Failed to delete snapshot: {e}", key=key)
            return False


# Глобальный экземпляр хранилища снимков
cache = RedisCache()
