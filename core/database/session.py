"""
Фабрика для создания сессий базы данных
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from core.config.settings import settings
from core.logging.logger import logger
from domain.entities.base import Base


def to_async_url(database_url: str) -> str:
    """Подставляет async-драйвер, если в URL указан синхронный."""
    if database_url.startswith('postgresql://'):
        return database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    if database_url.startswith('sqlite:///'):
        return database_url.replace('sqlite:///', 'sqlite+aiosqlite:///', 1)
    return database_url


class DatabaseManager:
    """Менеджер базы данных для создания сессий."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self.engine = None
        self.session_factory = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self, create_tables: bool = False):
        """
        Инициализирует подключение к базе данных.

        Args:
            create_tables: Создать таблицы журнала (для sqlite и локального запуска)
        """
        if self._initialized:
            return

        try:
            database_url = to_async_url(self.database_url or settings.database_url)

            self.engine = create_async_engine(
                database_url,
                echo=settings.database_echo,
                poolclass=NullPool,
                future=True
            )

            self.session_factory = sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            if create_tables:
                async with self.engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)

            self._initialized = True
            logger.info("Database connection initialized successfully", create_tables=create_tables)

        except Exception as e:
            logger.error(f"Failed to initialize database connection: {e}")
            raise

    async def close(self):
        """Закрывает подключение к базе данных."""
        if self.engine:
            await self.engine.dispose()
            self._initialized = False
            logger.info("Database connection closed")

    def get_session(self) -> AsyncSession:
        """Возвращает новую сессию базы данных."""
        if not self._initialized:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        return self.session_factory()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Сессия с ленивой инициализацией подключения."""
        if not self._initialized:
            await self.initialize()
        session = self.get_session()
        try:
            yield session
        finally:
            await session.close()


# Глобальный экземпляр менеджера БД
db_manager = DatabaseManager()


async def init_database(create_tables: bool = False):
    """Инициализирует базу данных."""
    await db_manager.initialize(create_tables=create_tables)


async def close_database():
    """Закрывает подключение к базе данных."""
    await db_manager.close()

