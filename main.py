#!/usr/bin/env python3
"""
Запуск сессии рабочего дня ShiftOps для одной роли.

Сессия работает на реальных часах, хранит отчёты и журнал в базе данных,
снимки состояния в Redis или памяти (settings.state_backend).
"""

import argparse
import asyncio


def main():
    """Основная функция запуска сессии."""
    parser = argparse.ArgumentParser(description="Run a ShiftOps dashboard session.")
    parser.add_argument("--role", type=str, default="manager", help="manager | chef | duty_manager")
    parser.add_argument("--config", type=str, default=None, help="Workflow YAML (default: built-in)")
    parser.add_argument("--memory", action="store_true", help="Keep records in memory instead of the database")
    args = parser.parse_args()

    from core.config.settings import settings
    from core.logging.logger import logger, setup_logging

    setup_logging()
    logger.info(f"Starting {settings.app_name}", environment=settings.environment, role=args.role)

    async def run_app():
        from core.config.workflow_config import load_catalog
        from core.database.session import close_database, db_manager, init_database
        from core.scheduler.session_scheduler import SessionScheduler
        from core.state.session_state_store import SessionStateStore
        from shared.models.workflow import Role
        from shared.services.period_transition_journal import (
            PeriodTransitionJournal,
            SqlAlchemyPeriodTransitionJournal,
        )
        from shared.services.shift_session import ShiftSession
        from shared.services.task_record_store import InMemoryTaskRecordStore, SqlAlchemyTaskRecordStore

        catalog = load_catalog(args.config)

        if args.memory:
            store = InMemoryTaskRecordStore()
            journal = PeriodTransitionJournal()
        else:
            await init_database(create_tables=True)
            store = SqlAlchemyTaskRecordStore(db_manager)
            journal = SqlAlchemyPeriodTransitionJournal(db_manager)

        session = ShiftSession(
            catalog,
            Role(args.role),
            store,
            journal=journal,
            state_store=SessionStateStore(),
        )
        await session.start()
        scheduler = SessionScheduler(session)
        await scheduler.start()

        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await scheduler.stop()
            await session.close()
            if not args.memory:
                await close_database()

    try:
        asyncio.run(run_app())
    except KeyboardInterrupt:
        logger.info("Session stopped by user")


if __name__ == "__main__":
    main()
