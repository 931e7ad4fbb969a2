"""
Ускоренная симуляция рабочего дня ресторана.

Все роли работают на общих часах (FixedClock), общем хранилище отчётов и
общем журнале переходов. Часы шагают с заданным шагом от часа сброса
до закрытия смены, сессии получают те же команды, что и от таймеров.

Пример:
    python -m apps.simulator.simulate_day --date 2024-05-01 --skip lunch-prep-chef-2
"""

import argparse
import asyncio
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from core.clock.clock_source import FixedClock
from core.config.workflow_config import load_catalog
from core.exceptions import ClosingBlocked
from core.logging.logger import logger, setup_logging
from core.utils.timezone_helper import business_instant, parse_clock_time, timezone_helper
from shared.models.workflow import ControllerMode, Role, UploadRequirement, WorkflowCatalog
from shared.services.notification_service import NotificationService
from shared.services.period_transition_journal import PeriodTransitionJournal
from shared.services.senders import LogNotificationSender
from shared.services.shift_session import ShiftSession
from shared.services.task_record_store import InMemoryTaskRecordStore

SIMULATED_EVIDENCE = {
    UploadRequirement.PHOTO: {"photos": ["simulated.jpg"]},
    UploadRequirement.TEXT: {"text": "已完成"},
    UploadRequirement.AUDIO: {"audio": "simulated.m4a"},
    UploadRequirement.CHECKLIST: {"items": ["ok"]},
}


async def _complete_open_tasks(session: ShiftSession, skip: Iterable[str] = ()) -> int:
    """Сдать все невыполненные задачи текущего периода и пропущенные задачи роли."""
    skipped = set(skip)
    state = session.state
    candidates = []
    if state.current_period is not None:
        candidates.extend(state.current_period.trackable_tasks_for(session.role))
    candidates.extend(item.task for item in state.missing_tasks)

    submitted = 0
    for task in candidates:
        if task.id in skipped or task.id in session.state.completed_task_ids or task.is_review:
            continue
        await session.complete_task(task.id, SIMULATED_EVIDENCE.get(task.upload_requirement, {}))
        submitted += 1
    return submitted


async def run_simulation(
    catalog: WorkflowCatalog,
    day: date,
    step_minutes: int = 5,
    last_customer_at: Optional[str] = None,
    skip: Iterable[str] = (),
) -> Dict[str, dict]:
    """
    Прогнать рабочий день и вернуть сводку по ролям.

    Args:
        last_customer_at: Время сигнала "ушёл последний гость" (HH:MM), иначе сработает резервное время
        skip: Id задач, которые никто не выполнит до закрытия
    """
    skipped = list(skip)
    start = timezone_helper.localize(datetime.combine(day, parse_clock_time(f"{catalog.reset_hour:02d}:00")))
    clock = FixedClock(start)
    store = InMemoryTaskRecordStore()
    journal = PeriodTransitionJournal()
    notifier = NotificationService([LogNotificationSender()])

    sessions = {
        role: ShiftSession(catalog, role, store, clock=clock, journal=journal, notifier=notifier)
        for role in (Role.MANAGER, Role.CHEF, Role.DUTY_MANAGER)
    }
    for session in sessions.values():
        await session.start()

    manager = sessions[Role.MANAGER]
    closing_at = None
    if last_customer_at:
        closing_at = business_instant(start, day, parse_clock_time(last_customer_at), catalog.reset_hour)

    end = start + timedelta(days=1)
    last_period: Dict[Role, Optional[str]] = {role: None for role in sessions}

    while clock.now() < end:
        for role, session in sessions.items():
            await session.tick()
            await session.refresh_missing_tasks()
            period_id = session.state.current_period_id
            if period_id != last_period[role]:
                print(f"{clock.now():%H:%M} [{role.value}] {period_id or '-'} ({session.state.mode.value})")
                last_period[role] = period_id
            if session.state.mode != ControllerMode.WAITING_FOR_NEXT_DAY:
                await _complete_open_tasks(session, skipped)

        if closing_at is not None and clock.now() >= closing_at and manager.state.mode in (
            ControllerMode.AUTOMATIC, ControllerMode.MANUALLY_ADVANCED,
        ):
            print(f"{clock.now():%H:%M} [manager] last customer left")
            for role in (Role.MANAGER, Role.CHEF):
                if sessions[role].state.mode in (ControllerMode.AUTOMATIC, ControllerMode.MANUALLY_ADVANCED):
                    await sessions[role].last_customer_left()

        if manager.state.is_manual_closing:
            if await _close_all(sessions, skipped):
                break

        clock.advance(minutes=step_minutes)

    for session in sessions.values():
        await session.close()

    summary = {}
    for role, session in sessions.items():
        progress = session.progress()
        summary[role.value] = {
            "mode": session.state.mode.value,
            "completed": progress.completed_tasks,
            "total": progress.total_tasks,
            "completion_rate": progress.completion_rate,
            "missing": list(progress.missing_titles),
        }
    return summary


async def _close_all(sessions: Dict[Role, ShiftSession], skip: List[str]) -> bool:
    """Довести закрытие до конца для всех ролей; False, если что-то блокирует."""
    manager = sessions[Role.MANAGER]
    duty = sessions[Role.DUTY_MANAGER]

    await duty.refresh_data()
    if duty.state.is_manual_closing:
        await _complete_open_tasks(duty, skip)
        for task in manager.state.current_period.tasks_for(Role.MANAGER) if manager.state.current_period else []:
            if task.is_review and task.linked_task_ids[0] not in skip \
                    and task.id not in manager.state.completed_task_ids:
                await manager.approve_review(task.linked_task_ids[0])

    closed = True
    for role, session in sessions.items():
        if session.state.mode == ControllerMode.WAITING_FOR_NEXT_DAY:
            continue
        if not session.state.is_manual_closing:
            closed = False
            continue
        await _complete_open_tasks(session, skip)
        try:
            await session.complete_closing()
            print(f"{session.clock.now():%H:%M} [{role.value}] closing confirmed")
        except ClosingBlocked as e:
            logger.warning("Closing blocked", role=role.value, count=e.count)
            closed = False
    return closed


def main():
    parser = argparse.ArgumentParser(description="Simulate one restaurant business day.")
    parser.add_argument("--date", type=str, default=None, help="Business day YYYY-MM-DD (default: today)")
    parser.add_argument("--config", type=str, default=None, help="Workflow YAML (default: built-in)")
    parser.add_argument("--step-minutes", type=int, default=5, help="Clock step in minutes")
    parser.add_argument("--last-customer-at", type=str, default=None, help="HH:MM of the last-customer signal")
    parser.add_argument("--skip", action="append", default=[], help="Task id nobody completes (repeatable)")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level")
    args = parser.parse_args()

    setup_logging(level=args.log_level)
    catalog = load_catalog(args.config)
    day = date.fromisoformat(args.date) if args.date else timezone_helper.now().date()

    summary = asyncio.run(run_simulation(
        catalog,
        day,
        step_minutes=args.step_minutes,
        last_customer_at=args.last_customer_at,
        skip=args.skip,
    ))
    for role, data in summary.items():
        print(
            f"{role}: {data['mode']}, {data['completed']}/{data['total']} "
            f"({data['completion_rate']}%), missing: {', '.join(data['missing']) or '-'}"
        )


if __name__ == "__main__":
    main()
