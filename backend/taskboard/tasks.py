"""Celery background tasks.

Each job opens its own short-lived engine through ``worker_session`` and
commits once at the end. Jobs report failures in their return value so Beat
keeps the schedule running; the next run picks up whatever was missed.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from taskboard.worker import celery_app

logger = structlog.get_logger()


def _run_job(name: str, job: Callable[[], Awaitable[Any]], result_key: str) -> dict:
    try:
        result = asyncio.run(job())
    except Exception as e:
        logger.error(f"{name}_failed", error=str(e))
        return {"status": "error", "error": str(e)}
    logger.info(f"{name}_finished", **{result_key: result})
    return {"status": "success", result_key: result}


@celery_app.task(bind=True, name="taskboard.tasks.process_recurring_tasks")
def process_recurring_tasks(self) -> dict:
    """
    Materialize every due recurrence.

    Scheduled daily by Celery Beat. Each rule runs in its own savepoint so
    one broken rule does not stop the rest; re-running on the same day does
    not duplicate occurrences.
    """
    async def _process() -> int:
        from taskboard.db.session import worker_session
        from taskboard.services.recurring_task import RecurringTaskService

        async with worker_session() as db:
            created_tasks = await RecurringTaskService(db).process_due()
            return len(created_tasks)

    return _run_job("recurring_tasks", _process, "tasks_created")


@celery_app.task(bind=True, name="taskboard.tasks.sweep_due_dates")
def sweep_due_dates(self) -> dict:
    """Raise due-soon and overdue attention items for assignees."""
    async def _sweep() -> int:
        from taskboard.config import get_settings
        from taskboard.db.session import worker_session
        from taskboard.services.attention import AttentionService

        async with worker_session() as db:
            return await AttentionService(db).sweep_due_dates(
                window_hours=get_settings().due_soon_window_hours
            )

    return _run_job("due_date_sweep", _sweep, "items")


@celery_app.task(bind=True, name="taskboard.tasks.purge_expired_pins")
def purge_expired_pins(self) -> dict:
    """Delete password reset PINs that expired more than a day ago."""
    async def _purge() -> int:
        from taskboard.db.session import worker_session
        from taskboard.services.password_reset import PinService

        async with worker_session() as db:
            return await PinService(db).purge_expired()

    return _run_job("pin_purge", _purge, "pins_removed")
