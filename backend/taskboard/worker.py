"""Celery worker configuration."""

from celery import Celery
from celery.schedules import crontab

from taskboard.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "taskboard",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
)

celery_app.conf.beat_schedule = {
    "process-recurring-tasks-daily": {
        "task": "taskboard.tasks.process_recurring_tasks",
        "schedule": crontab(hour=0, minute=5),
    },
    "sweep-due-dates-hourly": {
        "task": "taskboard.tasks.sweep_due_dates",
        "schedule": crontab(minute=0),
    },
    "purge-expired-pins-daily": {
        "task": "taskboard.tasks.purge_expired_pins",
        "schedule": crontab(hour=3, minute=0),
    },
}

# Auto-discover tasks from taskboard.tasks module
celery_app.autodiscover_tasks(["taskboard"])
