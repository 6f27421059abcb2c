# app/config/celery_config.py
"""Celery configuration and task routing"""
from celery import Celery
from kombu import Queue

from app.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create and configure Celery application"""

    celery_app = Celery(
        "scheduling_service",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["app.tasks.calendar_tasks"],
    )

    # Configure Celery
    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task routing
        task_routes={
            "app.tasks.calendar_tasks.*": {"queue": "calendar_sync"},
        },

        # Queue definitions
        task_queues=(
            Queue("calendar_sync", routing_key="calendar_sync"),
        ),

        # Periodic reconciliation of every active calendar connection
        beat_schedule={
            "sync-active-calendars": {
                "task": "app.tasks.calendar_tasks.sync_all_active_calendars",
                "schedule": settings.CALENDAR_SYNC_INTERVAL_MINUTES * 60.0,
            },
        },

        # Worker settings
        worker_max_tasks_per_child=1000,
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        # Retry settings
        task_retry_max_retries=3,
        task_retry_delay=60,  # 1 minute

        broker_connection_retry_on_startup=True,
    )

    return celery_app


# Create the Celery app instance
celery_app = create_celery_app()
