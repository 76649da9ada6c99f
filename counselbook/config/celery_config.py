"""Celery configuration and task routing"""
from celery import Celery
from kombu import Queue

from counselbook.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create and configure Celery application"""

    celery_app = Celery(
        "counselbook",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=[
            "counselbook.tasks.appointment_tasks",
            "counselbook.tasks.maintenance_tasks",
        ],
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task routing
        task_routes={
            "counselbook.tasks.appointment_tasks.*": {"queue": "appointments"},
            "counselbook.tasks.maintenance_tasks.*": {"queue": "maintenance"},
        },

        # Queue definitions
        task_queues=(
            Queue("appointments", routing_key="appointments"),
            Queue("maintenance", routing_key="maintenance"),
        ),

        # Worker settings
        worker_max_tasks_per_child=1000,
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        # Retry settings
        task_default_retry_delay=60,

        broker_connection_retry_on_startup=True,

        # Periodic tasks
        beat_schedule={
            "expire-pending-appointments": {
                "task": "counselbook.tasks.maintenance_tasks.expire_pending_appointments",
                "schedule": settings.REAPER_INTERVAL_SECONDS,
            },
        },
    )

    return celery_app


celery_app = create_celery_app()
