"""
Post-commit side effects.

The lifecycle engine calls these only after its transaction has committed.
Each call enqueues a Celery task on the durable broker; a failure to enqueue
is logged with the appointment id and never undoes the booking.
"""
import logging
from typing import Any, Optional, Sequence

from counselbook.config.celery_config import celery_app

logger = logging.getLogger(__name__)

TASK_PREFIX = "counselbook.tasks.appointment_tasks"


class TaskDispatcher:
    """Enqueues calendar sync and email tasks for committed appointment changes"""

    def __init__(self, app=None):
        self.app = app or celery_app

    def booking_confirmed(self, appointment_id) -> bool:
        """Calendar event first, then confirmation emails (chained inside the task)"""
        return self._enqueue("sync_new_booking", [str(appointment_id)], appointment_id, "booking_confirmed")

    def booking_cancelled(self, appointment_id, counselor_id, event_id: Optional[str]) -> bool:
        if not event_id:
            return False
        return self._enqueue(
            "cancel_calendar_event",
            [str(appointment_id), str(counselor_id), event_id],
            appointment_id,
            "booking_cancelled",
        )

    def booking_rescheduled(self, appointment_id, previous_date: str, previous_start_minute: int) -> bool:
        return self._enqueue(
            "sync_rescheduled_booking",
            [str(appointment_id), previous_date, previous_start_minute],
            appointment_id,
            "booking_rescheduled",
        )

    def _enqueue(self, task: str, args: Sequence[Any], appointment_id, operation: str) -> bool:
        try:
            self.app.send_task(f"{TASK_PREFIX}.{task}", args=list(args))
            logger.info(f"Enqueued {task} for appointment {appointment_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to enqueue {operation} side effects for appointment {appointment_id}: {e}")
            return False


_dispatcher: Optional[TaskDispatcher] = None


def get_dispatcher() -> TaskDispatcher:
    """Shared dispatcher bound to the application Celery app"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = TaskDispatcher()
    return _dispatcher
