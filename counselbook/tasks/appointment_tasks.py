# ===== counselbook/tasks/appointment_tasks.py =====
"""
Post-commit side effects for appointments.

Enqueued by TaskDispatcher once the booking transaction has committed.
Calendar failures are logged and do not block emails; email failures
retry with exponential backoff.
"""
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from counselbook.config.celery_config import celery_app
from counselbook.config.database import SessionLocal
from counselbook.config.settings import get_settings
from counselbook.models.appointment import Appointment, AppointmentStatus, Meeting
from counselbook.models.calendar import SessionType
from counselbook.services.email.email_service import EmailService
from counselbook.services.integrations.base import (
    CalendarSyncError,
    EventDetails,
    EventWindow,
    get_calendar_adapter,
)
from counselbook.utils.time_of_day import TimeOfDay

logger = logging.getLogger(__name__)
settings = get_settings()


def describe_when(day: date, start: TimeOfDay, end: Optional[TimeOfDay] = None) -> str:
    """e.g. "Monday 3 March 2025, 9:00 AM - 10:00 AM (Australia/Sydney)" """
    label = f"{day.strftime('%A')} {day.day} {day.strftime('%B %Y')}, {start.display}"
    if end is not None:
        label += f" - {end.display}"
    return f"{label} ({settings.BUSINESS_TIMEZONE})"


def _load_appointment(db: Session, appointment_id: str) -> Optional[Appointment]:
    return db.query(Appointment).filter(Appointment.id == UUID(appointment_id)).first()


def _window(appointment: Appointment) -> EventWindow:
    slot = appointment.time_slot
    return EventWindow.for_slot(appointment.date, slot.start_time, slot.end_time)


@celery_app.task(bind=True, max_retries=3)
def sync_new_booking(self, appointment_id: str):
    """Create the external calendar event, then queue the confirmation emails"""
    db = SessionLocal()
    try:
        appointment = _load_appointment(db, appointment_id)
        if not appointment:
            logger.error(f"Appointment {appointment_id} not found")
            return {"status": "failed", "reason": "appointment_not_found"}
        if appointment.status != AppointmentStatus.CONFIRMED:
            return {"status": "skipped", "reason": f"appointment_{appointment.status.value.lower()}"}

        # Skip the calendar step when a previous attempt already created the event
        if not appointment.event_id:
            details = EventDetails(
                appointment_id=appointment.id,
                counselor_id=appointment.counselor_id,
                client_name=appointment.client.full_name,
                client_email=appointment.client.email,
                window=_window(appointment),
                with_video_meeting=appointment.session_type == SessionType.ONLINE,
                notes=appointment.notes,
            )
            try:
                result = get_calendar_adapter(db).create_event(details)
            except Exception as e:
                # Never blocks the confirmation emails below
                logger.error(f"Calendar sync failed for appointment {appointment_id}: {e!r}")
                result = None

            if result:
                appointment.event_id = result["event_id"]
                if result.get("meeting_link") and appointment.meeting is None:
                    appointment.meeting = Meeting(link=result["meeting_link"])
                db.commit()

        send_booking_emails.delay(appointment_id)
        return {"status": "success", "event_id": appointment.event_id}

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def send_booking_emails(self, appointment_id: str):
    """Confirmation to the client and a heads-up to the counselor"""
    db = SessionLocal()
    try:
        appointment = _load_appointment(db, appointment_id)
        if not appointment:
            logger.error(f"Appointment {appointment_id} not found")
            return {"status": "failed", "reason": "appointment_not_found"}

        slot = appointment.time_slot
        when = describe_when(appointment.date, slot.start_time, slot.end_time)
        payment_link = None
        if appointment.payment_token:
            payment_link = f"{settings.FRONTEND_URL}/payment/{appointment.payment_token}"

        mailer = EmailService()
        try:
            mailer.send_booking_confirmation(
                to=appointment.client.email,
                client_name=appointment.client.first_name,
                counselor_name=appointment.counselor.name,
                when=when,
                session_type=appointment.session_type.value,
                meeting_link=appointment.meeting.link if appointment.meeting else None,
                payment_link=payment_link,
            )
            mailer.send_counselor_notification(
                to=appointment.counselor.email,
                counselor_name=appointment.counselor.name,
                client_name=appointment.client.full_name,
                when=when,
                session_type=appointment.session_type.value,
            )
        except Exception as exc:
            logger.error(f"Failed to send booking emails for appointment {appointment_id}: {exc}")

            # Retry with exponential backoff: 1min, 2min, 4min
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

        logger.info(f"Booking emails sent for appointment {appointment_id}")
        return {"status": "success"}

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def cancel_calendar_event(self, appointment_id: str, counselor_id: str, event_id: str):
    """Remove the external event of a cancelled appointment"""
    db = SessionLocal()
    try:
        try:
            get_calendar_adapter(db).cancel_event(event_id, UUID(counselor_id))
        except CalendarSyncError as exc:
            logger.error(f"Failed to cancel calendar event {event_id} for appointment {appointment_id}: {exc}")
            raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

        return {"status": "success", "event_id": event_id}

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def sync_rescheduled_booking(self, appointment_id: str, previous_date: str, previous_start_minute: int):
    """Move the external event and tell client and counselor about the new time"""
    db = SessionLocal()
    try:
        appointment = _load_appointment(db, appointment_id)
        if not appointment:
            logger.error(f"Appointment {appointment_id} not found")
            return {"status": "failed", "reason": "appointment_not_found"}

        if appointment.event_id:
            try:
                get_calendar_adapter(db).reschedule_event(
                    appointment.event_id, appointment.counselor_id, _window(appointment)
                )
            except Exception as e:
                logger.error(f"Failed to move calendar event for appointment {appointment_id}: {e!r}")

        slot = appointment.time_slot
        previous_when = describe_when(date.fromisoformat(previous_date), TimeOfDay(previous_start_minute))
        new_when = describe_when(appointment.date, slot.start_time, slot.end_time)

        # One task per recipient so a failed delivery never resends the other
        send_reschedule_notice.delay(appointment.client.email, appointment.client.first_name, previous_when, new_when)
        send_reschedule_notice.delay(appointment.counselor.email, appointment.counselor.name, previous_when, new_when)

        return {"status": "success"}

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def send_reschedule_notice(self, to: str, name: str, previous_when: str, new_when: str):
    """Tell one recipient about a moved session"""
    try:
        EmailService().send_reschedule_notice(to, name, previous_when, new_when)
    except Exception as exc:
        logger.error(f"Failed to send reschedule notice to {to}: {exc}")

        # Retry with exponential backoff: 1min, 2min, 4min
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

    return {"status": "success", "to": to}
