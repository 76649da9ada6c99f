"""
Auto-expiry of abandoned public bookings.

A public booking holds its slot in PROCESSING until payment is confirmed.
If the client walks away, the appointment stays PENDING; this job cancels
those older than PENDING_APPOINTMENT_TIMEOUT_MINUTES and frees their slots.
Staff-entered bookings (non-NULL payment_token) are never touched.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counselbook.config.settings import get_settings
from counselbook.core.exceptions import BookingError
from counselbook.core.transaction import run_in_transaction
from counselbook.models.appointment import Appointment, AppointmentStatus
from counselbook.models.calendar import SlotStatus
from counselbook.services.appointment.appointment_service import AppointmentService

logger = logging.getLogger(__name__)


def expire_stale_pending_appointments(
        db: Session,
        now: Optional[datetime] = None,
        timeout_minutes: Optional[int] = None,
) -> int:
    """
    Cancel stale PENDING public appointments, one transaction each.

    Args:
        db: Database session
        now: Reference instant (defaults to current UTC time)
        timeout_minutes: Age threshold (defaults to PENDING_APPOINTMENT_TIMEOUT_MINUTES)

    Returns:
        Number of appointments cancelled in this run
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)

    if timeout_minutes is None:
        timeout_minutes = get_settings().PENDING_APPOINTMENT_TIMEOUT_MINUTES
    cutoff = now - timedelta(minutes=timeout_minutes)

    candidates = db.query(Appointment.id, Appointment.time_slot_id).filter(
        Appointment.status == AppointmentStatus.PENDING,
        Appointment.payment_token.is_(None),
        Appointment.created_at <= cutoff,
    ).all()

    if not candidates:
        return 0

    logger.info(f"Found {len(candidates)} pending appointments older than {timeout_minutes} minutes")

    cancelled = 0
    for appointment_id, time_slot_id in candidates:
        def work(session: Session, appointment_id=appointment_id, time_slot_id=time_slot_id) -> bool:
            if not AppointmentService.set_appointment_status(
                    session, appointment_id, AppointmentStatus.CANCELLED, [AppointmentStatus.PENDING]
            ):
                # Confirmed or cancelled since the scan
                return False
            if not AppointmentService.release_time_slot(session, time_slot_id, [SlotStatus.PROCESSING]):
                logger.warning(f"Slot {time_slot_id} of expired appointment {appointment_id} was not PROCESSING")
            return True

        try:
            if run_in_transaction(db, work, operation="expire_pending_appointment"):
                cancelled += 1
                logger.info(f"Auto-cancelled pending appointment {appointment_id}")
        except (BookingError, SQLAlchemyError) as e:
            logger.error(f"Failed to auto-cancel appointment {appointment_id}: {e}")

    logger.info(f"Reaper cancelled {cancelled} of {len(candidates)} pending appointments")
    return cancelled
