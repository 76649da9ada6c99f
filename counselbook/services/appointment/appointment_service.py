# ============================================================================
# counselbook/services/appointment/appointment_service.py
# Appointment lifecycle: booking, payment outcome, cancel, reschedule, complete
# ============================================================================
"""
Appointment lifecycle engine.

Slot and appointment status changes are conditional updates
(UPDATE ... WHERE id = :id AND status IN :expected). A zero row count means
another request got there first; it is turned into a domain error and the
whole transaction rolls back. Nothing here holds an in-process lock.

Side effects (calendar events, emails) are handed to the dispatcher only
after commit.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, joinedload

from counselbook.config.settings import get_settings
from counselbook.core.exceptions import (
    AlreadyCancelled,
    AppointmentNotFound,
    AppointmentStateConflict,
    CannotCancelCompleted,
    CounselorMismatch,
    CounselorNotFound,
    Forbidden,
    PaymentLinkExpired,
    RescheduleBlocked,
    SessionTypeMismatch,
    SlotNotAvailable,
    SlotNotFound,
    SlotOwnershipMismatch,
    SlotUnavailable,
)
from counselbook.core.transaction import TransactionPolicy, run_in_transaction
from counselbook.models.appointment import Appointment, AppointmentStatus, Meeting
from counselbook.models.base import utcnow
from counselbook.models.calendar import Calendar, SessionType, SlotStatus, TimeSlot
from counselbook.models.client import Client, CounselorClient
from counselbook.models.user import User
from counselbook.services.notifications.dispatcher import TaskDispatcher, get_dispatcher

logger = logging.getLogger(__name__)
settings = get_settings()

HELD_SLOT_STATUSES = (SlotStatus.PROCESSING, SlotStatus.BOOKED)

CLIENT_FIELDS = ("first_name", "last_name", "phone", "date_of_birth", "gender")


class AppointmentService:
    """Handles appointment state transitions"""

    # ------------------------------------------------------------------
    # Guarded primitives (call inside run_in_transaction)
    # ------------------------------------------------------------------

    @staticmethod
    def transition_slot(
            db: Session,
            slot_id: UUID,
            expected: Sequence[SlotStatus],
            target: SlotStatus,
            **values,
    ) -> bool:
        """Move a slot to `target` only if its current status is in `expected`"""
        result = db.execute(
            update(TimeSlot)
            .where(TimeSlot.id == slot_id, TimeSlot.status.in_(list(expected)))
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def release_time_slot(
            db: Session,
            slot_id: UUID,
            expected: Sequence[SlotStatus] = HELD_SLOT_STATUSES,
    ) -> bool:
        """Return a held slot to AVAILABLE and clear its reschedule marker"""
        return AppointmentService.transition_slot(
            db, slot_id, expected, SlotStatus.AVAILABLE, is_rescheduled=False
        )

    @staticmethod
    def set_appointment_status(
            db: Session,
            appointment_id: UUID,
            status: AppointmentStatus,
            expected: Sequence[AppointmentStatus],
            **values,
    ) -> bool:
        """Set an appointment's status only if it is currently one of `expected`"""
        result = db.execute(
            update(Appointment)
            .where(Appointment.id == appointment_id, Appointment.status.in_(list(expected)))
            .values(status=status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @staticmethod
    def create_public_appointment(
            db: Session,
            client: Dict[str, Any],
            time_slot_id: UUID,
            session_type: SessionType,
            counselor_id: UUID,
            notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Self-serve booking: hold the slot (PROCESSING) and create a PENDING
        appointment awaiting payment.

        Args:
            client: first_name, last_name, email, phone, optional date_of_birth/gender
            time_slot_id: Slot to hold
            session_type: Must match the slot's type
            counselor_id: Must own the slot

        Returns:
            dict with the appointment and requires_payment=True

        Raises:
            SlotUnavailable: slot missing or not AVAILABLE (also when a concurrent
                booking claims it first)
            SessionTypeMismatch, CounselorMismatch
        """
        slot = AppointmentService._load_slot(db, time_slot_id)
        if not slot or slot.status != SlotStatus.AVAILABLE:
            raise SlotUnavailable("Slot is not available.")
        if slot.type != SessionType(session_type):
            raise SessionTypeMismatch("Session type does not match the selected time slot type.")
        if slot.calendar.counselor_id != counselor_id:
            raise CounselorMismatch("Counselor does not match the selected time slot.")

        slot_date = slot.calendar.date

        def work(session: Session) -> UUID:
            client_id = AppointmentService._upsert_client(session, client)

            if not AppointmentService.transition_slot(
                    session, time_slot_id, [SlotStatus.AVAILABLE], SlotStatus.PROCESSING
            ):
                raise SlotUnavailable("Slot is not available.")

            appointment = Appointment(
                client_id=client_id,
                counselor_id=counselor_id,
                time_slot_id=time_slot_id,
                date=slot_date,
                session_type=SessionType(session_type),
                status=AppointmentStatus.PENDING,
                notes=notes,
                payment_token=None,
            )
            session.add(appointment)
            session.flush()
            return appointment.id

        appointment_id = run_in_transaction(
            db, work, TransactionPolicy.for_create(), "create_public_appointment"
        )
        logger.info(f"Public appointment {appointment_id} created, slot {time_slot_id} held for payment")

        return {
            "appointment": AppointmentService._load(db, appointment_id).to_dict(),
            "requires_payment": True,
        }

    @staticmethod
    def create_manual_appointment(
            db: Session,
            counselor_id: UUID,
            client: Dict[str, Any],
            time_slot_id: UUID,
            session_type: SessionType,
            notes: Optional[str] = None,
            dispatcher: Optional[TaskDispatcher] = None,
    ) -> Dict[str, Any]:
        """
        Staff-entered booking: confirmed immediately, slot BOOKED, with a
        pay-later link. Calendar sync and emails are enqueued after commit.
        """
        dispatcher = dispatcher or get_dispatcher()

        counselor = db.query(User).filter(User.id == counselor_id).first()
        if not counselor:
            raise CounselorNotFound("Counselor not found")

        slot = AppointmentService._load_slot(db, time_slot_id)
        if not slot or slot.status != SlotStatus.AVAILABLE:
            raise SlotUnavailable("Slot is not available.")
        if slot.type != SessionType(session_type):
            raise SessionTypeMismatch("Session type does not match the selected time slot type.")
        if slot.calendar.counselor_id != counselor_id:
            raise SlotOwnershipMismatch("Time slot does not belong to this counselor")

        slot_date = slot.calendar.date
        payment_token = secrets.token_urlsafe(32)
        payment_token_expiry = datetime.now(timezone.utc) + timedelta(minutes=settings.PAYMENT_TOKEN_TTL_MINUTES)

        def work(session: Session) -> UUID:
            client_id = AppointmentService._upsert_client(session, client)

            if not AppointmentService.transition_slot(
                    session, time_slot_id, [SlotStatus.AVAILABLE], SlotStatus.BOOKED
            ):
                raise SlotUnavailable("Slot is not available.")

            appointment = Appointment(
                client_id=client_id,
                counselor_id=counselor_id,
                time_slot_id=time_slot_id,
                date=slot_date,
                session_type=SessionType(session_type),
                status=AppointmentStatus.CONFIRMED,
                notes=notes,
                payment_token=payment_token,
                payment_token_expiry=payment_token_expiry,
            )
            session.add(appointment)
            AppointmentService._record_counselor_client(session, counselor_id, client_id)
            session.flush()
            return appointment.id

        appointment_id = run_in_transaction(
            db, work, TransactionPolicy.for_create(), "create_manual_appointment"
        )
        logger.info(f"Manual appointment {appointment_id} confirmed for counselor {counselor_id}")

        dispatcher.booking_confirmed(appointment_id)

        return {
            "appointment": AppointmentService._load(db, appointment_id).to_dict(),
            "payment_link": f"{settings.FRONTEND_URL}/payment/{payment_token}",
            "payment_token_expiry": payment_token_expiry.isoformat(),
        }

    # ------------------------------------------------------------------
    # Payment outcome
    # ------------------------------------------------------------------

    @staticmethod
    def confirm_payment(
            db: Session,
            appointment_id: UUID,
            dispatcher: Optional[TaskDispatcher] = None,
    ) -> Dict[str, Any]:
        """
        Payment succeeded: PENDING -> CONFIRMED and slot PROCESSING -> BOOKED.

        A repeated confirmation of an already CONFIRMED appointment is a no-op.
        """
        dispatcher = dispatcher or get_dispatcher()

        def work(session: Session) -> bool:
            appointment = session.query(Appointment).filter(Appointment.id == appointment_id).first()
            if not appointment:
                raise AppointmentNotFound("Appointment not found")
            if appointment.status == AppointmentStatus.CONFIRMED:
                return False
            if appointment.status != AppointmentStatus.PENDING:
                raise AppointmentStateConflict(
                    f"Cannot confirm payment for an appointment that is {appointment.status.value}"
                )

            if not AppointmentService.transition_slot(
                    session, appointment.time_slot_id, [SlotStatus.PROCESSING], SlotStatus.BOOKED
            ):
                raise SlotUnavailable("Slot is not available.")
            if not AppointmentService.set_appointment_status(
                    session, appointment.id, AppointmentStatus.CONFIRMED, [AppointmentStatus.PENDING]
            ):
                raise AppointmentStateConflict("Appointment was changed by another request")

            AppointmentService._record_counselor_client(session, appointment.counselor_id, appointment.client_id)
            return True

        confirmed = run_in_transaction(db, work, operation="confirm_payment")
        if confirmed:
            logger.info(f"Payment confirmed for appointment {appointment_id}")
            dispatcher.booking_confirmed(appointment_id)

        return AppointmentService._load(db, appointment_id).to_dict()

    @staticmethod
    def fail_payment(db: Session, appointment_id: UUID, outcome: str = "failed") -> Dict[str, Any]:
        """
        Payment failed or was abandoned: PENDING -> CANCELLED, slot released.

        No-op if the appointment is already CANCELLED (e.g. by the reaper).
        """
        def work(session: Session) -> bool:
            appointment = session.query(Appointment).filter(Appointment.id == appointment_id).first()
            if not appointment:
                raise AppointmentNotFound("Appointment not found")
            if appointment.status == AppointmentStatus.CANCELLED:
                return False
            if appointment.status != AppointmentStatus.PENDING:
                raise AppointmentStateConflict(
                    f"Cannot record payment {outcome} for an appointment that is {appointment.status.value}"
                )

            if not AppointmentService.set_appointment_status(
                    session, appointment.id, AppointmentStatus.CANCELLED, [AppointmentStatus.PENDING]
            ):
                return False
            if not AppointmentService.release_time_slot(session, appointment.time_slot_id, [SlotStatus.PROCESSING]):
                logger.warning(f"Slot {appointment.time_slot_id} of appointment {appointment.id} was not held")
            return True

        if run_in_transaction(db, work, operation="fail_payment"):
            logger.info(f"Payment {outcome} for appointment {appointment_id}, slot released")

        return AppointmentService._load(db, appointment_id).to_dict()

    # ------------------------------------------------------------------
    # Counselor actions
    # ------------------------------------------------------------------

    @staticmethod
    def cancel_appointment(
            db: Session,
            appointment_id: UUID,
            counselor_id: UUID,
            dispatcher: Optional[TaskDispatcher] = None,
    ) -> Dict[str, Any]:
        """Cancel an active appointment and release its slot"""
        dispatcher = dispatcher or get_dispatcher()

        def work(session: Session) -> Optional[str]:
            appointment = AppointmentService._get_for_counselor(
                session, appointment_id, counselor_id,
                "You are not authorized to cancel this appointment",
            )
            if appointment.status == AppointmentStatus.CANCELLED:
                raise AlreadyCancelled("Appointment is already cancelled")
            if appointment.status == AppointmentStatus.COMPLETED:
                raise CannotCancelCompleted("Cannot cancel a completed appointment")

            if not AppointmentService.release_time_slot(session, appointment.time_slot_id):
                logger.warning(f"Slot {appointment.time_slot_id} of appointment {appointment.id} was not held")

            if not AppointmentService.set_appointment_status(
                    session, appointment.id, AppointmentStatus.CANCELLED, [appointment.status]
            ):
                raise AppointmentStateConflict("Appointment was changed by another request")

            session.query(Meeting).filter(
                Meeting.appointment_id == appointment.id
            ).delete(synchronize_session=False)
            return appointment.event_id

        event_id = run_in_transaction(db, work, operation="cancel_appointment")
        logger.info(f"Appointment {appointment_id} cancelled by counselor {counselor_id}")

        dispatcher.booking_cancelled(appointment_id, counselor_id, event_id)
        return AppointmentService._load(db, appointment_id).to_dict()

    @staticmethod
    def reschedule_appointment(
            db: Session,
            appointment_id: UUID,
            counselor_id: UUID,
            new_time_slot_id: UUID,
            dispatcher: Optional[TaskDispatcher] = None,
    ) -> Dict[str, Any]:
        """
        Move an appointment to another AVAILABLE slot of the same counselor.

        The old slot is released and the new one booked in one transaction;
        the appointment ends up CONFIRMED with the new slot's date and type.
        """
        dispatcher = dispatcher or get_dispatcher()

        def work(session: Session) -> Dict[str, Any]:
            appointment = AppointmentService._get_for_counselor(
                session, appointment_id, counselor_id,
                "You are not authorized to reschedule this appointment",
            )
            if appointment.status == AppointmentStatus.CANCELLED:
                raise RescheduleBlocked("Cannot reschedule a cancelled appointment")
            if appointment.status == AppointmentStatus.COMPLETED:
                raise RescheduleBlocked("Cannot reschedule a completed appointment")

            new_slot = AppointmentService._load_slot(session, new_time_slot_id)
            if not new_slot:
                raise SlotNotFound("New time slot not found")
            if new_slot.status != SlotStatus.AVAILABLE:
                raise SlotNotAvailable("Selected time slot is not available")
            if new_slot.calendar.counselor_id != appointment.counselor_id:
                raise SlotOwnershipMismatch("New time slot must belong to the same counselor")

            old_slot_id = appointment.time_slot_id
            previous = {
                "date": appointment.date.isoformat(),
                "start_minute": appointment.time_slot.start_minute,
            }

            if not AppointmentService.release_time_slot(session, old_slot_id):
                logger.warning(f"Slot {old_slot_id} of appointment {appointment.id} was not held")

            if not AppointmentService.transition_slot(
                    session, new_slot.id, [SlotStatus.AVAILABLE], SlotStatus.BOOKED, is_rescheduled=True
            ):
                raise SlotNotAvailable("Selected time slot is not available")

            if not AppointmentService.set_appointment_status(
                    session,
                    appointment.id,
                    AppointmentStatus.CONFIRMED,
                    [appointment.status],
                    time_slot_id=new_slot.id,
                    date=new_slot.calendar.date,
                    session_type=new_slot.type,
                    is_rescheduled=True,
            ):
                raise AppointmentStateConflict("Appointment was changed by another request")

            return previous

        previous = run_in_transaction(db, work, operation="reschedule_appointment")
        logger.info(f"Appointment {appointment_id} rescheduled to slot {new_time_slot_id}")

        dispatcher.booking_rescheduled(appointment_id, previous["date"], previous["start_minute"])
        return AppointmentService._load(db, appointment_id).to_dict()

    @staticmethod
    def complete_appointment(db: Session, appointment_id: UUID) -> Dict[str, Any]:
        """Mark an appointment COMPLETED from any status; completing twice is a no-op"""
        def work(session: Session) -> None:
            appointment = session.query(Appointment).filter(Appointment.id == appointment_id).first()
            if not appointment or appointment.status == AppointmentStatus.DELETED:
                raise AppointmentNotFound("Appointment not found")
            if appointment.status == AppointmentStatus.COMPLETED:
                return

            if appointment.status == AppointmentStatus.PENDING:
                AppointmentService.transition_slot(
                    session, appointment.time_slot_id, [SlotStatus.PROCESSING], SlotStatus.BOOKED
                )
            if not AppointmentService.set_appointment_status(
                    session, appointment.id, AppointmentStatus.COMPLETED, [appointment.status]
            ):
                raise AppointmentStateConflict("Appointment was changed by another request")

        run_in_transaction(db, work, operation="complete_appointment")
        logger.info(f"Appointment {appointment_id} completed")
        return AppointmentService._load(db, appointment_id).to_dict()

    # ------------------------------------------------------------------
    # Pay-later links
    # ------------------------------------------------------------------

    @staticmethod
    def get_appointment_by_token(
            db: Session,
            token: str,
            now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Resolve a pay-later link to its appointment"""
        appointment = db.query(Appointment).filter(Appointment.payment_token == token).first()
        if not appointment:
            raise AppointmentNotFound("Invalid payment link")

        expiry = appointment.payment_token_expiry
        if expiry is not None:
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            if expiry < (now or datetime.now(timezone.utc)):
                raise PaymentLinkExpired("Payment link has expired")

        return appointment.to_dict()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load(db: Session, appointment_id: UUID) -> Appointment:
        return db.query(Appointment).filter(Appointment.id == appointment_id).one()

    @staticmethod
    def _load_slot(db: Session, slot_id: UUID) -> Optional[TimeSlot]:
        return (
            db.query(TimeSlot)
            .options(joinedload(TimeSlot.calendar))
            .filter(TimeSlot.id == slot_id)
            .first()
        )

    @staticmethod
    def _get_for_counselor(db: Session, appointment_id: UUID, counselor_id: UUID, forbidden_message: str):
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment or appointment.status == AppointmentStatus.DELETED:
            raise AppointmentNotFound("Appointment not found")
        if appointment.counselor_id != counselor_id:
            raise Forbidden(forbidden_message)
        return appointment

    @staticmethod
    def _upsert_client(db: Session, client: Dict[str, Any]) -> UUID:
        """Insert or update a client keyed by email, returning its id"""
        email = client["email"].strip().lower()
        values = {field: client.get(field) for field in CLIENT_FIELDS}
        # A later booking that omits optional details keeps the stored ones
        updates = {field: value for field, value in values.items() if value is not None}

        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(Client).values(email=email, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Client.email],
                set_={**updates, "updated_at": utcnow()},
            ).returning(Client.id)
            return db.execute(stmt).scalar_one()

        existing = db.query(Client).filter(Client.email == email).first()
        if existing:
            for field, value in updates.items():
                setattr(existing, field, value)
            db.flush()
            return existing.id

        new_client = Client(email=email, **values)
        db.add(new_client)
        db.flush()
        return new_client.id

    @staticmethod
    def _record_counselor_client(db: Session, counselor_id: UUID, client_id: UUID) -> None:
        exists = db.query(CounselorClient.id).filter(
            CounselorClient.counselor_id == counselor_id,
            CounselorClient.client_id == client_id,
        ).first()
        if not exists:
            db.add(CounselorClient(counselor_id=counselor_id, client_id=client_id))
