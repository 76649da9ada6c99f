"""Tests for the appointment lifecycle: booking, payment, cancel, reschedule."""

import threading
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import (
    client_payload,
    create_appointment,
    create_calendar,
    create_client,
    create_counselor,
    create_slot,
)
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
from counselbook.models import (
    Appointment,
    AppointmentStatus,
    Client,
    Gender,
    Meeting,
    SessionType,
    SlotStatus,
    TimeSlot,
)
from counselbook.models.client import CounselorClient
from counselbook.services.appointment.appointment_service import AppointmentService
from counselbook.services.appointment.reaper import expire_stale_pending_appointments


def slot_status(db, slot_id):
    db.expire_all()
    return db.query(TimeSlot).filter(TimeSlot.id == slot_id).one().status


def book_public(db, slot, counselor, email="sam@example.com"):
    return AppointmentService.create_public_appointment(
        db, client_payload(email), slot.id, SessionType.ONLINE, counselor.id
    )


class TestPublicBooking:

    def test_holds_slot_and_creates_pending(self, db, counselor, slot):
        result = book_public(db, slot, counselor)

        assert result["requires_payment"] is True
        appointment = result["appointment"]
        assert appointment["status"] == "PENDING"
        assert appointment["date"] == slot.calendar.date.isoformat()
        assert slot_status(db, slot.id) == SlotStatus.PROCESSING

        stored = db.query(Appointment).one()
        assert stored.payment_token is None
        assert stored.is_public_booking

    def test_session_type_mismatch(self, db, counselor, slot):
        with pytest.raises(SessionTypeMismatch):
            AppointmentService.create_public_appointment(
                db, client_payload(), slot.id, SessionType.IN_PERSON, counselor.id
            )
        assert slot_status(db, slot.id) == SlotStatus.AVAILABLE

    def test_counselor_mismatch(self, db, slot):
        other = create_counselor(db, name="Alex Kim")
        with pytest.raises(CounselorMismatch):
            book_public(db, slot, other)

    def test_unknown_slot(self, db, counselor):
        with pytest.raises(SlotUnavailable) as exc_info:
            AppointmentService.create_public_appointment(
                db, client_payload(), uuid.uuid4(), SessionType.ONLINE, counselor.id
            )
        assert exc_info.value.status_code == 422

    def test_second_booking_of_same_slot_rejected(self, db, counselor, slot):
        book_public(db, slot, counselor)

        with pytest.raises(SlotUnavailable, match="Slot is not available."):
            book_public(db, slot, counselor, email="jo@example.com")

    def test_concurrent_booking_with_stale_read(self, session_factory, counselor, slot):
        """Both requests saw AVAILABLE; the guarded update lets exactly one win."""
        first = session_factory()
        second = session_factory()
        try:
            # Second request reads the slot before the first one commits
            stale = second.query(TimeSlot).filter(TimeSlot.id == slot.id).one()
            assert stale.status == SlotStatus.AVAILABLE

            book_public(first, slot, counselor, email="first@example.com")

            with pytest.raises(SlotUnavailable):
                book_public(second, slot, counselor, email="second@example.com")

            check = session_factory()
            assert check.query(Appointment).count() == 1
            assert check.query(TimeSlot).filter(TimeSlot.id == slot.id).one().status == SlotStatus.PROCESSING
            check.close()
        finally:
            first.close()
            second.close()

    def test_client_upserted_by_email(self, db, counselor, calendar):
        first_slot = create_slot(db, calendar, "9:00 AM")
        second_slot = create_slot(db, calendar, "10:00 AM")

        book_public(db, first_slot, counselor, email="sam@example.com")
        AppointmentService.create_public_appointment(
            db, client_payload("SAM@example.com", first_name="Samantha"),
            second_slot.id, SessionType.ONLINE, counselor.id,
        )

        db.expire_all()
        clients = db.query(Client).all()
        assert len(clients) == 1
        assert clients[0].first_name == "Samantha"

    def test_rebooking_keeps_optional_client_details(self, db, counselor, calendar):
        first_slot = create_slot(db, calendar, "9:00 AM")
        second_slot = create_slot(db, calendar, "10:00 AM")
        detailed = {**client_payload(), "date_of_birth": date(1990, 1, 1), "gender": Gender.FEMALE}

        AppointmentService.create_public_appointment(
            db, detailed, first_slot.id, SessionType.ONLINE, counselor.id
        )
        book_public(db, second_slot, counselor)

        db.expire_all()
        stored = db.query(Client).one()
        assert stored.date_of_birth == date(1990, 1, 1)
        assert stored.gender == Gender.FEMALE

    def test_simultaneous_bookings_in_threads(self, session_factory, counselor, slot):
        """Two requests race on the same slot; exactly one holds it."""
        slot_id, counselor_id = slot.id, counselor.id
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(email):
            session = session_factory()
            try:
                barrier.wait()
                AppointmentService.create_public_appointment(
                    session, client_payload(email), slot_id, SessionType.ONLINE, counselor_id
                )
                outcomes.append("booked")
            except SlotUnavailable:
                outcomes.append("unavailable")
            except Exception as e:
                outcomes.append(e)
            finally:
                session.close()

        threads = [
            threading.Thread(target=attempt, args=(email,))
            for email in ("first@example.com", "second@example.com")
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(outcomes, key=str) == ["booked", "unavailable"]
        check = session_factory()
        try:
            assert check.query(Appointment).count() == 1
            assert check.query(TimeSlot).filter(TimeSlot.id == slot_id).one().status == SlotStatus.PROCESSING
        finally:
            check.close()


class TestManualBooking:

    def test_confirmed_and_booked(self, db, counselor, slot, fake_dispatcher):
        result = AppointmentService.create_manual_appointment(
            db, counselor.id, client_payload(), slot.id, SessionType.ONLINE, notes="Intake"
        )

        appointment = db.query(Appointment).one()
        assert appointment.status == AppointmentStatus.CONFIRMED
        assert appointment.payment_token is not None
        assert appointment.payment_token_expiry is not None
        assert result["payment_link"].endswith(appointment.payment_token)
        assert slot_status(db, slot.id) == SlotStatus.BOOKED
        assert db.query(CounselorClient).count() == 1
        fake_dispatcher.booking_confirmed.assert_called_once_with(appointment.id)

    def test_unknown_counselor(self, db, slot):
        with pytest.raises(CounselorNotFound):
            AppointmentService.create_manual_appointment(
                db, uuid.uuid4(), client_payload(), slot.id, SessionType.ONLINE
            )

    def test_slot_of_another_counselor(self, db, slot):
        other = create_counselor(db, name="Alex Kim")
        with pytest.raises(SlotOwnershipMismatch, match="Time slot does not belong to this counselor"):
            AppointmentService.create_manual_appointment(
                db, other.id, client_payload(), slot.id, SessionType.ONLINE
            )

    def test_booked_slot_unavailable(self, db, counselor, calendar, fake_dispatcher):
        booked = create_slot(db, calendar, "9:00 AM", status=SlotStatus.BOOKED)
        with pytest.raises(SlotUnavailable):
            AppointmentService.create_manual_appointment(
                db, counselor.id, client_payload(), booked.id, SessionType.ONLINE
            )
        fake_dispatcher.booking_confirmed.assert_not_called()

    def test_manual_booking_is_exempt_from_reaper(self, db, counselor, slot):
        AppointmentService.create_manual_appointment(
            db, counselor.id, client_payload(), slot.id, SessionType.ONLINE
        )
        later = datetime.now(timezone.utc) + timedelta(hours=2)

        assert expire_stale_pending_appointments(db, now=later) == 0


class TestPaymentOutcome:

    def test_confirm_payment(self, db, counselor, slot, fake_dispatcher):
        appointment_id = uuid.UUID(book_public(db, slot, counselor)["appointment"]["id"])

        result = AppointmentService.confirm_payment(db, appointment_id)

        assert result["status"] == "CONFIRMED"
        assert slot_status(db, slot.id) == SlotStatus.BOOKED
        assert db.query(CounselorClient).count() == 1
        fake_dispatcher.booking_confirmed.assert_called_once_with(appointment_id)

    def test_confirm_twice_is_a_no_op(self, db, counselor, slot, fake_dispatcher):
        appointment_id = uuid.UUID(book_public(db, slot, counselor)["appointment"]["id"])

        AppointmentService.confirm_payment(db, appointment_id)
        AppointmentService.confirm_payment(db, appointment_id)

        assert fake_dispatcher.booking_confirmed.call_count == 1

    def test_confirm_after_expiry_conflicts(self, db, counselor, slot):
        appointment_id = uuid.UUID(book_public(db, slot, counselor)["appointment"]["id"])
        expire_stale_pending_appointments(db, now=datetime.now(timezone.utc) + timedelta(minutes=30))

        with pytest.raises(AppointmentStateConflict):
            AppointmentService.confirm_payment(db, appointment_id)
        assert slot_status(db, slot.id) == SlotStatus.AVAILABLE

    def test_confirm_when_slot_no_longer_held(self, db, counselor, calendar, fake_dispatcher):
        released = create_slot(db, calendar, "9:00 AM", status=SlotStatus.AVAILABLE)
        appointment = create_appointment(db, released, counselor, create_client(db))

        with pytest.raises(SlotUnavailable):
            AppointmentService.confirm_payment(db, appointment.id)

        db.expire_all()
        assert db.query(Appointment).one().status == AppointmentStatus.PENDING
        fake_dispatcher.booking_confirmed.assert_not_called()

    def test_confirm_unknown_appointment(self, db):
        with pytest.raises(AppointmentNotFound):
            AppointmentService.confirm_payment(db, uuid.uuid4())

    def test_fail_payment_releases_slot(self, db, counselor, slot):
        appointment_id = uuid.UUID(book_public(db, slot, counselor)["appointment"]["id"])

        result = AppointmentService.fail_payment(db, appointment_id)

        assert result["status"] == "CANCELLED"
        assert slot_status(db, slot.id) == SlotStatus.AVAILABLE

        # Redelivered failure callback
        assert AppointmentService.fail_payment(db, appointment_id, "cancelled")["status"] == "CANCELLED"

    def test_fail_payment_on_confirmed_conflicts(self, db, counselor, slot):
        appointment_id = uuid.UUID(book_public(db, slot, counselor)["appointment"]["id"])
        AppointmentService.confirm_payment(db, appointment_id)

        with pytest.raises(AppointmentStateConflict):
            AppointmentService.fail_payment(db, appointment_id)
        assert slot_status(db, slot.id) == SlotStatus.BOOKED


class TestCancel:

    @pytest.fixture
    def confirmed(self, db, counselor, calendar):
        booked = create_slot(db, calendar, "9:00 AM", status=SlotStatus.BOOKED)
        booked.is_rescheduled = True
        appointment = create_appointment(
            db, booked, counselor, create_client(db), status=AppointmentStatus.CONFIRMED, payment_token="tok-1"
        )
        appointment.event_id = "evt-123"
        db.add(Meeting(appointment_id=appointment.id, link="https://meet.google.com/abc-defg-hij"))
        db.commit()
        return appointment

    def test_cancel_releases_slot(self, db, counselor, confirmed, fake_dispatcher):
        slot_id = confirmed.time_slot_id

        result = AppointmentService.cancel_appointment(db, confirmed.id, counselor.id)

        assert result["status"] == "CANCELLED"
        db.expire_all()
        freed = db.query(TimeSlot).filter(TimeSlot.id == slot_id).one()
        assert freed.status == SlotStatus.AVAILABLE
        assert freed.is_rescheduled is False
        assert db.query(Meeting).count() == 0
        fake_dispatcher.booking_cancelled.assert_called_once_with(confirmed.id, counselor.id, "evt-123")

    def test_second_cancel(self, db, counselor, confirmed):
        AppointmentService.cancel_appointment(db, confirmed.id, counselor.id)

        with pytest.raises(AlreadyCancelled, match="Appointment is already cancelled"):
            AppointmentService.cancel_appointment(db, confirmed.id, counselor.id)

    def test_other_counselor_forbidden(self, db, confirmed):
        other = create_counselor(db, name="Alex Kim")
        with pytest.raises(Forbidden, match="not authorized to cancel"):
            AppointmentService.cancel_appointment(db, confirmed.id, other.id)

    def test_completed_cannot_be_cancelled(self, db, counselor, confirmed):
        AppointmentService.complete_appointment(db, confirmed.id)

        with pytest.raises(CannotCancelCompleted):
            AppointmentService.cancel_appointment(db, confirmed.id, counselor.id)

    def test_unknown_appointment(self, db, counselor):
        with pytest.raises(AppointmentNotFound):
            AppointmentService.cancel_appointment(db, uuid.uuid4(), counselor.id)

    def test_pending_cancel_without_event(self, db, counselor, slot, fake_dispatcher):
        appointment_id = uuid.UUID(book_public(db, slot, counselor)["appointment"]["id"])

        AppointmentService.cancel_appointment(db, appointment_id, counselor.id)

        assert slot_status(db, slot.id) == SlotStatus.AVAILABLE
        fake_dispatcher.booking_cancelled.assert_called_once_with(appointment_id, counselor.id, None)


class TestReschedule:

    @pytest.fixture
    def setup(self, db, counselor, calendar, future_day):
        old_slot = create_slot(db, calendar, "9:00 AM", SessionType.ONLINE, status=SlotStatus.BOOKED)
        next_day = create_calendar(db, counselor, future_day + timedelta(days=1))
        new_slot = create_slot(db, next_day, "2:00 PM", SessionType.IN_PERSON)
        appointment = create_appointment(
            db, old_slot, counselor, create_client(db), status=AppointmentStatus.CONFIRMED, payment_token="tok-1"
        )
        return appointment, old_slot, new_slot

    def test_swaps_slots(self, db, counselor, setup, fake_dispatcher, future_day):
        appointment, old_slot, new_slot = setup

        result = AppointmentService.reschedule_appointment(db, appointment.id, counselor.id, new_slot.id)

        assert result["status"] == "CONFIRMED"
        assert result["is_rescheduled"] is True
        assert result["time_slot_id"] == str(new_slot.id)
        assert result["session_type"] == "IN_PERSON"
        assert result["date"] == (future_day + timedelta(days=1)).isoformat()

        db.expire_all()
        assert db.query(TimeSlot).filter(TimeSlot.id == old_slot.id).one().status == SlotStatus.AVAILABLE
        moved_to = db.query(TimeSlot).filter(TimeSlot.id == new_slot.id).one()
        assert moved_to.status == SlotStatus.BOOKED
        assert moved_to.is_rescheduled is True
        fake_dispatcher.booking_rescheduled.assert_called_once_with(
            appointment.id, future_day.isoformat(), 9 * 60
        )

    def test_cancelled_cannot_be_rescheduled(self, db, counselor, setup):
        appointment, _, new_slot = setup
        AppointmentService.cancel_appointment(db, appointment.id, counselor.id)

        with pytest.raises(RescheduleBlocked, match="cancelled"):
            AppointmentService.reschedule_appointment(db, appointment.id, counselor.id, new_slot.id)

    def test_unknown_new_slot(self, db, counselor, setup):
        appointment, _, _ = setup
        with pytest.raises(SlotNotFound, match="New time slot not found"):
            AppointmentService.reschedule_appointment(db, appointment.id, counselor.id, uuid.uuid4())

    def test_new_slot_not_available(self, db, counselor, calendar, setup):
        appointment, _, _ = setup
        taken = create_slot(db, calendar, "11:00 AM", status=SlotStatus.PROCESSING)

        with pytest.raises(SlotNotAvailable, match="Selected time slot is not available"):
            AppointmentService.reschedule_appointment(db, appointment.id, counselor.id, taken.id)

    def test_new_slot_of_another_counselor(self, db, counselor, setup, future_day):
        appointment, old_slot, _ = setup
        other = create_counselor(db, name="Alex Kim")
        foreign = create_slot(db, create_calendar(db, other, future_day), "9:00 AM")

        with pytest.raises(SlotOwnershipMismatch):
            AppointmentService.reschedule_appointment(db, appointment.id, counselor.id, foreign.id)
        assert slot_status(db, old_slot.id) == SlotStatus.BOOKED

    def test_other_counselor_forbidden(self, db, setup):
        appointment, _, new_slot = setup
        other = create_counselor(db, name="Alex Kim")
        with pytest.raises(Forbidden):
            AppointmentService.reschedule_appointment(db, appointment.id, other.id, new_slot.id)


class TestComplete:

    def test_complete(self, db, counselor, calendar):
        booked = create_slot(db, calendar, "9:00 AM", status=SlotStatus.BOOKED)
        appointment = create_appointment(
            db, booked, counselor, create_client(db), status=AppointmentStatus.CONFIRMED, payment_token="t"
        )

        assert AppointmentService.complete_appointment(db, appointment.id)["status"] == "COMPLETED"
        assert AppointmentService.complete_appointment(db, appointment.id)["status"] == "COMPLETED"

    def test_cancelled_can_be_completed(self, db, counselor, slot):
        appointment = create_appointment(
            db, slot, counselor, create_client(db), status=AppointmentStatus.CANCELLED, payment_token="t"
        )

        result = AppointmentService.complete_appointment(db, appointment.id)

        assert result["status"] == "COMPLETED"
        db.expire_all()
        assert db.query(TimeSlot).filter(TimeSlot.id == slot.id).one().status == SlotStatus.AVAILABLE

    def test_deleted_is_not_found(self, db, counselor, slot):
        appointment = create_appointment(
            db, slot, counselor, create_client(db), status=AppointmentStatus.DELETED, payment_token="t"
        )

        with pytest.raises(AppointmentNotFound):
            AppointmentService.complete_appointment(db, appointment.id)

    def test_unknown(self, db):
        with pytest.raises(AppointmentNotFound):
            AppointmentService.complete_appointment(db, uuid.uuid4())


class TestPaymentLink:

    def test_resolves_token(self, db, counselor, slot):
        result = AppointmentService.create_manual_appointment(
            db, counselor.id, client_payload(), slot.id, SessionType.ONLINE
        )
        token = result["payment_link"].rsplit("/", 1)[-1]

        assert AppointmentService.get_appointment_by_token(db, token)["id"] == result["appointment"]["id"]

    def test_expired_token(self, db, counselor, slot):
        result = AppointmentService.create_manual_appointment(
            db, counselor.id, client_payload(), slot.id, SessionType.ONLINE
        )
        token = result["payment_link"].rsplit("/", 1)[-1]

        with pytest.raises(PaymentLinkExpired):
            AppointmentService.get_appointment_by_token(
                db, token, now=datetime.now(timezone.utc) + timedelta(days=2)
            )

    def test_unknown_token(self, db):
        with pytest.raises(AppointmentNotFound):
            AppointmentService.get_appointment_by_token(db, "does-not-exist")
