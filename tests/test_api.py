"""HTTP tests for the booking API."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from conftest import client_payload, create_appointment, create_client, create_counselor, create_slot
from counselbook.config.database import get_db
from counselbook.config.settings import get_settings
from counselbook.main import app
from counselbook.models import AppointmentStatus, SlotStatus, UserRole


def bearer(user, role=None):
    settings = get_settings()
    token = jwt.encode(
        {"sub": str(user.id), "role": (role or user.role).value, "type": "access"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth(counselor):
    return bearer(counselor)


@pytest.fixture
def admin(db):
    return create_counselor(db, name="Admin User", minimum_slots=None, role=UserRole.SUPER_ADMIN)


class TestAuthentication:

    def test_missing_token(self, api):
        response = api.get("/api/v1/dashboard/calendar")
        assert response.status_code in (401, 403)

    def test_bad_signature(self, api, counselor):
        token = jwt.encode({"sub": str(counselor.id), "role": "COUNSELOR"}, "wrong-secret", algorithm="HS256")

        response = api.get("/api/v1/dashboard/calendar", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_refresh_token_rejected(self, api, counselor):
        settings = get_settings()
        token = jwt.encode(
            {"sub": str(counselor.id), "role": "COUNSELOR", "type": "refresh"},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

        response = api.get("/api/v1/dashboard/calendar", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_counselor_cannot_act_for_another(self, api, auth):
        other_id = "11111111-1111-1111-1111-111111111111"

        response = api.get(f"/api/v1/dashboard/calendar?counselor_id={other_id}", headers=auth)
        assert response.status_code == 403


class TestCalendarApi:

    def test_calendar_and_slot_flow(self, api, auth, future_day):
        created = api.post("/api/v1/dashboard/calendar", json={"date": future_day.isoformat()}, headers=auth)
        assert created.status_code == 201
        calendar_id = created.json()["data"]["id"]

        slots = api.post(
            f"/api/v1/dashboard/calendar/{calendar_id}/slots",
            json={"slots": [
                {"start_time": "9:00 AM", "end_time": "10:00 AM", "type": "ONLINE"},
                {"start_time": "10:00 AM", "end_time": "11:00 AM", "type": "IN_PERSON"},
            ]},
            headers=auth,
        )
        assert slots.status_code == 201
        assert slots.json()["data"] == {"created": 2}

        listing = api.get("/api/v1/dashboard/calendar", headers=auth).json()["data"]
        assert listing == [{
            "id": calendar_id,
            "date": future_day.isoformat(),
            "available_slot_count": 2,
            "total_slot_count": 2,
            "have_slots": True,
        }]

        day = api.get(f"/api/v1/public/calendars/{calendar_id}/slots").json()["data"]
        assert [slot["start_time"] for slot in day["slots"]] == ["9:00 AM", "10:00 AM"]

    def test_duplicate_calendar_conflicts(self, api, auth, calendar, future_day):
        response = api.post("/api/v1/dashboard/calendar", json={"date": future_day.isoformat()}, headers=auth)

        assert response.status_code == 409
        assert response.json()["error"] == "CalendarAlreadyExists"

    def test_overlap_error_body(self, api, auth, calendar, slot):
        response = api.post(
            f"/api/v1/dashboard/calendar/{calendar.id}/slots",
            json={"slots": [{"start_time": "9:30 AM", "end_time": "10:30 AM", "type": "ONLINE"}]},
            headers=auth,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "SlotOverlap"
        assert "9:30 AM" in body["message"]

    def test_invalid_session_type_is_422(self, api, auth, calendar):
        response = api.post(
            f"/api/v1/dashboard/calendar/{calendar.id}/slots",
            json={"slots": [{"start_time": "9:00 AM", "end_time": "10:00 AM", "type": "PHONE"}]},
            headers=auth,
        )
        assert response.status_code == 422

    def test_multi_day_creation(self, api, auth, future_day):
        response = api.post(
            "/api/v1/dashboard/calendar/slots",
            json={"days": [
                {"date": (future_day + timedelta(days=n)).isoformat(),
                 "slots": [{"start_time": "2:00 PM", "end_time": "3:00 PM", "type": "ONLINE"}]}
                for n in range(3)
            ]},
            headers=auth,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["calendars_created"] == 3
        assert data["slots_created"] == 3

    def test_delete_slot(self, api, auth, calendar, slot):
        create_slot_response = api.post(
            f"/api/v1/dashboard/calendar/{calendar.id}/slots",
            json={"slots": [{"start_time": "1:00 PM", "end_time": "2:00 PM", "type": "ONLINE"}]},
            headers=auth,
        )
        assert create_slot_response.status_code == 201

        response = api.delete(f"/api/v1/dashboard/calendar/slots/{slot.id}", headers=auth)
        assert response.status_code == 200

    def test_admin_creates_for_counselor(self, api, admin, counselor, future_day):
        response = api.post(
            f"/api/v1/dashboard/calendar?counselor_id={counselor.id}",
            json={"date": future_day.isoformat()},
            headers=bearer(admin),
        )

        assert response.status_code == 201
        assert response.json()["data"]["counselor_id"] == str(counselor.id)


class TestBookingApi:

    def test_public_booking_then_payment(self, api, counselor, slot, admin, fake_dispatcher):
        booked = api.post("/api/v1/public/appointments", json={
            "client": client_payload(),
            "counselor_id": str(counselor.id),
            "time_slot_id": str(slot.id),
            "session_type": "ONLINE",
        })
        assert booked.status_code == 201
        data = booked.json()["data"]
        assert data["requires_payment"] is True
        appointment_id = data["appointment"]["id"]

        again = api.post("/api/v1/public/appointments", json={
            "client": client_payload("jo@example.com"),
            "counselor_id": str(counselor.id),
            "time_slot_id": str(slot.id),
            "session_type": "ONLINE",
        })
        assert again.status_code == 422
        assert again.json()["error"] == "SlotUnavailable"

        confirmed = api.post(f"/api/v1/payments/{appointment_id}/confirm", headers=bearer(admin))
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["status"] == "CONFIRMED"
        fake_dispatcher.booking_confirmed.assert_called_once()

    def test_payment_callback_requires_admin(self, api, auth):
        response = api.post(
            "/api/v1/payments/11111111-1111-1111-1111-111111111111/confirm", headers=auth
        )
        assert response.status_code == 403

    def test_invalid_client_email(self, api, counselor, slot):
        response = api.post("/api/v1/public/appointments", json={
            "client": client_payload("not-an-email"),
            "counselor_id": str(counselor.id),
            "time_slot_id": str(slot.id),
            "session_type": "ONLINE",
        })
        assert response.status_code == 422

    def test_manual_booking_and_listing(self, api, auth, slot):
        created = api.post(
            "/api/v1/dashboard/appointments/manual",
            json={"client": client_payload(), "time_slot_id": str(slot.id), "session_type": "ONLINE"},
            headers=auth,
        )
        assert created.status_code == 201
        assert "/payment/" in created.json()["data"]["payment_link"]

        listing = api.get("/api/v1/dashboard/appointments?status=CONFIRMED", headers=auth).json()
        assert listing["total_appointments"] == 1
        assert listing["appointments"][0]["client"]["email"] == "sam@example.com"

        token = created.json()["data"]["payment_link"].rsplit("/", 1)[-1]
        by_token = api.get(f"/api/v1/public/payment/{token}")
        assert by_token.status_code == 200

    def test_cancel_and_reschedule(self, api, auth, db, counselor, calendar):
        booked_slot = create_slot(db, calendar, "9:00 AM", status=SlotStatus.BOOKED)
        free_slot = create_slot(db, calendar, "11:00 AM")
        appointment = create_appointment(
            db, booked_slot, counselor, create_client(db), status=AppointmentStatus.CONFIRMED, payment_token="t"
        )

        moved = api.post(
            f"/api/v1/dashboard/appointments/{appointment.id}/reschedule",
            json={"new_time_slot_id": str(free_slot.id)},
            headers=auth,
        )
        assert moved.status_code == 200
        assert moved.json()["data"]["time_slot_id"] == str(free_slot.id)

        cancelled = api.post(f"/api/v1/dashboard/appointments/{appointment.id}/cancel", headers=auth)
        assert cancelled.status_code == 200

        again = api.post(f"/api/v1/dashboard/appointments/{appointment.id}/cancel", headers=auth)
        assert again.status_code == 400
        assert again.json()["error"] == "AlreadyCancelled"

    def test_other_counselors_appointment_is_hidden(self, api, db, counselor, slot):
        appointment = create_appointment(db, slot, counselor, create_client(db))
        other = create_counselor(db, name="Alex Kim")

        response = api.get(f"/api/v1/dashboard/appointments/{appointment.id}", headers=bearer(other))
        assert response.status_code == 404

        complete = api.post(f"/api/v1/dashboard/appointments/{appointment.id}/complete", headers=bearer(other))
        assert complete.status_code == 404


class TestHealth:

    def test_basic(self, api):
        response = api.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Correlation-ID" in response.headers

    def test_detailed(self, api):
        with patch("counselbook.core.monitoring.get_redis", return_value=MagicMock()):
            checks = api.get("/health/detailed").json()

        assert checks["database"] == "healthy"
        assert checks["overall"] == "healthy"
