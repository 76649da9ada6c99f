"""Pytest configuration and fixtures for test suite."""

import os
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

# Set test environment BEFORE any counselbook imports (settings are read at import)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("CALENDAR_ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")

from sqlalchemy.orm import sessionmaker  # noqa: E402

from counselbook.config.database import build_engine, create_tables  # noqa: E402
from counselbook.core.transaction import TransactionPolicy  # noqa: E402
from counselbook.models import (  # noqa: E402
    Appointment,
    AppointmentStatus,
    Calendar,
    Client,
    CounselorSettings,
    SessionType,
    SlotStatus,
    TimeSlot,
    User,
    UserRole,
)
from counselbook.services.notifications.dispatcher import TaskDispatcher  # noqa: E402
from counselbook.utils.time_of_day import TimeOfDay, business_today  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite database, so several sessions can share it."""
    engine = build_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def fake_dispatcher():
    """Post-commit dispatcher that records calls instead of talking to a broker."""
    dispatcher = MagicMock(spec=TaskDispatcher)
    with patch(
        "counselbook.services.appointment.appointment_service.get_dispatcher",
        return_value=dispatcher,
    ):
        yield dispatcher


@pytest.fixture
def instant_policy():
    """Retry policy without backoff delays."""
    return TransactionPolicy(
        max_wait=1.0, timeout=5.0, attempts=3, base_delay=0, max_delay=0, jitter=0
    )


@pytest.fixture
def future_day():
    return business_today() + timedelta(days=14)


# =============================================================================
# FACTORIES
# =============================================================================

def create_counselor(db, name="Dana Reyes", email=None, minimum_slots=1, role=UserRole.COUNSELOR):
    user = User(name=name, email=email or f"{name.split()[0].lower()}@practice.test", role=role)
    db.add(user)
    db.flush()
    if minimum_slots is not None:
        db.add(CounselorSettings(counselor_id=user.id, minimum_slots_per_day=minimum_slots))
    db.commit()
    return user


def create_calendar(db, counselor, day):
    calendar = Calendar(counselor_id=counselor.id, date=day)
    db.add(calendar)
    db.commit()
    return calendar


def create_slot(db, calendar, start="9:00 AM", session_type=SessionType.ONLINE, status=SlotStatus.AVAILABLE):
    start_time = TimeOfDay.parse(start)
    slot = TimeSlot(
        calendar_id=calendar.id,
        start_minute=start_time.minutes,
        end_minute=start_time.minutes + 60,
        type=session_type,
        status=status,
    )
    db.add(slot)
    db.commit()
    return slot


def create_client(db, email="sam@example.com"):
    client = Client(first_name="Sam", last_name="Taylor", email=email, phone="0400000000")
    db.add(client)
    db.commit()
    return client


def create_appointment(db, slot, counselor, client, status=AppointmentStatus.PENDING,
                       payment_token=None, created_at=None):
    appointment = Appointment(
        client_id=client.id,
        counselor_id=counselor.id,
        time_slot_id=slot.id,
        date=slot.calendar.date,
        session_type=slot.type,
        status=status,
        payment_token=payment_token,
    )
    if created_at is not None:
        appointment.created_at = created_at
    db.add(appointment)
    db.commit()
    return appointment


def client_payload(email="sam@example.com", first_name="Sam"):
    return {
        "first_name": first_name,
        "last_name": "Taylor",
        "email": email,
        "phone": "0400000000",
    }


@pytest.fixture
def counselor(db):
    return create_counselor(db, minimum_slots=1)


@pytest.fixture
def calendar(db, counselor, future_day):
    return create_calendar(db, counselor, future_day)


@pytest.fixture
def slot(db, calendar):
    return create_slot(db, calendar, "9:00 AM", SessionType.ONLINE)
