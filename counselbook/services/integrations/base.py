"""
Collaborator interfaces used by the booking core.

The lifecycle engine never calls these inside a transaction: calendar and
mail calls run from Celery tasks after commit, payment calls come from the
payment service and report back through AppointmentService.confirm_payment /
fail_payment.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, Optional
from uuid import UUID

from counselbook.utils.time_of_day import TimeOfDay, business_timezone


@dataclass(frozen=True)
class EventWindow:
    """Start/end of a booked session as aware datetimes in the business timezone"""

    start: datetime
    end: datetime

    @classmethod
    def for_slot(cls, day: date, start: TimeOfDay, end: TimeOfDay) -> "EventWindow":
        tz = business_timezone()
        return cls(
            start=datetime.combine(day, time(start.hour, start.minute), tzinfo=tz),
            end=datetime.combine(day, time(end.hour, end.minute), tzinfo=tz),
        )

    @property
    def timezone_name(self) -> str:
        return str(self.start.tzinfo)


@dataclass(frozen=True)
class EventDetails:
    """Everything a calendar provider needs to create an event"""

    appointment_id: UUID
    counselor_id: UUID
    client_name: str
    client_email: str
    window: EventWindow
    with_video_meeting: bool = False
    notes: Optional[str] = None


class CalendarSyncError(Exception):
    """A calendar provider call failed"""
    pass


class CalendarSyncAdapter(ABC):
    """External calendar provider (best effort, post-commit only)"""

    @abstractmethod
    def create_event(self, details: EventDetails) -> Optional[Dict[str, Any]]:
        """
        Create an event on the counselor's calendar.

        Returns:
            dict: {"event_id": str, "meeting_link": Optional[str]}, or None when
            the counselor has no connected calendar

        Raises:
            CalendarSyncError: if the provider rejects the call
        """
        pass

    @abstractmethod
    def cancel_event(self, event_id: str, counselor_id: UUID) -> bool:
        pass

    @abstractmethod
    def reschedule_event(self, event_id: str, counselor_id: UUID, window: EventWindow) -> bool:
        pass


class Mailer(ABC):
    """Outbound email (best effort, post-commit only)"""

    @abstractmethod
    def send(self, to: str, subject: str, html_body: str) -> bool:
        pass


class PaymentGateway(ABC):
    """Payment processor; charge logic lives outside the booking core"""

    @abstractmethod
    def create_intent(self, appointment_id: UUID, amount: int, currency: str) -> str:
        """Create a payment intent and return its client secret"""
        pass


class CounselorSettingsProvider(ABC):

    @abstractmethod
    def get_minimum_slots_per_day(self, counselor_id: UUID) -> int:
        pass


def get_calendar_adapter(db, provider: str = "google") -> CalendarSyncAdapter:
    """Return the calendar adapter for a provider name"""
    if provider == "google":
        from counselbook.services.calendar.google_calendar_service import GoogleCalendarService
        return GoogleCalendarService(db)
    raise ValueError(f"Unsupported calendar provider: {provider}")
