# counselbook/models/__init__.py
from .base import Base
from .user import User, UserRole, CounselorSettings
from .client import Client, CounselorClient, Gender
from .calendar import Calendar, TimeSlot, SessionType, SlotStatus
from .appointment import Appointment, AppointmentStatus, Meeting, ACTIVE_APPOINTMENT_STATUSES
from .calendar_integration import CalendarIntegration

__all__ = [
    "Base",
    "User",
    "UserRole",
    "CounselorSettings",
    "Client",
    "CounselorClient",
    "Gender",
    "Calendar",
    "TimeSlot",
    "SessionType",
    "SlotStatus",
    "Appointment",
    "AppointmentStatus",
    "Meeting",
    "ACTIVE_APPOINTMENT_STATUSES",
    "CalendarIntegration",
]
