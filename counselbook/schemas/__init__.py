# counselbook/schemas/__init__.py
from .booking import (
    SlotCreate,
    CalendarDateCreate,
    SlotsCreate,
    DaySlotsCreate,
    SlotsWithDatesCreate,
    ClientDetails,
    PublicAppointmentCreate,
    ManualAppointmentCreate,
    RescheduleRequest,
    PaymentFailure,
)

__all__ = [
    "SlotCreate",
    "CalendarDateCreate",
    "SlotsCreate",
    "DaySlotsCreate",
    "SlotsWithDatesCreate",
    "ClientDetails",
    "PublicAppointmentCreate",
    "ManualAppointmentCreate",
    "RescheduleRequest",
    "PaymentFailure",
]
