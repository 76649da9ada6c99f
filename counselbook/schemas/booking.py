"""
Pydantic schemas for calendar, slot and appointment requests
"""
import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from counselbook.models.calendar import SessionType
from counselbook.models.client import Gender


# ============================================================================
# Calendar & slots
# ============================================================================

class SlotCreate(BaseModel):
    """One slot as entered by the counselor, e.g. 9:00 AM - 10:00 AM"""
    start_time: str = Field(..., examples=["9:00 AM"])
    end_time: str = Field(..., examples=["10:00 AM"])
    type: SessionType


class CalendarDateCreate(BaseModel):
    date: datetime.date


class SlotsCreate(BaseModel):
    slots: List[SlotCreate] = Field(..., min_length=1)


class DaySlotsCreate(BaseModel):
    date: datetime.date
    slots: List[SlotCreate] = Field(..., min_length=1)


class SlotsWithDatesCreate(BaseModel):
    days: List[DaySlotsCreate] = Field(..., min_length=1)


# ============================================================================
# Appointments
# ============================================================================

class ClientDetails(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=3, max_length=30)
    date_of_birth: Optional[datetime.date] = None
    gender: Optional[Gender] = None

    @field_validator('first_name', 'last_name', 'phone')
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip()


class PublicAppointmentCreate(BaseModel):
    client: ClientDetails
    counselor_id: UUID
    time_slot_id: UUID
    session_type: SessionType
    notes: Optional[str] = Field(None, max_length=2000)


class ManualAppointmentCreate(BaseModel):
    client: ClientDetails
    time_slot_id: UUID
    session_type: SessionType
    notes: Optional[str] = Field(None, max_length=2000)


class RescheduleRequest(BaseModel):
    new_time_slot_id: UUID


class PaymentFailure(BaseModel):
    outcome: str = Field("failed", pattern="^(failed|cancelled)$")
