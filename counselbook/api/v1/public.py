# ============================================================================
# FILE: counselbook/api/v1/public.py
# Client-facing booking endpoints (no authentication)
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.orm import Session

from counselbook.config.database import get_db
from counselbook.schemas.booking import PublicAppointmentCreate
from counselbook.services.appointment.appointment_service import AppointmentService
from counselbook.services.calendar.calendar_service import CalendarService
from counselbook.utils.time_of_day import business_today

router = APIRouter(prefix="/public", tags=["Public"])


@router.get("/counselors/{counselor_id}/calendar")
def list_counselor_calendar(
        counselor_id: UUID = Path(..., description="The counselor ID"),
        db: Session = Depends(get_db)
):
    """Upcoming calendar days of a counselor"""
    return {
        "success": True,
        "data": CalendarService.list_calendar_dates(db, counselor_id, from_date=business_today()),
    }


@router.get("/calendars/{calendar_id}/slots")
def list_calendar_slots(
        calendar_id: UUID = Path(..., description="The calendar day ID"),
        db: Session = Depends(get_db)
):
    return {"success": True, "data": CalendarService.list_date_slots(db, calendar_id)}


@router.post("/appointments", status_code=status.HTTP_201_CREATED)
def create_public_appointment(
        payload: PublicAppointmentCreate,
        db: Session = Depends(get_db)
):
    """Hold a slot and create a PENDING appointment awaiting payment"""
    result = AppointmentService.create_public_appointment(
        db=db,
        client=payload.client.model_dump(),
        time_slot_id=payload.time_slot_id,
        session_type=payload.session_type,
        counselor_id=payload.counselor_id,
        notes=payload.notes,
    )
    return {"success": True, "data": result}


@router.get("/payment/{token}")
def get_appointment_by_payment_token(
        token: str = Path(..., min_length=16, description="Pay-later token from the booking email"),
        db: Session = Depends(get_db)
):
    return {"success": True, "data": AppointmentService.get_appointment_by_token(db, token)}
