# ============================================================================
# FILE: counselbook/api/v1/appointments.py
# Counselor appointment endpoints - thin HTTP layer
# ============================================================================
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session

from counselbook.api.dependencies import Actor, get_current_actor, resolve_counselor_id
from counselbook.config.database import get_db
from counselbook.models.appointment import AppointmentStatus
from counselbook.models.calendar import SessionType
from counselbook.schemas.booking import ManualAppointmentCreate, RescheduleRequest
from counselbook.services.appointment.appointment_query_service import AppointmentQueryService
from counselbook.services.appointment.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.get("")
def list_appointments(
        status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
        session_type: Optional[SessionType] = Query(None),
        start_date: Optional[date] = Query(None, description="Appointments on or after this date"),
        end_date: Optional[date] = Query(None, description="Appointments on or before this date"),
        search: Optional[str] = Query(None, description="Client name, email or phone"),
        skip: int = Query(0, ge=0),
        limit: int = Query(20, ge=1, le=100),
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to inspect"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    return AppointmentQueryService.list_appointments(
        db=db,
        counselor_id=resolve_counselor_id(actor, counselor_id),
        status=status_filter,
        session_type=session_type,
        start_date=start_date,
        end_date=end_date,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.post("/manual", status_code=status.HTTP_201_CREATED)
def create_manual_appointment(
        payload: ManualAppointmentCreate,
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to book for"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    """Staff-entered booking, confirmed immediately with a pay-later link"""
    result = AppointmentService.create_manual_appointment(
        db=db,
        counselor_id=resolve_counselor_id(actor, counselor_id),
        client=payload.client.model_dump(),
        time_slot_id=payload.time_slot_id,
        session_type=payload.session_type,
        notes=payload.notes,
    )
    return {"success": True, "data": result}


@router.get("/{appointment_id}")
def get_appointment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to inspect"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    return AppointmentQueryService.get_appointment(
        db, resolve_counselor_id(actor, counselor_id), appointment_id
    )


@router.post("/{appointment_id}/cancel")
def cancel_appointment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to act for"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    appointment = AppointmentService.cancel_appointment(
        db, appointment_id, resolve_counselor_id(actor, counselor_id)
    )
    return {"success": True, "message": "Appointment cancelled successfully", "data": appointment}


@router.post("/{appointment_id}/reschedule")
def reschedule_appointment(
        payload: RescheduleRequest,
        appointment_id: UUID = Path(..., description="The appointment ID"),
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to act for"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    appointment = AppointmentService.reschedule_appointment(
        db, appointment_id, resolve_counselor_id(actor, counselor_id), payload.new_time_slot_id
    )
    return {"success": True, "message": "Appointment rescheduled successfully", "data": appointment}


@router.post("/{appointment_id}/complete")
def complete_appointment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    if not actor.is_admin:
        # Raises AppointmentNotFound for someone else's appointment
        AppointmentQueryService.get_appointment(db, actor.user_id, appointment_id)
    appointment = AppointmentService.complete_appointment(db, appointment_id)
    return {"success": True, "data": appointment}
