# ============================================================================
# FILE: counselbook/api/v1/payments.py
# Payment outcome callbacks from the payment service (admin/service token)
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from counselbook.api.dependencies import Actor, require_admin
from counselbook.config.database import get_db
from counselbook.schemas.booking import PaymentFailure
from counselbook.services.appointment.appointment_service import AppointmentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/{appointment_id}/confirm")
def confirm_payment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        actor: Actor = Depends(require_admin),
        db: Session = Depends(get_db)
):
    return {"success": True, "data": AppointmentService.confirm_payment(db, appointment_id)}


@router.post("/{appointment_id}/fail")
def fail_payment(
        payload: PaymentFailure,
        appointment_id: UUID = Path(..., description="The appointment ID"),
        actor: Actor = Depends(require_admin),
        db: Session = Depends(get_db)
):
    return {"success": True, "data": AppointmentService.fail_payment(db, appointment_id, payload.outcome)}
