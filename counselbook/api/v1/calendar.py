# ============================================================================
# FILE: counselbook/api/v1/calendar.py
# Counselor calendar days and slots - thin HTTP layer over CalendarService
# ============================================================================
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session

from counselbook.api.dependencies import Actor, get_current_actor, resolve_counselor_id
from counselbook.config.database import get_db
from counselbook.schemas.booking import CalendarDateCreate, SlotsCreate, SlotsWithDatesCreate
from counselbook.services.calendar.calendar_service import CalendarService

router = APIRouter(prefix="/calendar", tags=["Calendar"])


@router.get("")
def list_calendar_dates(
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to inspect"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    """Calendar days with available/total slot counts"""
    return {
        "success": True,
        "data": CalendarService.list_calendar_dates(db, resolve_counselor_id(actor, counselor_id)),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_calendar_date(
        payload: CalendarDateCreate,
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to act for"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    calendar = CalendarService.create_calendar_date(db, resolve_counselor_id(actor, counselor_id), payload.date)
    return {"success": True, "data": calendar}


@router.get("/slots")
def get_slots_with_calendar_dates(
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to inspect"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    """Every calendar day with its slots and the appointment holding each one"""
    return {
        "success": True,
        "data": CalendarService.get_slots_with_calendar_dates(db, resolve_counselor_id(actor, counselor_id)),
    }


@router.post("/slots", status_code=status.HTTP_201_CREATED)
def create_slots_with_new_calendar_dates(
        payload: SlotsWithDatesCreate,
        counselor_id: Optional[UUID] = Query(None, description="Admins only: counselor to act for"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    """Create slots over several days, creating missing calendar days"""
    days = [
        {"date": day.date, "slots": [slot.model_dump() for slot in day.slots]}
        for day in payload.days
    ]
    result = CalendarService.create_slots_with_new_calendar_dates(
        db=db,
        counselor_id=resolve_counselor_id(actor, counselor_id),
        days=days,
        actor_role=actor.role,
    )
    return {"success": True, "data": result}


@router.get("/{calendar_id}/slots")
def list_date_slots(
        calendar_id: UUID = Path(..., description="The calendar day ID"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    return {"success": True, "data": CalendarService.list_date_slots(db, calendar_id)}


@router.post("/{calendar_id}/slots", status_code=status.HTTP_201_CREATED)
def create_slots_for_date(
        payload: SlotsCreate,
        calendar_id: UUID = Path(..., description="The calendar day ID"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    created = CalendarService.create_slots_for_date(
        db=db,
        calendar_id=calendar_id,
        slots=[slot.model_dump() for slot in payload.slots],
        actor_role=actor.role,
        counselor_id=None if actor.is_admin else actor.user_id,
    )
    return {"success": True, "data": {"created": created}}


@router.delete("/slots/{slot_id}")
def delete_slot(
        slot_id: UUID = Path(..., description="The time slot ID"),
        counselor_id: Optional[UUID] = Query(None, description="Admins only: slot owner"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    CalendarService.delete_slot(
        db=db,
        counselor_id=resolve_counselor_id(actor, counselor_id),
        slot_id=slot_id,
        actor_role=actor.role,
    )
    return {"success": True, "message": "Time slot deleted"}
