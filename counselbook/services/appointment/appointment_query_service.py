# ============================================================================
# counselbook/services/appointment/appointment_query_service.py
# Read side for counselor dashboards - no FastAPI dependencies
# ============================================================================
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from counselbook.core.exceptions import AppointmentNotFound
from counselbook.models.appointment import Appointment, AppointmentStatus
from counselbook.models.calendar import SessionType, TimeSlot
from counselbook.models.client import Client


class AppointmentQueryService:
    """Listing and detail lookups for a counselor's appointments."""

    @staticmethod
    def list_appointments(
            db: Session,
            counselor_id: UUID,
            status: Optional[AppointmentStatus] = None,
            session_type: Optional[SessionType] = None,
            start_date: Optional[date] = None,
            end_date: Optional[date] = None,
            search: Optional[str] = None,
            skip: int = 0,
            limit: int = 20
    ) -> Dict[str, Any]:
        """Get paginated list of appointments with filters."""
        query = (
            db.query(Appointment)
            .join(Client, Appointment.client_id == Client.id)
            .join(TimeSlot, Appointment.time_slot_id == TimeSlot.id)
            .options(joinedload(Appointment.client), joinedload(Appointment.time_slot))
            .filter(
                Appointment.counselor_id == counselor_id,
                Appointment.status != AppointmentStatus.DELETED,
            )
        )

        if status:
            query = query.filter(Appointment.status == status)
        if session_type:
            query = query.filter(Appointment.session_type == session_type)
        if start_date:
            query = query.filter(Appointment.date >= start_date)
        if end_date:
            query = query.filter(Appointment.date <= end_date)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Client.first_name.ilike(pattern),
                Client.last_name.ilike(pattern),
                Client.email.ilike(pattern),
                Client.phone.ilike(pattern),
            ))

        total = query.count()
        appointments = (
            query.order_by(Appointment.date.desc(), TimeSlot.start_minute.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

        return {
            "counselor_id": str(counselor_id),
            "total_appointments": total,
            "page": {
                "skip": skip,
                "limit": limit,
                "total_pages": (total + limit - 1) // limit if total > 0 else 0
            },
            "filters": {
                "status": status.value if status else None,
                "session_type": session_type.value if session_type else None,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
                "search": search,
            },
            "appointments": [appointment.to_dict() for appointment in appointments]
        }

    @staticmethod
    def get_appointment(db: Session, counselor_id: UUID, appointment_id: UUID) -> Dict[str, Any]:
        """Single appointment of this counselor, with client, slot and meeting."""
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.counselor_id == counselor_id,
            Appointment.status != AppointmentStatus.DELETED,
        ).first()

        if not appointment:
            raise AppointmentNotFound("Appointment not found")

        return appointment.to_dict(include_relations=True)
