# ===== counselbook/models/appointment.py =====
from sqlalchemy import Column, String, Text, Boolean, Date, DateTime, ForeignKey, Uuid, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from counselbook.models.base import Base, utcnow
from counselbook.models.calendar import SessionType


class AppointmentStatus(str, enum.Enum):
    """PENDING -> CONFIRMED -> COMPLETED, with PENDING/CONFIRMED -> CANCELLED"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    DELETED = "DELETED"  # Administrative soft delete


ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # References
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    counselor_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    time_slot_id = Column(Uuid, ForeignKey("time_slots.id"), nullable=False, index=True)

    # Copy of the slot's calendar date, kept in step on reschedule
    date = Column(Date, nullable=False)
    session_type = Column(SQLEnum(SessionType, name="session_type"), nullable=False)
    status = Column(
        SQLEnum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.PENDING,
        index=True,
    )
    notes = Column(Text, nullable=True)

    # External calendar event
    event_id = Column(String(255), nullable=True)

    # NULL for public bookings (subject to auto-expiry), set for staff-entered ones
    payment_token = Column(String(128), nullable=True, unique=True)
    payment_token_expiry = Column(DateTime(timezone=True), nullable=True)

    is_rescheduled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    client = relationship("Client")
    counselor = relationship("User")
    time_slot = relationship("TimeSlot")
    meeting = relationship(
        "Meeting",
        back_populates="appointment",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_public_booking(self) -> bool:
        return self.payment_token is None

    def to_dict(self, include_relations=True):
        data = {
            "id": str(self.id),
            "client_id": str(self.client_id),
            "counselor_id": str(self.counselor_id),
            "time_slot_id": str(self.time_slot_id),
            "date": self.date.isoformat() if self.date else None,
            "session_type": self.session_type.value,
            "status": self.status.value,
            "notes": self.notes,
            "event_id": self.event_id,
            "is_rescheduled": self.is_rescheduled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_relations:
            if self.time_slot is not None:
                data["time_slot"] = {
                    "start_time": self.time_slot.start_time.display,
                    "end_time": self.time_slot.end_time.display,
                }
            if self.client is not None:
                data["client"] = {
                    "first_name": self.client.first_name,
                    "last_name": self.client.last_name,
                    "email": self.client.email,
                    "phone": self.client.phone,
                }
            if self.meeting is not None:
                data["meeting"] = {"platform": self.meeting.platform, "link": self.meeting.link}
        return data

    def __repr__(self):
        return f"<Appointment(id={self.id}, status={self.status})>"


class Meeting(Base):
    """Video meeting link created by calendar sync for ONLINE sessions"""
    __tablename__ = "meetings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id = Column(
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    platform = Column(String(50), nullable=False, default="google_meet")
    link = Column(String(1000), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    appointment = relationship("Appointment", back_populates="meeting")
