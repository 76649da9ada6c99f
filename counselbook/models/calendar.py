# ===== counselbook/models/calendar.py =====
from sqlalchemy import (
    Column, Integer, Boolean, Date, DateTime, ForeignKey, Uuid,
    UniqueConstraint, CheckConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import uuid
import enum
from counselbook.models.base import Base, utcnow
from counselbook.utils.time_of_day import TimeOfDay


class SessionType(str, enum.Enum):
    ONLINE = "ONLINE"
    IN_PERSON = "IN_PERSON"


class SlotStatus(str, enum.Enum):
    """AVAILABLE -> PROCESSING -> BOOKED -> AVAILABLE, or AVAILABLE -> BOOKED"""
    AVAILABLE = "AVAILABLE"
    PROCESSING = "PROCESSING"  # Held for a public booking awaiting payment
    BOOKED = "BOOKED"


class Calendar(Base):
    """One counselor's bookable day, in the business timezone"""
    __tablename__ = "calendars"
    __table_args__ = (
        UniqueConstraint("counselor_id", "date", name="uq_calendar_counselor_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    counselor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    time_slots = relationship(
        "TimeSlot",
        back_populates="calendar",
        cascade="all, delete-orphan",
        order_by="TimeSlot.start_minute",
    )

    def __repr__(self):
        return f"<Calendar(id={self.id}, counselor_id={self.counselor_id}, date={self.date})>"


class TimeSlot(Base):
    """A 60-minute bookable interval inside a Calendar"""
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_minute >= 0 AND start_minute < 1440", name="ck_time_slot_start_range"),
        CheckConstraint("end_minute > start_minute", name="ck_time_slot_end_after_start"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    calendar_id = Column(
        Uuid,
        ForeignKey("calendars.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Minutes since midnight, business timezone
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    type = Column(SQLEnum(SessionType, name="session_type"), nullable=False)
    status = Column(
        SQLEnum(SlotStatus, name="slot_status"),
        nullable=False,
        default=SlotStatus.AVAILABLE,
        index=True,
    )
    is_rescheduled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    calendar = relationship("Calendar", back_populates="time_slots")

    @property
    def start_time(self) -> TimeOfDay:
        return TimeOfDay(self.start_minute)

    @property
    def end_time(self) -> TimeOfDay:
        return TimeOfDay(self.end_minute)

    def to_dict(self):
        return {
            "id": str(self.id),
            "calendar_id": str(self.calendar_id),
            "start_time": self.start_time.display,
            "end_time": self.end_time.display,
            "type": self.type.value,
            "status": self.status.value,
            "is_rescheduled": self.is_rescheduled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TimeSlot(id={self.id}, {self.start_time}-{self.end_time}, status={self.status})>"
