# counselbook/models/client.py
from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Uuid, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from counselbook.models.base import Base, utcnow


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class Client(Base):
    """A person who books sessions; upserted by email on every booking"""
    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(30), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(SQLEnum(Gender, name="gender"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class CounselorClient(Base):
    """Counselor <-> client relationship, recorded once a booking is confirmed"""
    __tablename__ = "counselor_clients"
    __table_args__ = (
        UniqueConstraint("counselor_id", "client_id", name="uq_counselor_client"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    counselor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    client = relationship("Client")
