# ============================================================================
# FILE: counselbook/models/user.py
# Counselors and administrators are owned by the user-management service;
# the booking core only reads them.
# ============================================================================
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Uuid, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from counselbook.models.base import Base, utcnow


class UserRole(str, enum.Enum):
    """Platform-level user roles."""
    SUPER_ADMIN = "SUPER_ADMIN"  # Bypasses the per-day slot floor
    COUNSELOR = "COUNSELOR"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(
        SQLEnum(UserRole, name="user_role"),
        default=UserRole.COUNSELOR,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    settings = relationship("CounselorSettings", back_populates="counselor", uselist=False)

    def is_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class CounselorSettings(Base):
    """Per-counselor booking policy"""
    __tablename__ = "counselor_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    counselor_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    minimum_slots_per_day = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    counselor = relationship("User", back_populates="settings")
