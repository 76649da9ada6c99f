# ===== counselbook/models/calendar_integration.py =====
from sqlalchemy import Column, String, Boolean, DateTime, LargeBinary, ForeignKey, Uuid
from counselbook.models.base import Base, utcnow
import uuid


class CalendarIntegration(Base):
    """A counselor's connected external calendar"""
    __tablename__ = "calendar_integrations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    counselor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = Column(String(50), nullable=False, default="google")
    is_active = Column(Boolean, default=True)

    # OAuth tokens, Fernet-encrypted
    access_token_encrypted = Column(LargeBinary)
    refresh_token_encrypted = Column(LargeBinary)
    token_expires_at = Column(DateTime(timezone=True))

    calendar_id = Column(String(255), nullable=False, default="primary")

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
