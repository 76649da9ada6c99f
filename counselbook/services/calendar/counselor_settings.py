"""Database-backed counselor booking policy"""
from uuid import UUID

from sqlalchemy.orm import Session

from counselbook.core.exceptions import CounselorSettingsNotFound
from counselbook.models.user import CounselorSettings
from counselbook.services.integrations.base import CounselorSettingsProvider


class DatabaseCounselorSettings(CounselorSettingsProvider):
    """Reads minimum_slots_per_day from counselor_settings"""

    def __init__(self, db: Session):
        self.db = db

    def get_minimum_slots_per_day(self, counselor_id: UUID) -> int:
        minimum = self.db.query(CounselorSettings.minimum_slots_per_day).filter(
            CounselorSettings.counselor_id == counselor_id
        ).scalar()

        if minimum is None:
            raise CounselorSettingsNotFound("Counselor settings not found")
        return minimum
