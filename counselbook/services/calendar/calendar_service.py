# ============================================================================
# counselbook/services/calendar/calendar_service.py
# Calendar days and time slots: validation, creation, guarded deletion
# ============================================================================
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from counselbook.config.settings import get_settings
from counselbook.core.exceptions import (
    BadAlignment,
    BadDuration,
    BelowMinimum,
    CalendarAlreadyExists,
    CalendarNotFound,
    DuplicateSlot,
    Forbidden,
    InvalidDate,
    InvalidSessionType,
    InvalidTimeFormat,
    PastTime,
    SlotNotAvailable,
    SlotNotFound,
    SlotOverlap,
)
from counselbook.core.transaction import TransactionPolicy, run_in_transaction
from counselbook.models.appointment import ACTIVE_APPOINTMENT_STATUSES, Appointment
from counselbook.models.calendar import Calendar, SessionType, SlotStatus, TimeSlot
from counselbook.services.calendar.counselor_settings import DatabaseCounselorSettings
from counselbook.services.integrations.base import CounselorSettingsProvider
from counselbook.utils.time_of_day import (
    TimeOfDay,
    business_today,
    intervals_overlap,
    is_exactly_one_hour,
    is_on_quarter_hour_boundary,
    is_slot_in_past,
    parse_time_of_day,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# (start, end, session type) after validation
ValidatedSlot = Tuple[TimeOfDay, TimeOfDay, SessionType]


def is_admin_role(actor_role) -> bool:
    """Admins bypass the per-day minimum slot floor"""
    return actor_role is not None and str(getattr(actor_role, "value", actor_role)) == settings.ADMIN_ROLE


class CalendarService:
    """Counselor calendars and their time slots"""

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @staticmethod
    def list_calendar_dates(
            db: Session,
            counselor_id: UUID,
            from_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """All calendar days of a counselor with slot counts, oldest first"""
        available_count = func.coalesce(
            func.sum(case((TimeSlot.status == SlotStatus.AVAILABLE, 1), else_=0)), 0
        )
        total_count = func.count(TimeSlot.id)

        query = (
            db.query(Calendar, available_count, total_count)
            .outerjoin(TimeSlot, TimeSlot.calendar_id == Calendar.id)
            .filter(Calendar.counselor_id == counselor_id)
        )
        if from_date:
            query = query.filter(Calendar.date >= from_date)

        rows = query.group_by(Calendar.id).order_by(Calendar.date.asc()).all()

        return [
            {
                "id": str(calendar.id),
                "date": calendar.date.isoformat(),
                "available_slot_count": int(available or 0),
                "total_slot_count": int(total or 0),
                "have_slots": bool(total),
            }
            for calendar, available, total in rows
        ]

    @staticmethod
    def list_date_slots(db: Session, calendar_id: UUID) -> Dict[str, Any]:
        """Slots of one calendar day, sorted by start time"""
        calendar = db.query(Calendar).filter(Calendar.id == calendar_id).first()
        if not calendar:
            raise CalendarNotFound("Calendar not found")

        slots = db.query(TimeSlot).filter(
            TimeSlot.calendar_id == calendar_id
        ).order_by(TimeSlot.start_minute.asc()).all()

        return {
            "calendar_id": str(calendar.id),
            "counselor_id": str(calendar.counselor_id),
            "date": calendar.date.isoformat(),
            "timezone": settings.BUSINESS_TIMEZONE,
            "slots": [slot.to_dict() for slot in slots],
        }

    @staticmethod
    def get_slots_with_calendar_dates(db: Session, counselor_id: UUID) -> List[Dict[str, Any]]:
        """Every calendar day with its slots and the active appointment holding each slot"""
        calendars = db.query(Calendar).filter(
            Calendar.counselor_id == counselor_id
        ).order_by(Calendar.date.asc()).all()

        slot_ids = [slot.id for calendar in calendars for slot in calendar.time_slots]
        active_by_slot = {}
        if slot_ids:
            appointments = db.query(Appointment).filter(
                Appointment.time_slot_id.in_(slot_ids),
                Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            ).all()
            active_by_slot = {appointment.time_slot_id: appointment for appointment in appointments}

        result = []
        for calendar in calendars:
            slots = []
            for slot in calendar.time_slots:
                data = slot.to_dict()
                appointment = active_by_slot.get(slot.id)
                data["appointment"] = (
                    appointment.to_dict(include_relations=False) if appointment else None
                )
                slots.append(data)

            result.append({
                "id": str(calendar.id),
                "date": calendar.date.isoformat(),
                "timezone": settings.BUSINESS_TIMEZONE,
                "slots": slots,
            })
        return result

    # ------------------------------------------------------------------
    # Calendar days
    # ------------------------------------------------------------------

    @staticmethod
    def create_calendar_date(
            db: Session,
            counselor_id: UUID,
            day: date,
            now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Create an empty calendar day.

        Raises:
            InvalidDate: day is before today in the business timezone
            CalendarAlreadyExists: the counselor already has this day
        """
        if day < business_today(now):
            raise InvalidDate("Cannot create calendar for past dates")

        def work(session: Session) -> Calendar:
            existing = session.query(Calendar.id).filter(
                Calendar.counselor_id == counselor_id,
                Calendar.date == day,
            ).first()
            if existing:
                raise CalendarAlreadyExists(f"Calendar for {day.isoformat()} already exists")

            calendar = Calendar(counselor_id=counselor_id, date=day)
            session.add(calendar)
            return calendar

        try:
            calendar = run_in_transaction(db, work, TransactionPolicy.for_create(), "create_calendar_date")
        except IntegrityError:
            # Lost a race on uq_calendar_counselor_date
            raise CalendarAlreadyExists(f"Calendar for {day.isoformat()} already exists")

        logger.info(f"Created calendar {calendar.id} for counselor {counselor_id} on {day}")
        return {
            "id": str(calendar.id),
            "counselor_id": str(calendar.counselor_id),
            "date": calendar.date.isoformat(),
        }

    # ------------------------------------------------------------------
    # Slot creation
    # ------------------------------------------------------------------

    @staticmethod
    def create_slots_for_date(
            db: Session,
            calendar_id: UUID,
            slots: List[Dict[str, Any]],
            actor_role,
            counselor_id: Optional[UUID] = None,
            settings_provider: Optional[CounselorSettingsProvider] = None,
            now: Optional[datetime] = None,
    ) -> int:
        """
        Validate and insert a batch of slots on an existing calendar day.

        Args:
            calendar_id: Target calendar
            slots: [{"start_time": "9:00 AM", "end_time": "10:00 AM", "type": "ONLINE"}]
            actor_role: Role of the caller; admins skip the minimum check
            counselor_id: When given, must own the calendar

        Returns:
            Number of slots inserted
        """
        provider = settings_provider or DatabaseCounselorSettings(db)

        def work(session: Session) -> int:
            # Row lock serializes concurrent slot writers on the same day
            calendar = session.query(Calendar).filter(
                Calendar.id == calendar_id
            ).with_for_update().first()
            if not calendar:
                raise CalendarNotFound("Calendar not found")
            if counselor_id is not None and calendar.counselor_id != counselor_id:
                raise Forbidden("You do not have permission to modify this calendar")

            existing = CalendarService._existing_intervals(session, calendar.id)
            validated = CalendarService.validate_day_slots(calendar.date, slots, existing, now)

            if not existing and not is_admin_role(actor_role):
                minimum = provider.get_minimum_slots_per_day(calendar.counselor_id)
                if len(validated) < minimum:
                    raise BelowMinimum(
                        f"Minimum {minimum} slots per day required. Only {len(validated)} slots provided."
                    )

            CalendarService._insert_slots(session, calendar.id, validated)
            return len(validated)

        created = run_in_transaction(db, work, TransactionPolicy.for_create(), "create_slots_for_date")
        logger.info(f"Created {created} slots on calendar {calendar_id}")
        return created

    @staticmethod
    def create_slots_with_new_calendar_dates(
            db: Session,
            counselor_id: UUID,
            days: List[Dict[str, Any]],
            actor_role,
            settings_provider: Optional[CounselorSettingsProvider] = None,
            now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Create slots across several days, creating calendars on demand.

        The whole batch commits or nothing does.

        Args:
            days: [{"date": date, "slots": [...]}]
        """
        provider = settings_provider or DatabaseCounselorSettings(db)
        admin = is_admin_role(actor_role)
        today = business_today(now)

        seen_days = set()
        for entry in days:
            day = entry["date"]
            if day < today:
                raise InvalidDate(f"Cannot create slots for past date {day.isoformat()}")
            if day in seen_days:
                raise InvalidDate(f"Duplicate date in request: {day.isoformat()}")
            seen_days.add(day)

        def work(session: Session) -> Dict[str, Any]:
            minimum = None if admin else provider.get_minimum_slots_per_day(counselor_id)
            calendars_created = 0
            slots_created = 0
            results = []

            for entry in days:
                day = entry["date"]
                calendar = session.query(Calendar).filter(
                    Calendar.counselor_id == counselor_id,
                    Calendar.date == day,
                ).with_for_update().first()

                existing = CalendarService._existing_intervals(session, calendar.id) if calendar else []
                validated = CalendarService.validate_day_slots(day, entry["slots"], existing, now)

                if minimum is not None:
                    if calendar is None and len(validated) < minimum:
                        raise BelowMinimum(
                            f"Minimum {minimum} slots per day required. "
                            f"Only {len(validated)} slots provided for {day.isoformat()}."
                        )
                    if calendar is not None and len(existing) + len(validated) < minimum:
                        raise BelowMinimum(
                            f"Minimum {minimum} slots per day required. "
                            f"Only {len(existing) + len(validated)} slots would exist on {day.isoformat()}."
                        )

                if calendar is None:
                    calendar = Calendar(counselor_id=counselor_id, date=day)
                    session.add(calendar)
                    session.flush()
                    calendars_created += 1

                CalendarService._insert_slots(session, calendar.id, validated)
                slots_created += len(validated)
                results.append({
                    "calendar_id": str(calendar.id),
                    "date": day.isoformat(),
                    "slots_created": len(validated),
                })

            return {
                "calendars_created": calendars_created,
                "slots_created": slots_created,
                "dates": results,
            }

        try:
            result = run_in_transaction(
                db, work, TransactionPolicy.for_create(), "create_slots_with_new_calendar_dates"
            )
        except IntegrityError:
            # Another request created one of these calendars first; rerun against it
            logger.warning(f"Counselor {counselor_id}: calendar created concurrently, rerunning batch")
            try:
                result = run_in_transaction(
                    db, work, TransactionPolicy.for_create(), "create_slots_with_new_calendar_dates"
                )
            except IntegrityError:
                raise CalendarAlreadyExists("A calendar in this batch was created by another request")
        logger.info(
            f"Counselor {counselor_id}: {result['slots_created']} slots over {len(days)} days "
            f"({result['calendars_created']} new calendars)"
        )
        return result

    # ------------------------------------------------------------------
    # Slot deletion
    # ------------------------------------------------------------------

    @staticmethod
    def delete_slot(
            db: Session,
            counselor_id: UUID,
            slot_id: UUID,
            actor_role,
            settings_provider: Optional[CounselorSettingsProvider] = None,
    ) -> None:
        """Delete an AVAILABLE slot, keeping the day at or above the counselor minimum"""
        provider = settings_provider or DatabaseCounselorSettings(db)

        def work(session: Session) -> None:
            slot = (
                session.query(TimeSlot)
                .join(Calendar, TimeSlot.calendar_id == Calendar.id)
                .filter(TimeSlot.id == slot_id, Calendar.counselor_id == counselor_id)
                .first()
            )
            if not slot:
                raise SlotNotFound("Time slot not found or you do not have permission to delete it")
            if slot.status != SlotStatus.AVAILABLE:
                raise SlotNotAvailable("Only available slots can be deleted")

            if not is_admin_role(actor_role):
                minimum = provider.get_minimum_slots_per_day(counselor_id)
                current = session.query(func.count(TimeSlot.id)).filter(
                    TimeSlot.calendar_id == slot.calendar_id
                ).scalar()
                if current - 1 < minimum:
                    raise BelowMinimum(
                        f"Cannot delete slot. Minimum {minimum} slots per day required. "
                        f"Currently {current} slots exist."
                    )

            # Guarded on status so a concurrent booking wins
            deleted = session.query(TimeSlot).filter(
                TimeSlot.id == slot_id,
                TimeSlot.status == SlotStatus.AVAILABLE,
            ).delete(synchronize_session=False)
            if deleted != 1:
                raise SlotNotAvailable("Only available slots can be deleted")
            session.expunge(slot)

        run_in_transaction(db, work, operation="delete_slot")
        logger.info(f"Deleted slot {slot_id} for counselor {counselor_id}")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_day_slots(
            day: date,
            slots: Iterable[Dict[str, Any]],
            existing: List[Tuple[TimeOfDay, TimeOfDay]],
            now: Optional[datetime] = None,
    ) -> List[ValidatedSlot]:
        """
        Check a batch of slots for one day, failing on the first violation.

        Each slot in order: past time, quarter-hour start, exact duration,
        duplicate/overlap with existing slots. Then the batch against itself.
        """
        date_label = day.isoformat()
        validated: List[ValidatedSlot] = []

        for slot in slots:
            start = parse_time_of_day(slot.get("start_time"))
            end = parse_time_of_day(slot.get("end_time"))
            if start is None or end is None:
                bad = slot.get("start_time") if start is None else slot.get("end_time")
                raise InvalidTimeFormat(f"Invalid time format: {bad}. Expected format like 9:00 AM.")

            if is_slot_in_past(day, start, now):
                raise PastTime(
                    f"Cannot create slot for past time. Slot starts at {start} on {date_label}, "
                    f"which has already passed."
                )

            if not is_on_quarter_hour_boundary(start):
                raise BadAlignment(
                    f"Start time must be at 15-minute intervals (:00, :15, :30, :45). Invalid time: {start}"
                )

            if not is_exactly_one_hour(start, end):
                raise BadDuration(f"Each slot must be exactly 1 hour. Slot from {start} to {end} is not valid.")

            for existing_start, existing_end in existing:
                if start == existing_start and end == existing_end:
                    raise DuplicateSlot(
                        f"Duplicate slot detected. A slot from {start} to {end} already exists on this date."
                    )
                if intervals_overlap(start, end, existing_start, existing_end):
                    raise SlotOverlap(
                        f"Slot overlap detected. The slot from {start} to {end} overlaps with "
                        f"existing slot {existing_start} to {existing_end}."
                    )

            try:
                session_type = SessionType(slot.get("type"))
            except ValueError:
                raise InvalidSessionType(
                    f"Invalid session type: {slot.get('type')}. Expected ONLINE or IN_PERSON."
                )

            validated.append((start, end, session_type))

        for index, (start, end, _) in enumerate(validated):
            for other_start, other_end, _ in validated[index + 1:]:
                if start == other_start and end == other_end:
                    raise DuplicateSlot(
                        f"Duplicate slots in request. Multiple slots with time {start} to {end}."
                    )
                if intervals_overlap(start, end, other_start, other_end):
                    raise SlotOverlap(
                        f"Overlapping slots in request. Slots {start}-{end} and "
                        f"{other_start}-{other_end} overlap on {date_label}."
                    )

        return validated

    @staticmethod
    def _existing_intervals(db: Session, calendar_id: UUID) -> List[Tuple[TimeOfDay, TimeOfDay]]:
        rows = db.query(TimeSlot.start_minute, TimeSlot.end_minute).filter(
            TimeSlot.calendar_id == calendar_id
        ).order_by(TimeSlot.start_minute.asc()).all()
        return [(TimeOfDay(start), TimeOfDay(end)) for start, end in rows]

    @staticmethod
    def _insert_slots(db: Session, calendar_id: UUID, validated: List[ValidatedSlot]) -> None:
        db.add_all([
            TimeSlot(
                calendar_id=calendar_id,
                start_minute=start.minutes,
                end_minute=end.minutes,
                type=session_type,
                status=SlotStatus.AVAILABLE,
            )
            for start, end, session_type in validated
        ])
