# counselbook/utils/time_of_day.py
"""
Time-of-day parsing and interval checks for calendar slots.

Slots are stored as integer minutes since midnight in the business timezone.
Display strings such as "9:00 AM" only exist at the API boundary; anything
that does not parse is reported as None/False so the caller can reject it
with a specific message.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo

from counselbook.config.settings import get_settings

MINUTES_PER_DAY = 24 * 60
QUARTER_HOUR_MINUTES = (0, 15, 30, 45)

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s*$")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """Minutes since midnight, 0..1439"""

    minutes: int

    def __post_init__(self):
        if not 0 <= self.minutes < MINUTES_PER_DAY:
            raise ValueError(f"minutes out of range: {self.minutes}")

    @classmethod
    def from_hm(cls, hour: int, minute: int) -> "TimeOfDay":
        return cls(hour * 60 + minute)

    @classmethod
    def parse(cls, text: str) -> "TimeOfDay":
        """Like parse_time_of_day but raises ValueError on bad input"""
        parsed = parse_time_of_day(text)
        if parsed is None:
            raise ValueError(f"Invalid time: {text!r}")
        return parsed

    @property
    def hour(self) -> int:
        return self.minutes // 60

    @property
    def minute(self) -> int:
        return self.minutes % 60

    @property
    def display(self) -> str:
        """12-hour display form, e.g. "9:00 AM" """
        meridiem = "PM" if self.hour >= 12 else "AM"
        display_hour = self.hour % 12 or 12
        return f"{display_hour}:{self.minute:02d} {meridiem}"

    def __str__(self):
        return self.display


TimeLike = Union[str, TimeOfDay]


def parse_time_of_day(text: str) -> Optional[TimeOfDay]:
    """
    Parse "H:MM AM/PM" (hour 1-12) or bare "HH:MM" (hour 0-23).

    Returns None for anything else, including out-of-range components.
    """
    if not isinstance(text, str):
        return None

    match = _TIME_PATTERN.match(text)
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = match.group(3)

    if minute > 59:
        return None

    if meridiem:
        if not 1 <= hour <= 12:
            return None
        meridiem = meridiem.upper()
        if meridiem == "PM" and hour != 12:
            hour += 12
        elif meridiem == "AM" and hour == 12:
            hour = 0
    elif hour > 23:
        return None

    return TimeOfDay.from_hm(hour, minute)


def _coerce(value: TimeLike) -> Optional[TimeOfDay]:
    if isinstance(value, TimeOfDay):
        return value
    return parse_time_of_day(value)


def is_on_quarter_hour_boundary(text: TimeLike) -> bool:
    """True when the minute component is :00, :15, :30 or :45"""
    parsed = _coerce(text)
    if parsed is None:
        return False
    return parsed.minute in QUARTER_HOUR_MINUTES


def is_exactly_one_hour(start: TimeLike, end: TimeLike) -> bool:
    """
    True when end - start is exactly 60 minutes.

    No modulo arithmetic: a slot crossing midnight (11:30 PM - 12:30 AM) is
    not a valid slot.
    """
    start_time = _coerce(start)
    end_time = _coerce(end)
    if start_time is None or end_time is None:
        return False
    return end_time.minutes - start_time.minutes == get_settings().SLOT_DURATION_MINUTES


def intervals_overlap(s1: TimeLike, e1: TimeLike, s2: TimeLike, e2: TimeLike) -> bool:
    """
    Half-open interval overlap: s1 < e2 and s2 < e1.

    Identical intervals overlap; touching intervals (9-10, 10-11) do not.
    Unparseable input never overlaps, so validation must run first.
    """
    parsed = [_coerce(value) for value in (s1, e1, s2, e2)]
    if any(value is None for value in parsed):
        return False
    start_1, end_1, start_2, end_2 = parsed
    return start_1.minutes < end_2.minutes and start_2.minutes < end_1.minutes


# ============================================================================
# Business timezone helpers
# ============================================================================

@lru_cache()
def business_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().BUSINESS_TIMEZONE)


def business_now(now: Optional[datetime] = None) -> datetime:
    """Current time (or the given aware instant) in the business timezone"""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(business_timezone())


def business_today(now: Optional[datetime] = None) -> date:
    return business_now(now).date()


def is_slot_in_past(day: date, start: TimeOfDay, now: Optional[datetime] = None) -> bool:
    """Whether a slot starting at `start` on business day `day` has already begun"""
    local_now = business_now(now)
    today = local_now.date()

    if day < today:
        return True
    if day > today:
        return False

    now_seconds = local_now.hour * 3600 + local_now.minute * 60 + local_now.second
    return start.minutes * 60 < now_seconds
