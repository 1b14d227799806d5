"""Wall-clock time handling.

IMPORTANT: slot and session instants are stored as *naive* datetimes holding
the teacher's stated local wall-clock value (e.g. "Tuesday 09:00"). They are
never converted between timezones inside the engine. Two bookings are the same
slot when their literal date, hour and minute match, whatever timezone a
client happens to render them in. Converting these values to real
timezone-aware instants would break that rule; do it only at display time.

Incoming values that carry an offset ("...Z", "+03:00") have the offset
dropped, not applied. "Now" is read on the clock of WALL_CLOCK_TIMEZONE so it
can be compared with the stored values.
"""

from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from tutorhub.core.config import settings


def wall_clock_now(tz_name: str | None = None) -> datetime:
    tz = ZoneInfo(tz_name or settings.wall_clock_timezone)
    return datetime.now(tz).replace(tzinfo=None)


def to_wall_clock(value: datetime) -> datetime:
    """Drop tzinfo without shifting, and truncate to the minute."""
    return value.replace(tzinfo=None, second=0, microsecond=0)


def combine(day: date, at: time) -> datetime:
    return datetime.combine(day, at.replace(second=0, microsecond=0, tzinfo=None))


def minute_of(value: datetime | time) -> time:
    return time(value.hour, value.minute)
