"""Tenant wall-clock helpers.

Every appointment time is stored as a naive ``datetime`` holding the tenant's
local wall-clock reading. Aware values coming from callers are converted into
the tenant timezone once, at the boundary, and stripped of tzinfo. Seconds are
dropped so starts stay on the HH:MM grid. Nothing in the engine round-trips
through UTC.
"""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import ValidationError

WEEKDAY_NAMES = (
    "sunday",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
)


def get_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone '{tz_name}'", timezone=tz_name)


def tenant_now(tz_name: str) -> datetime:
    return datetime.now(get_zone(tz_name)).replace(tzinfo=None, microsecond=0)


def to_wall_clock(value: datetime, tz_name: str) -> datetime:
    if value.tzinfo is None:
        return value.replace(second=0, microsecond=0)
    return value.astimezone(get_zone(tz_name)).replace(tzinfo=None, second=0, microsecond=0)


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def parse_hhmm(value: str) -> time:
    raw = (value or "").strip()
    try:
        hours, minutes = raw.split(":")
        return time(int(hours), int(minutes))
    except ValueError:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM", value=value)


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(total: int) -> time:
    return time(total // 60, total % 60)
