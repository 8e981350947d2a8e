"""Business hours and weekly availability rules.

Storage for the two configuration sources slot generation reads. Every write
goes through the cache invalidation dispatch before returning.
"""

from dataclasses import dataclass, field
from datetime import date, time

import holidays
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..models import AvailabilityRule, BusinessHours
from .cache import invalidate
from .catalog import get_professional
from .clock import day_of_week, format_hhmm, get_zone, minutes_of, parse_hhmm

logger = structlog.get_logger("agenda.schedule")


@dataclass(frozen=True)
class BusinessCalendar:
    open_time: time
    close_time: time
    open_days: frozenset[int]
    timezone: str
    holiday_country: str | None = None
    _holidays: object = field(default=None, compare=False, repr=False)

    def is_holiday(self, day: date) -> bool:
        # country_holidays() fills years lazily, so an unused calendar is empty.
        if self._holidays is None:
            return False
        return day in self._holidays

    def is_working_day(self, day: date) -> bool:
        if day_of_week(day) not in self.open_days:
            return False
        return not self.is_holiday(day)

    def as_dict(self) -> dict:
        return {
            "open_time": format_hhmm(self.open_time),
            "close_time": format_hhmm(self.close_time),
            "open_days": sorted(self.open_days),
            "timezone": self.timezone,
            "holiday_country": self.holiday_country,
        }


def _parse_open_days(raw: str | None) -> frozenset[int]:
    days = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit() and 0 <= int(part) <= 6:
            days.add(int(part))
    return frozenset(days)


def _holiday_calendar(country: str | None):
    if not country:
        return None
    try:
        return holidays.country_holidays(country.upper())
    except NotImplementedError:
        raise ValidationError("Unsupported holiday country", holiday_country=country)


def _build_calendar(
    open_time: str,
    close_time: str,
    open_days: frozenset[int],
    tz_name: str,
    holiday_country: str | None,
) -> BusinessCalendar:
    get_zone(tz_name)
    return BusinessCalendar(
        open_time=parse_hhmm(open_time),
        close_time=parse_hhmm(close_time),
        open_days=open_days,
        timezone=tz_name,
        holiday_country=(holiday_country or None),
        _holidays=_holiday_calendar(holiday_country),
    )


def get_business_hours(db: Session, tenant_id: int) -> BusinessCalendar:
    row = db.execute(
        select(BusinessHours).where(BusinessHours.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if not row:
        return _build_calendar(
            settings.DEFAULT_OPEN_TIME,
            settings.DEFAULT_CLOSE_TIME,
            settings.DEFAULT_OPEN_DAYS,
            settings.DEFAULT_TIMEZONE,
            None,
        )
    return _build_calendar(
        row.open_time,
        row.close_time,
        _parse_open_days(row.open_days),
        row.timezone,
        row.holiday_country,
    )


def upsert_business_hours(
    db: Session,
    tenant_id: int,
    open_time: str,
    close_time: str,
    open_days: list[int],
    timezone: str,
    holiday_country: str | None = None,
) -> BusinessCalendar:
    calendar = _build_calendar(
        open_time, close_time, frozenset(open_days), timezone, holiday_country
    )
    if minutes_of(calendar.close_time) <= minutes_of(calendar.open_time):
        raise ValidationError(
            "close_time must be after open_time",
            open_time=open_time,
            close_time=close_time,
        )

    row = db.execute(
        select(BusinessHours).where(BusinessHours.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if not row:
        row = BusinessHours(tenant_id=tenant_id)
        db.add(row)
    row.open_time = format_hhmm(calendar.open_time)
    row.close_time = format_hhmm(calendar.close_time)
    row.open_days = ",".join(str(d) for d in sorted(calendar.open_days))
    row.timezone = timezone
    row.holiday_country = calendar.holiday_country
    db.commit()

    invalidate("business_hours.changed", tenant_id=tenant_id)
    logger.info("business_hours_updated", tenant_id=tenant_id, **calendar.as_dict())
    return calendar


def _validate_rule_times(
    start_time: str,
    end_time: str,
    lunch_start: str | None,
    lunch_end: str | None,
) -> None:
    start = minutes_of(parse_hhmm(start_time))
    end = minutes_of(parse_hhmm(end_time))
    if end <= start:
        raise ValidationError(
            "end_time must be after start_time",
            start_time=start_time,
            end_time=end_time,
        )
    if (lunch_start is None) != (lunch_end is None):
        raise ValidationError("lunch_start and lunch_end must be set together")
    if lunch_start is not None:
        ls = minutes_of(parse_hhmm(lunch_start))
        le = minutes_of(parse_hhmm(lunch_end))
        if le <= ls:
            raise ValidationError(
                "lunch_end must be after lunch_start",
                lunch_start=lunch_start,
                lunch_end=lunch_end,
            )


def get_rule(
    db: Session, tenant_id: int, professional_id: int, weekday: int
) -> AvailabilityRule | None:
    return db.execute(
        select(AvailabilityRule).where(
            AvailabilityRule.tenant_id == tenant_id,
            AvailabilityRule.professional_id == professional_id,
            AvailabilityRule.day_of_week == weekday,
        )
    ).scalar_one_or_none()


def get_rule_by_id(db: Session, tenant_id: int, rule_id: int) -> AvailabilityRule:
    row = db.execute(
        select(AvailabilityRule).where(
            AvailabilityRule.id == rule_id,
            AvailabilityRule.tenant_id == tenant_id,
        )
    ).scalar_one_or_none()
    if not row:
        raise NotFoundError("Availability rule not found", availability_id=rule_id)
    return row


def list_rules(db: Session, tenant_id: int, professional_id: int) -> list[AvailabilityRule]:
    get_professional(db, tenant_id, professional_id)
    stmt = (
        select(AvailabilityRule)
        .where(
            AvailabilityRule.tenant_id == tenant_id,
            AvailabilityRule.professional_id == professional_id,
        )
        .order_by(AvailabilityRule.day_of_week.asc())
    )
    return db.execute(stmt).scalars().all()


def upsert_rule(
    db: Session,
    tenant_id: int,
    professional_id: int,
    day_of_week: int,
    start_time: str,
    end_time: str,
    is_available: bool = True,
    lunch_start: str | None = None,
    lunch_end: str | None = None,
) -> AvailabilityRule:
    if not 0 <= int(day_of_week) <= 6:
        raise ValidationError("day_of_week must be within 0..6", day_of_week=day_of_week)
    get_professional(db, tenant_id, professional_id)
    _validate_rule_times(start_time, end_time, lunch_start, lunch_end)

    row = get_rule(db, tenant_id, professional_id, day_of_week)
    if not row:
        row = AvailabilityRule(
            tenant_id=tenant_id,
            professional_id=professional_id,
            day_of_week=day_of_week,
        )
        db.add(row)
    row.start_time = format_hhmm(parse_hhmm(start_time))
    row.end_time = format_hhmm(parse_hhmm(end_time))
    row.is_available = bool(is_available)
    row.lunch_start = format_hhmm(parse_hhmm(lunch_start)) if lunch_start else None
    row.lunch_end = format_hhmm(parse_hhmm(lunch_end)) if lunch_end else None
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(
            "Availability for this weekday already exists",
            professional_id=professional_id,
            day_of_week=day_of_week,
        )
    db.refresh(row)

    invalidate("availability.changed", tenant_id=tenant_id, professional_id=professional_id)
    logger.info(
        "availability_upserted",
        tenant_id=tenant_id,
        professional_id=professional_id,
        day_of_week=day_of_week,
    )
    return row


def update_rule(db: Session, tenant_id: int, rule_id: int, **changes) -> AvailabilityRule:
    row = get_rule_by_id(db, tenant_id, rule_id)
    target_day = changes.get("day_of_week")
    if target_day is not None and target_day != row.day_of_week:
        clash = get_rule(db, tenant_id, row.professional_id, target_day)
        if clash:
            raise ValidationError(
                "Availability for this weekday already exists",
                professional_id=row.professional_id,
                day_of_week=target_day,
            )
        row.day_of_week = target_day

    merged = {
        "start_time": changes.get("start_time") or row.start_time,
        "end_time": changes.get("end_time") or row.end_time,
        "lunch_start": changes["lunch_start"] if "lunch_start" in changes else row.lunch_start,
        "lunch_end": changes["lunch_end"] if "lunch_end" in changes else row.lunch_end,
    }
    _validate_rule_times(**merged)
    row.start_time = format_hhmm(parse_hhmm(merged["start_time"]))
    row.end_time = format_hhmm(parse_hhmm(merged["end_time"]))
    row.lunch_start = format_hhmm(parse_hhmm(merged["lunch_start"])) if merged["lunch_start"] else None
    row.lunch_end = format_hhmm(parse_hhmm(merged["lunch_end"])) if merged["lunch_end"] else None
    if changes.get("is_available") is not None:
        row.is_available = bool(changes["is_available"])
    db.commit()
    db.refresh(row)

    invalidate("availability.changed", tenant_id=tenant_id, professional_id=row.professional_id)
    return row


def delete_rule(db: Session, tenant_id: int, rule_id: int) -> None:
    row = get_rule_by_id(db, tenant_id, rule_id)
    professional_id = row.professional_id
    db.delete(row)
    db.commit()
    invalidate("availability.changed", tenant_id=tenant_id, professional_id=professional_id)
    logger.info("availability_deleted", tenant_id=tenant_id, availability_id=rule_id)
