from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationError
from ..models import AvailabilityRule
from .cache import cached, professional_scope, tenant_scope
from .clock import day_of_week, format_hhmm, minutes_of, parse_hhmm, time_from_minutes
from .schedule import BusinessCalendar, get_business_hours, get_rule

REASON_TENANT_CLOSED = "tenant closed"
REASON_PROFESSIONAL_UNAVAILABLE = "professional unavailable"


@dataclass(frozen=True)
class EffectiveWindow:
    """Bookable range of one professional on one weekday, [start, end)."""

    start: time
    end: time
    lunch_start: time | None = None
    lunch_end: time | None = None

    def in_lunch(self, value: time) -> bool:
        if self.lunch_start is None or self.lunch_end is None:
            return False
        return self.lunch_start <= value < self.lunch_end

    def as_dict(self) -> dict:
        return {
            "start": format_hhmm(self.start),
            "end": format_hhmm(self.end),
            "lunch_start": format_hhmm(self.lunch_start) if self.lunch_start else None,
            "lunch_end": format_hhmm(self.lunch_end) if self.lunch_end else None,
        }


@dataclass(frozen=True)
class SlotPlan:
    slots: tuple[str, ...]
    reason: str | None = None
    window: EffectiveWindow | None = None
    breaks: tuple[str, ...] = ()


def validate_tick(tick_minutes: int) -> int:
    tick = int(tick_minutes)
    if tick <= 0 or tick > 24 * 60:
        raise ValidationError("tick must be between 1 and 1440 minutes", tick=tick)
    if 60 % tick != 0 and tick % 5 != 0:
        raise ValidationError(
            "tick must divide 60 evenly or be a multiple of 5",
            tick=tick,
        )
    return tick


def compute_window(rule: AvailabilityRule | None, calendar: BusinessCalendar) -> EffectiveWindow | None:
    if rule is None or not rule.is_available:
        return None
    # Start is clamped to the tenant's opening time; the professional's own
    # end time is kept even when it runs past the tenant's closing time.
    start = max(parse_hhmm(rule.start_time), calendar.open_time)
    end = parse_hhmm(rule.end_time)
    return EffectiveWindow(
        start=start,
        end=end,
        lunch_start=parse_hhmm(rule.lunch_start) if rule.lunch_start else None,
        lunch_end=parse_hhmm(rule.lunch_end) if rule.lunch_end else None,
    )


def build_ticks(window: EffectiveWindow, tick_minutes: int) -> list[time]:
    out = []
    cursor = minutes_of(window.start)
    end = minutes_of(window.end)
    while cursor < end:
        out.append(time_from_minutes(cursor))
        cursor += tick_minutes
    return out


def effective_window(
    db: Session,
    tenant_id: int,
    professional_id: int,
    day: date,
    calendar: BusinessCalendar | None = None,
) -> EffectiveWindow | None:
    calendar = calendar or get_business_hours(db, tenant_id)
    rule = get_rule(db, tenant_id, professional_id, day_of_week(day))
    return compute_window(rule, calendar)


def _plan_for_weekday(
    db: Session,
    tenant_id: int,
    professional_id: int,
    weekday: int,
    tick: int,
    calendar: BusinessCalendar,
) -> SlotPlan:
    if weekday not in calendar.open_days:
        return SlotPlan(slots=(), reason=REASON_TENANT_CLOSED)

    window = compute_window(get_rule(db, tenant_id, professional_id, weekday), calendar)
    if window is None:
        return SlotPlan(slots=(), reason=REASON_PROFESSIONAL_UNAVAILABLE)

    ticks = build_ticks(window, tick)
    if not ticks:
        return SlotPlan(slots=(), reason=REASON_PROFESSIONAL_UNAVAILABLE, window=window)
    return SlotPlan(
        slots=tuple(format_hhmm(t) for t in ticks),
        window=window,
        breaks=tuple(format_hhmm(t) for t in ticks if window.in_lunch(t)),
    )


def generate_slots(
    db: Session,
    tenant_id: int,
    professional_id: int,
    day: date,
    tick_minutes: int | None = None,
    calendar: BusinessCalendar | None = None,
) -> SlotPlan:
    """Candidate start times for one professional and date.

    Depends on configuration only, never on booked appointments. Holidays
    are checked per date; the rest of the plan is shared by every date with
    the same weekday and cached per professional.
    """
    tick = validate_tick(settings.SLOT_TICK_MINUTES if tick_minutes is None else tick_minutes)
    calendar = calendar or get_business_hours(db, tenant_id)

    if calendar.is_holiday(day):
        return SlotPlan(slots=(), reason=REASON_TENANT_CLOSED)

    weekday = day_of_week(day)
    return cached(
        f"slots:{tenant_id}:{professional_id}:{weekday}:{tick}",
        (tenant_scope(tenant_id), professional_scope(tenant_id, professional_id)),
        lambda: _plan_for_weekday(
            db,
            tenant_id,
            professional_id,
            weekday,
            tick,
            get_business_hours(db, tenant_id),
        ),
    )
