"""Read path: slot plan filtered against booked appointments."""

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationError
from .catalog import get_professional, get_service, offers_service
from .clock import tenant_now
from .conflicts import SlotDiagnostic, filter_available
from .ledger import active_intervals
from .schedule import get_business_hours
from .slots import EffectiveWindow, generate_slots


@dataclass(frozen=True)
class DayAvailability:
    professional_id: int
    day: date
    available_slots: list[str]
    reason: str | None
    window: EffectiveWindow | None
    diagnostics: list[SlotDiagnostic]

    def as_dict(self) -> dict:
        return {
            "professional_id": self.professional_id,
            "date": self.day.isoformat(),
            "available_slots": list(self.available_slots),
            "reason": self.reason,
            "window": self.window.as_dict() if self.window else None,
            "diagnostics": [d.as_dict() for d in self.diagnostics],
        }


def get_day_availability(
    db: Session,
    tenant_id: int,
    professional_id: int,
    day: date,
    service_id: int | None = None,
    tick_minutes: int | None = None,
    now: datetime | None = None,
) -> DayAvailability:
    """Bookable start times for one professional and date.

    Without ``service_id`` a slot is checked as a single tick. Takes no locks;
    the booking itself re-checks everything.
    """
    professional = get_professional(db, tenant_id, professional_id)
    calendar = get_business_hours(db, tenant_id)
    now = now or tenant_now(calendar.timezone)

    plan = generate_slots(db, tenant_id, professional_id, day, tick_minutes, calendar=calendar)

    if service_id is not None:
        service = get_service(db, tenant_id, service_id)
        if not offers_service(professional, service.id):
            raise ValidationError(
                "The professional does not offer this service",
                reason="service not offered",
                professional_id=professional_id,
                service_id=service_id,
            )
        duration = int(service.duration_min)
    else:
        duration = int(settings.SLOT_TICK_MINUTES if tick_minutes is None else tick_minutes)

    if not plan.slots:
        return DayAvailability(professional_id, day, [], plan.reason, plan.window, [])

    available, diagnostics = filter_available(
        plan.slots,
        professional_id,
        day,
        duration,
        active_intervals(db, tenant_id, professional_id, day),
        now,
        breaks=plan.breaks,
    )
    return DayAvailability(
        professional_id=professional_id,
        day=day,
        available_slots=available,
        reason=plan.reason,
        window=plan.window,
        diagnostics=diagnostics,
    )
