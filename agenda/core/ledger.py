"""Appointment ledger: the single place where a slot becomes taken.

``create_appointment`` validates and persists under a per-professional
lock and a row lock on the professional, re-checking overlaps against
the live appointment table rather than any earlier slot listing. Loyalty
bookkeeping and the bus notification run after the commit and can fail
without undoing the booking.
"""

from datetime import date, datetime, time, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import BookingError, ConflictError, NotFoundError, ValidationError
from ..models import (
    APPOINTMENT_STATUSES,
    Appointment,
    AppointmentStatusEvent,
    utc_now_naive,
)
from . import loyalty
from .cache import cached, day_scope, invalidate
from .catalog import get_professional, get_service, offers_service
from .clock import WEEKDAY_NAMES, day_of_week, format_hhmm, tenant_now, to_wall_clock
from .conflicts import CANCELLED, BookedInterval, find_conflicts
from .locks import booking_lock
from .notifications import notify_appointment_created
from .schedule import BusinessCalendar, get_business_hours
from .slots import REASON_TENANT_CLOSED, EffectiveWindow, effective_window

logger = structlog.get_logger("agenda.ledger")


def _touched_days(start: datetime, duration_min: int) -> list[date]:
    end = start + timedelta(minutes=duration_min)
    days = {start.date() - timedelta(days=1), start.date(), end.date()}
    return sorted(days)


def _load_intervals(
    db: Session, tenant_id: int, professional_id: int, day: date
) -> list[BookedInterval]:
    # Neighbouring days are included so long appointments crossing midnight
    # still count against this day.
    window_start = datetime.combine(day, time.min) - timedelta(days=1)
    window_end = datetime.combine(day, time.min) + timedelta(days=2)
    rows = db.execute(
        select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.professional_id == professional_id,
            Appointment.start_at >= window_start,
            Appointment.start_at < window_end,
            Appointment.status != CANCELLED,
        )
    ).scalars()
    return [
        BookedInterval(
            id=row.id,
            professional_id=row.professional_id,
            start=row.start_at,
            duration_min=int(row.duration_min),
            status=row.status,
        )
        for row in rows
    ]


def active_intervals(
    db: Session, tenant_id: int, professional_id: int, day: date
) -> list[BookedInterval]:
    """Cached snapshot for slot listings. Not for the write path."""
    return cached(
        f"appointments:{tenant_id}:{professional_id}",
        (day_scope(tenant_id, day),),
        lambda: _load_intervals(db, tenant_id, professional_id, day),
    )


def _check_open(calendar: BusinessCalendar, day: date) -> None:
    if calendar.is_working_day(day):
        return
    raise ValidationError(
        "The business is closed on this day",
        reason=REASON_TENANT_CLOSED,
        day_of_week=day_of_week(day),
        weekday=WEEKDAY_NAMES[day_of_week(day)],
        open_days=sorted(calendar.open_days),
        holiday=calendar.is_holiday(day),
    )


def _check_window(
    window: EffectiveWindow | None,
    calendar: BusinessCalendar,
    start: datetime,
    professional_id: int,
) -> None:
    boundaries = {
        "open_time": format_hhmm(calendar.open_time),
        "close_time": format_hhmm(calendar.close_time),
    }
    if window is None:
        raise ValidationError(
            "The professional is not available on this day",
            reason="outside availability",
            professional_id=professional_id,
            day_of_week=day_of_week(start.date()),
            **boundaries,
        )

    boundaries.update(window_start=format_hhmm(window.start), window_end=format_hhmm(window.end))
    requested = start.time()
    if requested < window.start:
        raise ValidationError(
            f"Start time is before the professional's availability ({format_hhmm(window.start)})",
            reason="outside availability",
            boundary="before_open",
            requested=format_hhmm(requested),
            **boundaries,
        )
    if requested >= window.end:
        raise ValidationError(
            f"Start time is at or after the end of the professional's availability ({format_hhmm(window.end)})",
            reason="outside availability",
            boundary="after_end",
            requested=format_hhmm(requested),
            **boundaries,
        )
    if window.in_lunch(requested):
        raise ValidationError(
            "Cannot schedule an appointment during the lunch break",
            reason="lunch break",
            requested=format_hhmm(requested),
            lunch_start=format_hhmm(window.lunch_start),
            lunch_end=format_hhmm(window.lunch_end),
        )


def add_status_event(
    db: Session,
    tenant_id: int,
    appointment_id: int,
    from_status: str | None,
    to_status: str,
    actor: str | None = None,
    note: str | None = None,
) -> AppointmentStatusEvent:
    event = AppointmentStatusEvent(
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        from_status=from_status,
        to_status=to_status,
        actor=(actor or "").strip() or None,
        note=(note or "").strip() or None,
        created_at=utc_now_naive(),
    )
    db.add(event)
    db.flush()
    return event


def _apply_loyalty(db: Session, appointment: Appointment, now: datetime) -> None:
    try:
        if appointment.is_loyalty_reward:
            loyalty.consume_reward(db, appointment.tenant_id, appointment.client_phone, now=now)
        else:
            loyalty.increment_attendance(
                db, appointment.tenant_id, appointment.client_phone, appointment.client_name
            )
    except Exception:
        # The booking stands; accounts can be reconciled from the ledger.
        db.rollback()
        logger.exception(
            "loyalty_update_failed",
            appointment_id=appointment.id,
            tenant_id=appointment.tenant_id,
            client_phone=appointment.client_phone,
        )


def create_appointment(
    db: Session,
    tenant_id: int,
    client_name: str,
    client_phone: str,
    service_id: int,
    professional_id: int,
    start_at: datetime,
    is_loyalty_reward: bool = False,
    now: datetime | None = None,
    actor: str | None = None,
) -> Appointment:
    phone = loyalty.normalize_phone(client_phone)
    if not phone:
        raise ValidationError("client_phone is required", client_phone=client_phone)

    calendar = get_business_hours(db, tenant_id)
    start = to_wall_clock(start_at, calendar.timezone)
    now = now or tenant_now(calendar.timezone)
    day = start.date()

    with booking_lock(tenant_id, professional_id):
        try:
            professional = get_professional(db, tenant_id, professional_id, for_update=True)
            service = get_service(db, tenant_id, service_id)

            _check_open(calendar, day)
            if not offers_service(professional, service.id):
                raise ValidationError(
                    "The professional does not offer this service",
                    reason="service not offered",
                    professional_id=professional.id,
                    service_id=service.id,
                    offered_service_ids=professional.service_ids,
                )
            window = effective_window(db, tenant_id, professional_id, day, calendar)
            _check_window(window, calendar, start, professional_id)
            if start < now:
                raise ValidationError(
                    "Start time is in the past",
                    reason="past start",
                    requested=start.isoformat(),
                    now=now.isoformat(),
                )

            conflicts = find_conflicts(
                start,
                int(service.duration_min),
                professional_id,
                _load_intervals(db, tenant_id, professional_id, day),
            )
            if conflicts:
                logger.info(
                    "booking_conflict",
                    tenant_id=tenant_id,
                    professional_id=professional_id,
                    start_at=start.isoformat(),
                    conflicts=conflicts,
                )
                raise ConflictError("This time slot is already booked", conflicts)

            appointment = Appointment(
                tenant_id=tenant_id,
                client_name=client_name.strip(),
                client_phone=phone,
                service_id=service.id,
                professional_id=professional_id,
                start_at=start,
                duration_min=int(service.duration_min),
                status="scheduled",
                is_loyalty_reward=bool(is_loyalty_reward),
                created_at=utc_now_naive(),
            )
            db.add(appointment)
            db.flush()
            add_status_event(
                db,
                tenant_id=tenant_id,
                appointment_id=appointment.id,
                from_status=None,
                to_status="scheduled",
                actor=actor,
                note="created",
            )
            db.commit()
        except BookingError:
            db.rollback()
            raise
        db.refresh(appointment)

    for touched in _touched_days(start, appointment.duration_min):
        invalidate("appointment.created", tenant_id=tenant_id, day=touched)
    logger.info(
        "appointment_created",
        tenant_id=tenant_id,
        appointment_id=appointment.id,
        professional_id=professional_id,
        start_at=start.isoformat(),
        client_phone=phone,
        is_loyalty_reward=appointment.is_loyalty_reward,
    )

    _apply_loyalty(db, appointment, now)
    notify_appointment_created(appointment)
    db.refresh(appointment)
    return appointment


def get_appointment(db: Session, tenant_id: int, appointment_id: int) -> Appointment:
    appointment = db.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.tenant_id == tenant_id,
        )
    ).scalar_one_or_none()
    if not appointment:
        raise NotFoundError("Appointment not found", appointment_id=appointment_id)
    return appointment


def list_appointments(
    db: Session,
    tenant_id: int,
    day: date | None = None,
    professional_id: int | None = None,
    status: str | None = None,
) -> list[Appointment]:
    stmt = select(Appointment).where(Appointment.tenant_id == tenant_id)
    if day is not None:
        start = datetime.combine(day, time.min)
        stmt = stmt.where(
            Appointment.start_at >= start,
            Appointment.start_at < start + timedelta(days=1),
        )
    if professional_id is not None:
        stmt = stmt.where(Appointment.professional_id == professional_id)
    if status:
        stmt = stmt.where(Appointment.status == status.strip().lower())
    stmt = stmt.order_by(Appointment.start_at.asc(), Appointment.id.asc())
    return db.execute(stmt).scalars().all()


def lookup_appointments(
    db: Session,
    tenant_id: int,
    client_phone: str | None = None,
    client_name: str | None = None,
) -> list[Appointment]:
    phone = loyalty.normalize_phone(client_phone)
    name = (client_name or "").strip()
    if not phone and not name:
        raise ValidationError("client_phone or client_name is required")

    stmt = select(Appointment).where(Appointment.tenant_id == tenant_id)
    if phone:
        stmt = stmt.where(Appointment.client_phone == phone)
    else:
        stmt = stmt.where(Appointment.client_name.ilike(name))
    stmt = stmt.order_by(Appointment.start_at.desc(), Appointment.id.desc())
    return db.execute(stmt).scalars().all()


def update_status(
    db: Session,
    tenant_id: int,
    appointment_id: int,
    new_status: str,
    actor: str | None = None,
    note: str | None = None,
) -> Appointment:
    """Set any status of the value set; there is no transition graph.

    Status changes never touch loyalty counters, attendance is credited when
    the appointment is created.
    """
    target = (new_status or "").strip().lower()
    if target not in APPOINTMENT_STATUSES:
        raise ValidationError(
            "Invalid appointment status",
            status=new_status,
            allowed=list(APPOINTMENT_STATUSES),
        )

    appointment = get_appointment(db, tenant_id, appointment_id)
    current = appointment.status
    if target == current:
        return appointment

    appointment.status = target
    add_status_event(
        db,
        tenant_id=tenant_id,
        appointment_id=appointment.id,
        from_status=current,
        to_status=target,
        actor=actor,
        note=note,
    )
    db.commit()
    db.refresh(appointment)

    for touched in _touched_days(appointment.start_at, appointment.duration_min):
        invalidate("appointment.status_changed", tenant_id=tenant_id, day=touched)
    logger.info(
        "appointment_status_changed",
        tenant_id=tenant_id,
        appointment_id=appointment.id,
        from_status=current,
        to_status=target,
    )
    return appointment


def list_status_events(
    db: Session, tenant_id: int, appointment_id: int
) -> list[AppointmentStatusEvent]:
    get_appointment(db, tenant_id, appointment_id)
    stmt = (
        select(AppointmentStatusEvent)
        .where(
            AppointmentStatusEvent.tenant_id == tenant_id,
            AppointmentStatusEvent.appointment_id == appointment_id,
        )
        .order_by(AppointmentStatusEvent.created_at.asc(), AppointmentStatusEvent.id.asc())
    )
    return db.execute(stmt).scalars().all()
