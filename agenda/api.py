from datetime import date, datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from .config import settings
from .core import catalog, ledger, loyalty, schedule
from .core.availability import get_day_availability
from .core.clock import tenant_now
from .db import get_db
from .errors import NotFoundError, PermissionDenied, ValidationError
from .models import Appointment, Tenant
from .schemas import (
    AppointmentCreate,
    AppointmentLookup,
    AppointmentOut,
    AppointmentStatusEventOut,
    AppointmentStatusUpdate,
    AvailabilityCreate,
    AvailabilityOut,
    AvailabilityUpdate,
    BusinessHoursIn,
    BusinessHoursOut,
    DayAvailabilityOut,
    LoyaltyOut,
    ProfessionalCreate,
    ProfessionalOut,
    ProfessionalUpdate,
    RewardGrant,
    ServiceCreate,
    ServiceOut,
    ServiceUpdate,
    TenantCreate,
    TenantOut,
)

router = APIRouter(prefix="/api")


def _to_appointment_out(a: Appointment) -> AppointmentOut:
    return AppointmentOut(
        id=a.id,
        client_name=a.client_name,
        client_phone=a.client_phone,
        service_id=a.service_id,
        service_name=a.service.name if a.service else None,
        professional_id=a.professional_id,
        professional_name=a.professional.name if a.professional else None,
        start_time=a.start_at,
        end_time=a.start_at + timedelta(minutes=a.duration_min),
        duration_min=a.duration_min,
        status=a.status,
        is_loyalty_reward=bool(a.is_loyalty_reward),
        created_at=a.created_at,
    )


def get_current_tenant(
    db: Session = Depends(get_db),
    x_tenant_slug: Optional[str] = Header(default=None),
) -> Tenant:
    slug = (x_tenant_slug or settings.DEFAULT_TENANT_SLUG).strip().lower()
    if slug == settings.DEFAULT_TENANT_SLUG:
        return catalog.get_or_create_tenant(db, slug=slug, name=settings.DEFAULT_TENANT_NAME)
    return catalog.get_tenant_by_slug(db, slug)


def get_now(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> datetime:
    """Tenant-local wall clock, read once per request."""
    return tenant_now(schedule.get_business_hours(db, tenant.id).timezone)


def require_admin(x_actor_role: Optional[str] = Header(default=None)) -> Optional[str]:
    role = (x_actor_role or "").strip().lower() or None
    if settings.AUTH_REQUIRED and role not in settings.ADMIN_ROLES:
        raise PermissionDenied("Admin role required", role=role)
    return role


def require_actor(x_actor_email: Optional[str] = Header(default=None)) -> Optional[str]:
    email = (x_actor_email or "").strip().lower() or None
    if settings.AUTH_REQUIRED and not email:
        raise PermissionDenied("Actor identity is required (X-Actor-Email)")
    return email


@router.post("/tenants", response_model=TenantOut, status_code=status.HTTP_201_CREATED)
def create_tenant(
    payload: TenantCreate,
    db: Session = Depends(get_db),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.create_tenant(db, slug=payload.slug, name=payload.name)


@router.get("/availability/{professional_id}/{day}", response_model=DayAvailabilityOut)
def day_availability(
    professional_id: int,
    day: date,
    service_id: Optional[int] = Query(default=None),
    tick: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    now: datetime = Depends(get_now),
):
    result = get_day_availability(
        db,
        tenant_id=tenant.id,
        professional_id=professional_id,
        day=day,
        service_id=service_id,
        tick_minutes=tick,
        now=now,
    )
    return result.as_dict()


@router.post("/appointments", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    now: datetime = Depends(get_now),
    x_actor_email: Optional[str] = Header(default=None),
):
    appointment = ledger.create_appointment(
        db,
        tenant_id=tenant.id,
        client_name=payload.client_name,
        client_phone=payload.client_phone,
        service_id=payload.service_id,
        professional_id=payload.professional_id,
        start_at=payload.start_time,
        is_loyalty_reward=payload.is_loyalty_reward,
        now=now,
        actor=x_actor_email,
    )
    return _to_appointment_out(appointment)


@router.get("/appointments", response_model=List[AppointmentOut])
def list_appointments(
    day: Optional[date] = Query(default=None),
    professional_id: Optional[int] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    rows = ledger.list_appointments(
        db,
        tenant_id=tenant.id,
        day=day,
        professional_id=professional_id,
        status=status_filter,
    )
    return [_to_appointment_out(a) for a in rows]


@router.post("/appointments/lookup", response_model=List[AppointmentOut])
def lookup_appointments(
    payload: AppointmentLookup,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    rows = ledger.lookup_appointments(
        db,
        tenant_id=tenant.id,
        client_phone=payload.client_phone,
        client_name=payload.client_name,
    )
    return [_to_appointment_out(a) for a in rows]


@router.get("/appointments/{appointment_id}", response_model=AppointmentOut)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return _to_appointment_out(ledger.get_appointment(db, tenant.id, appointment_id))


@router.get("/appointments/{appointment_id}/history", response_model=List[AppointmentStatusEventOut])
def appointment_history(
    appointment_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return ledger.list_status_events(db, tenant.id, appointment_id)


@router.put("/appointments/{appointment_id}/status", response_model=AppointmentOut)
def update_appointment_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Optional[str] = Depends(require_actor),
):
    appointment = ledger.update_status(
        db,
        tenant_id=tenant.id,
        appointment_id=appointment_id,
        new_status=payload.status,
        actor=actor,
        note=payload.note,
    )
    return _to_appointment_out(appointment)


@router.get("/loyalty/{phone}", response_model=LoyaltyOut)
def loyalty_summary(
    phone: str,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    normalized = loyalty.normalize_phone(phone)
    if not normalized:
        raise NotFoundError("Client not found", client_phone=phone)
    summary = loyalty.get_summary(db, tenant.id, normalized)
    return LoyaltyOut(**summary.__dict__)


@router.post("/loyalty/reward", response_model=LoyaltyOut)
def grant_loyalty_reward(
    payload: RewardGrant,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    account = loyalty.grant_reward(
        db,
        tenant_id=tenant.id,
        client_phone=payload.client_phone,
        client_name=payload.client_name,
    )
    return LoyaltyOut(**loyalty.summarize(account).__dict__)


@router.get("/business-hours", response_model=BusinessHoursOut)
def get_business_hours(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return schedule.get_business_hours(db, tenant.id).as_dict()


@router.put("/business-hours", response_model=BusinessHoursOut)
def put_business_hours(
    payload: BusinessHoursIn,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    calendar = schedule.upsert_business_hours(
        db,
        tenant_id=tenant.id,
        open_time=payload.open_time,
        close_time=payload.close_time,
        open_days=payload.open_days,
        timezone=payload.timezone,
        holiday_country=payload.holiday_country,
    )
    return calendar.as_dict()


@router.get("/services", response_model=List[ServiceOut])
def list_services(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return catalog.list_services(db, tenant.id, include_inactive=include_inactive)


@router.post("/services", response_model=ServiceOut, status_code=status.HTTP_201_CREATED)
def create_service(
    payload: ServiceCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.create_service(
        db,
        tenant_id=tenant.id,
        name=payload.name,
        duration_min=payload.duration_min,
        price=payload.price,
        description=payload.description,
    )


@router.get("/services/{service_id}", response_model=ServiceOut)
def get_service(
    service_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return catalog.get_service(db, tenant.id, service_id, include_inactive=True)


@router.put("/services/{service_id}", response_model=ServiceOut)
def update_service(
    service_id: int,
    payload: ServiceUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.update_service(
        db,
        tenant_id=tenant.id,
        service_id=service_id,
        name=payload.name,
        price=payload.price,
        description=payload.description,
    )


@router.delete("/services/{service_id}", response_model=ServiceOut)
def archive_service(
    service_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.archive_service(db, tenant.id, service_id)


@router.get("/professionals", response_model=List[ProfessionalOut])
def list_professionals(
    service_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return catalog.list_professionals(db, tenant.id, service_id=service_id)


@router.post("/professionals", response_model=ProfessionalOut, status_code=status.HTTP_201_CREATED)
def create_professional(
    payload: ProfessionalCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.create_professional(
        db,
        tenant_id=tenant.id,
        name=payload.name,
        service_ids=payload.service_ids,
        description=payload.description,
    )


@router.get("/professionals/{professional_id}", response_model=ProfessionalOut)
def get_professional(
    professional_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return catalog.get_professional(db, tenant.id, professional_id)


@router.put("/professionals/{professional_id}", response_model=ProfessionalOut)
def update_professional(
    professional_id: int,
    payload: ProfessionalUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.update_professional(
        db,
        tenant_id=tenant.id,
        professional_id=professional_id,
        name=payload.name,
        description=payload.description,
        service_ids=payload.service_ids,
    )


@router.delete("/professionals/{professional_id}", response_model=ProfessionalOut)
def archive_professional(
    professional_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return catalog.archive_professional(db, tenant.id, professional_id)


@router.get("/professionals/{professional_id}/availability", response_model=List[AvailabilityOut])
def list_professional_availability(
    professional_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    return schedule.list_rules(db, tenant.id, professional_id)


@router.post("/availability", response_model=AvailabilityOut)
def upsert_availability(
    payload: AvailabilityCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    return schedule.upsert_rule(
        db,
        tenant_id=tenant.id,
        professional_id=payload.professional_id,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        is_available=payload.is_available,
        lunch_start=payload.lunch_start,
        lunch_end=payload.lunch_end,
    )


@router.put("/availability/{rule_id}", response_model=AvailabilityOut)
def update_availability(
    rule_id: int,
    payload: AvailabilityUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return schedule.update_rule(db, tenant.id, rule_id, **changes)


@router.delete("/availability/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(
    rule_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _role: Optional[str] = Depends(require_admin),
):
    schedule.delete_rule(db, tenant.id, rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
