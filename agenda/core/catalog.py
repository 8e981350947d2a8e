"""Tenants, services and professionals.

Plain tenant-scoped lookups and upserts. A row belonging to another tenant is
reported exactly like a missing row.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models import Professional, ProfessionalService, Service, Tenant
from .cache import invalidate

logger = structlog.get_logger("agenda.catalog")


def get_or_create_tenant(db: Session, slug: str, name: str | None = None) -> Tenant:
    normalized_slug = slug.strip().lower()
    tenant = db.execute(
        select(Tenant).where(Tenant.slug == normalized_slug)
    ).scalar_one_or_none()
    if tenant:
        return tenant

    tenant = Tenant(slug=normalized_slug, name=(name or normalized_slug).strip())
    db.add(tenant)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return db.execute(select(Tenant).where(Tenant.slug == normalized_slug)).scalar_one()
    db.refresh(tenant)
    logger.info("tenant_created", tenant_slug=normalized_slug)
    return tenant


def create_tenant(db: Session, slug: str, name: str) -> Tenant:
    normalized_slug = slug.strip().lower()
    existing = db.execute(
        select(Tenant).where(Tenant.slug == normalized_slug)
    ).scalar_one_or_none()
    if existing:
        raise ValidationError("Tenant slug already taken", slug=normalized_slug)
    return get_or_create_tenant(db, normalized_slug, name)


def get_tenant_by_slug(db: Session, slug: str) -> Tenant:
    tenant = db.execute(
        select(Tenant).where(Tenant.slug == slug.strip().lower())
    ).scalar_one_or_none()
    if not tenant or not tenant.is_active:
        raise NotFoundError("Tenant not found", slug=slug)
    return tenant


def _check_duration(duration_min: int) -> int:
    value = int(duration_min)
    if value <= 0:
        raise ValidationError("duration_min must be > 0", duration_min=value)
    return value


def create_service(
    db: Session,
    tenant_id: int,
    name: str,
    duration_min: int,
    price: float = 0,
    description: str | None = None,
) -> Service:
    service = Service(
        tenant_id=tenant_id,
        name=name.strip(),
        duration_min=_check_duration(duration_min),
        price=price,
        description=(description or "").strip(),
        is_active=True,
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    logger.info("service_created", tenant_id=tenant_id, service_id=service.id)
    return service


def get_service(
    db: Session, tenant_id: int, service_id: int, include_inactive: bool = False
) -> Service:
    service = db.execute(
        select(Service).where(Service.id == service_id, Service.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if not service or (not include_inactive and not service.is_active):
        raise NotFoundError("Service not found", service_id=service_id)
    return service


def list_services(db: Session, tenant_id: int, include_inactive: bool = False) -> list[Service]:
    stmt = select(Service).where(Service.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(Service.is_active.is_(True))
    return db.execute(stmt.order_by(Service.name.asc(), Service.id.asc())).scalars().all()


def update_service(
    db: Session,
    tenant_id: int,
    service_id: int,
    name: str | None = None,
    price: float | None = None,
    description: str | None = None,
) -> Service:
    # Duration is fixed at creation; existing appointments were checked against it.
    service = get_service(db, tenant_id, service_id)
    if name is not None:
        service.name = name.strip()
    if price is not None:
        service.price = price
    if description is not None:
        service.description = description.strip()
    db.commit()
    db.refresh(service)
    return service


def archive_service(db: Session, tenant_id: int, service_id: int) -> Service:
    service = get_service(db, tenant_id, service_id)
    service.is_active = False
    db.commit()
    db.refresh(service)
    logger.info("service_archived", tenant_id=tenant_id, service_id=service_id)
    return service


def _resolve_service_ids(db: Session, tenant_id: int, service_ids: list[int]) -> list[int]:
    wanted = sorted(set(int(x) for x in service_ids))
    if not wanted:
        return []
    found = set(
        db.execute(
            select(Service.id).where(
                Service.tenant_id == tenant_id,
                Service.id.in_(wanted),
                Service.is_active.is_(True),
            )
        ).scalars()
    )
    missing = [sid for sid in wanted if sid not in found]
    if missing:
        raise ValidationError("Unknown services for this tenant", service_ids=missing)
    return wanted


def _set_offerings(professional: Professional, service_ids: list[int]) -> None:
    current = {o.service_id: o for o in professional.offerings}
    for sid, offering in current.items():
        if sid not in service_ids:
            professional.offerings.remove(offering)
    for sid in service_ids:
        if sid not in current:
            professional.offerings.append(
                ProfessionalService(tenant_id=professional.tenant_id, service_id=sid)
            )


def create_professional(
    db: Session,
    tenant_id: int,
    name: str,
    service_ids: list[int],
    description: str | None = None,
) -> Professional:
    resolved = _resolve_service_ids(db, tenant_id, service_ids)
    professional = Professional(
        tenant_id=tenant_id,
        name=name.strip(),
        description=(description or "").strip(),
        is_active=True,
    )
    _set_offerings(professional, resolved)
    db.add(professional)
    db.commit()
    db.refresh(professional)
    logger.info("professional_created", tenant_id=tenant_id, professional_id=professional.id)
    return professional


def get_professional(
    db: Session,
    tenant_id: int,
    professional_id: int,
    for_update: bool = False,
) -> Professional:
    stmt = select(Professional).where(
        Professional.id == professional_id,
        Professional.tenant_id == tenant_id,
        Professional.is_active.is_(True),
    )
    if for_update:
        stmt = stmt.with_for_update()
    professional = db.execute(stmt).scalar_one_or_none()
    if not professional:
        raise NotFoundError("Professional not found", professional_id=professional_id)
    return professional


def list_professionals(
    db: Session, tenant_id: int, service_id: int | None = None
) -> list[Professional]:
    stmt = select(Professional).where(
        Professional.tenant_id == tenant_id,
        Professional.is_active.is_(True),
    )
    if service_id is not None:
        stmt = stmt.join(
            ProfessionalService,
            ProfessionalService.professional_id == Professional.id,
        ).where(ProfessionalService.service_id == service_id)
    return db.execute(stmt.order_by(Professional.name.asc(), Professional.id.asc())).scalars().all()


def update_professional(
    db: Session,
    tenant_id: int,
    professional_id: int,
    name: str | None = None,
    description: str | None = None,
    service_ids: list[int] | None = None,
) -> Professional:
    professional = get_professional(db, tenant_id, professional_id)
    if name is not None:
        professional.name = name.strip()
    if description is not None:
        professional.description = description.strip()
    if service_ids is not None:
        _set_offerings(professional, _resolve_service_ids(db, tenant_id, service_ids))
    db.commit()
    db.refresh(professional)
    return professional


def archive_professional(db: Session, tenant_id: int, professional_id: int) -> Professional:
    professional = get_professional(db, tenant_id, professional_id)
    professional.is_active = False
    db.commit()
    db.refresh(professional)
    invalidate("professional.changed", tenant_id=tenant_id, professional_id=professional_id)
    logger.info("professional_archived", tenant_id=tenant_id, professional_id=professional_id)
    return professional


def offers_service(professional: Professional, service_id: int) -> bool:
    return any(o.service_id == service_id for o in professional.offerings)
