from datetime import date

import pytest

from agenda.core import catalog, schedule
from agenda.core.cache import INVALIDATION_RULES, invalidate
from agenda.core.locks import KeyedLocks
from agenda.errors import NotFoundError, ValidationError


def test_defaults_apply_without_stored_business_hours(db, tenant):
    calendar = schedule.get_business_hours(db, tenant.id)
    assert calendar.as_dict() == {
        "open_time": "08:00",
        "close_time": "20:00",
        "open_days": [1, 2, 3, 4, 5, 6],
        "timezone": "America/Sao_Paulo",
        "holiday_country": None,
    }
    assert calendar.is_working_day(date(2030, 6, 3))
    assert not calendar.is_working_day(date(2030, 6, 2))


def test_business_hours_validation(db, tenant):
    with pytest.raises(ValidationError):
        schedule.upsert_business_hours(db, tenant.id, "18:00", "09:00", [1], "America/Sao_Paulo")
    with pytest.raises(ValidationError):
        schedule.upsert_business_hours(db, tenant.id, "09:00", "18:00", [1], "Mars/Olympus")
    with pytest.raises(ValidationError):
        schedule.upsert_business_hours(
            db, tenant.id, "09:00", "18:00", [1], "America/Sao_Paulo", holiday_country="XX"
        )


def test_business_hours_upsert_round_trip(db, tenant):
    schedule.upsert_business_hours(db, tenant.id, "9:00", "19:30", [5, 1, 3], "Europe/Lisbon", "pt")
    calendar = schedule.get_business_hours(db, tenant.id)
    assert calendar.open_time.hour == 9
    assert calendar.open_days == frozenset({1, 3, 5})
    assert calendar.holiday_country == "pt"
    # 2030-12-25 is a Wednesday and a Portuguese public holiday.
    assert not calendar.is_working_day(date(2030, 12, 25))


def test_service_duration_must_be_positive(db, tenant):
    with pytest.raises(ValidationError):
        catalog.create_service(db, tenant.id, "Nada", duration_min=0)


def test_service_update_keeps_duration(db, tenant):
    service = catalog.create_service(db, tenant.id, "Corte", duration_min=30, price=50)
    updated = catalog.update_service(db, tenant.id, service.id, name="Corte feminino", price=80)
    assert updated.name == "Corte feminino"
    assert float(updated.price) == 80
    assert updated.duration_min == 30


def test_archived_service_is_hidden(db, tenant):
    service = catalog.create_service(db, tenant.id, "Corte", duration_min=30)
    catalog.archive_service(db, tenant.id, service.id)

    assert catalog.list_services(db, tenant.id) == []
    assert len(catalog.list_services(db, tenant.id, include_inactive=True)) == 1
    with pytest.raises(NotFoundError):
        catalog.get_service(db, tenant.id, service.id)


def test_professional_offers_only_known_services(db, tenant):
    with pytest.raises(ValidationError) as exc:
        catalog.create_professional(db, tenant.id, "Marina", [999])
    assert exc.value.details["service_ids"] == [999]


def test_professional_offerings_can_be_replaced(db, tenant):
    cut = catalog.create_service(db, tenant.id, "Corte", duration_min=30)
    color = catalog.create_service(db, tenant.id, "Coloracao", duration_min=90)
    pro = catalog.create_professional(db, tenant.id, "Marina", [cut.id])
    assert catalog.offers_service(pro, cut.id)

    pro = catalog.update_professional(db, tenant.id, pro.id, service_ids=[color.id])
    assert pro.service_ids == [color.id]
    assert not catalog.offers_service(pro, cut.id)
    assert [p.id for p in catalog.list_professionals(db, tenant.id, service_id=color.id)] == [pro.id]
    assert catalog.list_professionals(db, tenant.id, service_id=cut.id) == []


def test_catalog_is_tenant_scoped(db, tenant):
    other = catalog.get_or_create_tenant(db, "other", "Other")
    service = catalog.create_service(db, tenant.id, "Corte", duration_min=30)
    with pytest.raises(NotFoundError):
        catalog.get_service(db, other.id, service.id)
    with pytest.raises(ValidationError):
        catalog.create_professional(db, other.id, "Rita", [service.id])


def test_rule_validation(db, salon):
    tenant_id, pro_id = salon["tenant"].id, salon["professional"].id
    with pytest.raises(ValidationError):
        schedule.upsert_rule(db, tenant_id, pro_id, 2, "18:00", "09:00")
    with pytest.raises(ValidationError):
        schedule.upsert_rule(db, tenant_id, pro_id, 2, "09:00", "18:00", lunch_start="12:00")
    with pytest.raises(ValidationError):
        schedule.upsert_rule(db, tenant_id, pro_id, 7, "09:00", "18:00")
    with pytest.raises(ValidationError):
        schedule.upsert_rule(db, tenant_id, pro_id, 2, "9h", "18:00")


def test_one_rule_per_weekday(db, salon):
    tenant_id, pro_id = salon["tenant"].id, salon["professional"].id
    schedule.upsert_rule(db, tenant_id, pro_id, 1, "10:00", "12:00")
    rules = schedule.list_rules(db, tenant_id, pro_id)
    assert [(r.day_of_week, r.start_time, r.end_time) for r in rules] == [(1, "10:00", "12:00")]


def test_update_rule_rejects_weekday_clash(db, salon):
    tenant_id, pro_id = salon["tenant"].id, salon["professional"].id
    tuesday = schedule.upsert_rule(db, tenant_id, pro_id, 2, "09:00", "18:00")
    with pytest.raises(ValidationError):
        schedule.update_rule(db, tenant_id, tuesday.id, day_of_week=1)

    moved = schedule.update_rule(db, tenant_id, tuesday.id, day_of_week=3, end_time="17:00")
    assert moved.day_of_week == 3
    assert moved.end_time == "17:00"


def test_delete_rule(db, salon):
    tenant_id, pro_id = salon["tenant"].id, salon["professional"].id
    rule = schedule.list_rules(db, tenant_id, pro_id)[0]
    schedule.delete_rule(db, tenant_id, rule.id)
    assert schedule.list_rules(db, tenant_id, pro_id) == []
    with pytest.raises(NotFoundError):
        schedule.delete_rule(db, tenant_id, rule.id)


def test_tenant_slug_must_be_unique(db):
    catalog.create_tenant(db, "barbearia", "Barbearia")
    with pytest.raises(ValidationError):
        catalog.create_tenant(db, "Barbearia", "Outra")


def test_inactive_tenant_is_not_found(db):
    tenant = catalog.create_tenant(db, "fechado", "Fechado")
    tenant.is_active = False
    db.commit()
    with pytest.raises(NotFoundError):
        catalog.get_tenant_by_slug(db, "fechado")


def test_every_mutation_event_has_an_invalidation_rule():
    assert set(INVALIDATION_RULES) == {
        "appointment.created",
        "appointment.status_changed",
        "availability.changed",
        "professional.changed",
        "business_hours.changed",
    }
    with pytest.raises(KeyError):
        invalidate("service.renamed", tenant_id=1)


def test_keyed_locks_are_released():
    locks = KeyedLocks()
    with locks.hold(("a", 1)):
        assert len(locks) == 1
        with locks.hold(("b", 1)):
            assert len(locks) == 2
    assert len(locks) == 0
