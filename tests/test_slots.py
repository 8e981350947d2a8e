from datetime import date, datetime

import pytest

from agenda.core import schedule
from agenda.core.availability import get_day_availability
from agenda.core.slots import (
    REASON_PROFESSIONAL_UNAVAILABLE,
    REASON_TENANT_CLOSED,
    generate_slots,
    validate_tick,
)
from agenda.errors import NotFoundError, ValidationError

MONDAY = date(2030, 6, 3)
SUNDAY = date(2030, 6, 2)
TUESDAY = date(2030, 6, 4)
CHRISTMAS = date(2030, 12, 25)  # a Wednesday


def test_full_day_of_thirty_minute_slots(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]

    result = get_day_availability(
        db,
        tenant.id,
        pro.id,
        MONDAY,
        service_id=salon["service"].id,
        now=datetime(2030, 6, 3, 8, 0),
    )

    assert len(result.available_slots) == 18
    assert result.available_slots[0] == "09:00"
    assert result.available_slots[-1] == "17:30"
    assert result.reason is None
    assert result.window.as_dict()["start"] == "09:00"


def test_slot_plan_is_deterministic(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]

    first = generate_slots(db, tenant.id, pro.id, MONDAY)
    second = generate_slots(db, tenant.id, pro.id, MONDAY, tick_minutes=30)

    assert first.slots == second.slots
    assert first.breaks == ()


def test_closed_weekday_reports_tenant_closed(db, salon):
    plan = generate_slots(db, salon["tenant"].id, salon["professional"].id, SUNDAY)
    assert plan.slots == ()
    assert plan.reason == REASON_TENANT_CLOSED


def test_missing_rule_reports_professional_unavailable(db, salon):
    plan = generate_slots(db, salon["tenant"].id, salon["professional"].id, TUESDAY)
    assert plan.slots == ()
    assert plan.reason == REASON_PROFESSIONAL_UNAVAILABLE


def test_rule_marked_unavailable(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    schedule.upsert_rule(db, tenant.id, pro.id, 2, "09:00", "18:00", is_available=False)

    plan = generate_slots(db, tenant.id, pro.id, TUESDAY)
    assert plan.reason == REASON_PROFESSIONAL_UNAVAILABLE


def test_public_holiday_closes_the_tenant(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    schedule.upsert_rule(db, tenant.id, pro.id, 3, "09:00", "18:00")
    schedule.upsert_business_hours(
        db,
        tenant_id=tenant.id,
        open_time="09:00",
        close_time="18:00",
        open_days=[1, 2, 3, 4, 5, 6],
        timezone="America/Sao_Paulo",
        holiday_country="BR",
    )

    plan = generate_slots(db, tenant.id, pro.id, CHRISTMAS)
    assert plan.slots == ()
    assert plan.reason == REASON_TENANT_CLOSED


def test_start_is_clamped_to_opening_time(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    schedule.upsert_rule(db, tenant.id, pro.id, 1, "07:00", "10:00")

    plan = generate_slots(db, tenant.id, pro.id, MONDAY)
    assert plan.slots == ("09:00", "09:30")


def test_end_is_not_clamped_to_closing_time(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    schedule.upsert_rule(db, tenant.id, pro.id, 1, "09:00", "20:00")

    plan = generate_slots(db, tenant.id, pro.id, MONDAY)
    assert plan.slots[-1] == "19:30"
    assert "18:00" in plan.slots


def test_lunch_break_slots_are_reported_and_excluded(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    schedule.upsert_rule(
        db, tenant.id, pro.id, 1, "09:00", "18:00", lunch_start="12:00", lunch_end="13:00"
    )

    plan = generate_slots(db, tenant.id, pro.id, MONDAY)
    assert plan.breaks == ("12:00", "12:30")

    result = get_day_availability(
        db, tenant.id, pro.id, MONDAY, now=datetime(2030, 6, 3, 8, 0)
    )
    assert "12:00" not in result.available_slots
    assert "12:30" not in result.available_slots
    assert "13:00" in result.available_slots
    lunch = [d for d in result.diagnostics if d.lunch_break]
    assert [d.time for d in lunch] == ["12:00", "12:30"]


def test_custom_tick(db, salon):
    plan = generate_slots(
        db, salon["tenant"].id, salon["professional"].id, MONDAY, tick_minutes=45
    )
    assert plan.slots[:3] == ("09:00", "09:45", "10:30")
    assert plan.slots[-1] == "17:15"


@pytest.mark.parametrize("tick", [0, -15, 7, 1441])
def test_invalid_tick_is_rejected(tick):
    with pytest.raises(ValidationError):
        validate_tick(tick)


@pytest.mark.parametrize("tick", [1, 12, 15, 30, 45, 60, 90])
def test_valid_ticks(tick):
    assert validate_tick(tick) == tick


def test_rule_change_invalidates_cached_plan(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    before = generate_slots(db, tenant.id, pro.id, MONDAY)
    assert before.slots[0] == "09:00"

    schedule.upsert_rule(db, tenant.id, pro.id, 1, "14:00", "16:00")

    after = generate_slots(db, tenant.id, pro.id, MONDAY)
    assert after.slots == ("14:00", "14:30", "15:00", "15:30")


def test_business_hours_change_invalidates_cached_plan(db, salon):
    tenant, pro = salon["tenant"], salon["professional"]
    assert generate_slots(db, tenant.id, pro.id, MONDAY).slots[0] == "09:00"

    schedule.upsert_business_hours(
        db,
        tenant_id=tenant.id,
        open_time="10:00",
        close_time="18:00",
        open_days=[1, 2, 3, 4, 5],
        timezone="America/Sao_Paulo",
    )

    assert generate_slots(db, tenant.id, pro.id, MONDAY).slots[0] == "10:00"


def test_archived_professional_has_no_availability(db, salon):
    from agenda.core import catalog

    tenant, pro = salon["tenant"], salon["professional"]
    catalog.archive_professional(db, tenant.id, pro.id)

    with pytest.raises(NotFoundError):
        get_day_availability(db, tenant.id, pro.id, MONDAY, now=datetime(2030, 6, 3, 8, 0))


def test_service_not_offered_is_rejected_on_read(db, salon):
    from agenda.core import catalog

    tenant, pro = salon["tenant"], salon["professional"]
    other = catalog.create_service(db, tenant.id, "Coloracao", duration_min=90)

    with pytest.raises(ValidationError) as exc:
        get_day_availability(db, tenant.id, pro.id, MONDAY, service_id=other.id)
    assert exc.value.details["reason"] == "service not offered"
