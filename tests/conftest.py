import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from agenda.core import catalog, schedule
from agenda.core.cache import configure_cache
from agenda.db import enable_sqlite_wal, init_db


@pytest.fixture(autouse=True)
def isolated_cache(tmp_path):
    return configure_cache(str(tmp_path / "cache"))


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'agenda_test.db'}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_wal(engine)
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant(db):
    return catalog.get_or_create_tenant(db, "studio", "Studio Bela")


@pytest.fixture
def salon(db, tenant):
    """09:00-18:00 business hours, one 30 min service, one professional on Mondays."""
    schedule.upsert_business_hours(
        db,
        tenant_id=tenant.id,
        open_time="09:00",
        close_time="18:00",
        open_days=[1, 2, 3, 4, 5, 6],
        timezone="America/Sao_Paulo",
    )
    service = catalog.create_service(db, tenant.id, "Corte", duration_min=30, price=50)
    professional = catalog.create_professional(db, tenant.id, "Marina", [service.id])
    schedule.upsert_rule(
        db,
        tenant_id=tenant.id,
        professional_id=professional.id,
        day_of_week=1,
        start_time="09:00",
        end_time="18:00",
    )
    return {"tenant": tenant, "service": service, "professional": professional}
