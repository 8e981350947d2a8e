from pathlib import Path

import redis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .api import router
from .config import settings
from .core.cache import configure_cache
from .db import SessionLocal, init_db
from .errors import install_error_handlers
from .observability import request_tracing_middleware, setup_logging


def _read_app_version() -> str:
    version_file = Path(__file__).resolve().parents[1] / "VERSION"
    try:
        value = version_file.read_text(encoding="utf-8").strip()
        return value or "0.1.0"
    except OSError:
        return "0.1.0"


setup_logging()
if settings.DATABASE_URL.startswith("sqlite") or bool(settings.DB_AUTO_CREATE_ALL):
    init_db()
configure_cache()

app = FastAPI(
    title="Agenda",
    description="Multi-tenant appointment availability, booking and loyalty API",
    version=_read_app_version(),
)
install_error_handlers(app)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if bool(settings.SECURITY_HEADERS_ENABLED):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.middleware("http")
async def request_observability_middleware(request: Request, call_next):
    return await request_tracing_middleware(request, call_next)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready():
    checks = {
        "db": "ok",
        "event_bus": "skipped",
    }

    db_ok = True
    bus_ok = True

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        checks["db"] = "error"
        db_ok = False

    if bool(settings.EVENT_BUS_ENABLED):
        try:
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            client.ping()
            checks["event_bus"] = "ok"
        except (redis.RedisError, ValueError):
            checks["event_bus"] = "error"
            bus_ok = False

    if db_ok and bus_ok:
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


app.include_router(router)
