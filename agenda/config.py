import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _get_int_set(name: str, default: str) -> frozenset[int]:
    raw = os.getenv(name, default)
    values = set()
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit():
            values.add(int(part))
    return frozenset(values)


def _get_str_set(name: str, default: str) -> frozenset[str]:
    raw = os.getenv(name, default)
    return frozenset(p.strip().lower() for p in raw.split(",") if p.strip())


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agenda.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", True)

    DEFAULT_TENANT_SLUG = os.getenv("DEFAULT_TENANT_SLUG", "default").strip().lower()
    DEFAULT_TENANT_NAME = os.getenv("DEFAULT_TENANT_NAME", "Default").strip()

    # Used for tenants that never stored their own business hours.
    DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo").strip()
    DEFAULT_OPEN_TIME = os.getenv("DEFAULT_OPEN_TIME", "08:00").strip()
    DEFAULT_CLOSE_TIME = os.getenv("DEFAULT_CLOSE_TIME", "20:00").strip()
    DEFAULT_OPEN_DAYS = _get_int_set("DEFAULT_OPEN_DAYS", "1,2,3,4,5,6")

    SLOT_TICK_MINUTES = _get_int("SLOT_TICK_MINUTES", 30)
    LOYALTY_VISITS_PER_REWARD = _get_int("LOYALTY_VISITS_PER_REWARD", 10)

    CACHE_ENABLED = _get_bool("CACHE_ENABLED", True)
    CACHE_DIR = os.getenv("CACHE_DIR", "./.cache/agenda").strip()
    CACHE_TTL_SECONDS = _get_int("CACHE_TTL_SECONDS", 300)

    REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0").strip()
    EVENT_BUS_ENABLED = _get_bool("EVENT_BUS_ENABLED", False)
    EVENT_BUS_STREAM = os.getenv("EVENT_BUS_STREAM", "agenda.events").strip()
    EVENT_BUS_MAXLEN = _get_int("EVENT_BUS_MAXLEN", 50000)

    AUTH_REQUIRED = _get_bool("AUTH_REQUIRED", False)
    ADMIN_ROLES = _get_str_set("ADMIN_ROLES", "admin,owner,manager")

    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)


settings = Settings()
