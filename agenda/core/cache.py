"""Derived-data cache for the read path.

Entries are keyed by the generation counters of the scopes they depend on.
A reader takes the counters before it reads the database; a writer bumps them
after it commits. A reader racing a writer therefore stores its result under
the old generation, where nobody looks again, and the entry ages out through
the TTL. The booking write path never reads from here.
"""

from typing import Any, Callable

import structlog
from diskcache import Cache

from ..config import settings

logger = structlog.get_logger("agenda.cache")

_cache: Cache | None = None

# Mutation event -> scope families whose generation it bumps. This table is
# the only place that decides what a write invalidates.
INVALIDATION_RULES: dict[str, tuple[str, ...]] = {
    "appointment.created": ("day",),
    "appointment.status_changed": ("day",),
    "availability.changed": ("professional",),
    "professional.changed": ("professional",),
    "business_hours.changed": ("tenant",),
}


def configure_cache(directory: str | None = None) -> Cache:
    global _cache
    if _cache is not None:
        _cache.close()
    # Generation counters must never be dropped by size-based eviction.
    _cache = Cache(directory or settings.CACHE_DIR, eviction_policy="none")
    return _cache


def get_cache() -> Cache:
    if _cache is None:
        return configure_cache()
    return _cache


def tenant_scope(tenant_id: int) -> str:
    return f"tenant:{tenant_id}"


def professional_scope(tenant_id: int, professional_id: int) -> str:
    return f"professional:{tenant_id}:{professional_id}"


def day_scope(tenant_id: int, day) -> str:
    return f"day:{tenant_id}:{day.isoformat()}"


def _generation(scope: str) -> int:
    return int(get_cache().get(f"gen|{scope}", default=0))


def cached(name: str, scopes: tuple[str, ...], compute: Callable[[], Any]) -> Any:
    if not settings.CACHE_ENABLED:
        return compute()

    cache = get_cache()
    generations = ",".join(f"{scope}@{_generation(scope)}" for scope in scopes)
    key = f"{name}|{generations}"
    hit = cache.get(key)
    if hit is not None:
        return hit

    value = compute()
    cache.set(key, value, expire=settings.CACHE_TTL_SECONDS)
    return value


def invalidate(
    event: str,
    *,
    tenant_id: int,
    professional_id: int | None = None,
    day=None,
) -> None:
    families = INVALIDATION_RULES.get(event)
    if families is None:
        raise KeyError(f"No invalidation rule for event '{event}'")
    if not settings.CACHE_ENABLED:
        return

    scopes = []
    for family in families:
        if family == "tenant":
            scopes.append(tenant_scope(tenant_id))
        elif family == "professional" and professional_id is not None:
            scopes.append(professional_scope(tenant_id, professional_id))
        elif family == "day" and day is not None:
            scopes.append(day_scope(tenant_id, day))

    cache = get_cache()
    for scope in scopes:
        generation = cache.incr(f"gen|{scope}", default=0)
        logger.debug("cache_invalidated", cache_event=event, scope=scope, generation=generation)
