import json

import redis
import structlog

from ..config import settings
from ..models import Appointment

logger = structlog.get_logger("agenda.notifications")


def _redis_client() -> redis.Redis | None:
    if not settings.REDIS_URL:
        return None
    try:
        return redis.from_url(settings.REDIS_URL, decode_responses=True)
    except ValueError:
        logger.warning("event_bus_bad_url")
        return None


def appointment_payload(appointment: Appointment) -> dict:
    return {
        "appointment_id": appointment.id,
        "tenant_id": appointment.tenant_id,
        "professional_id": appointment.professional_id,
        "service_id": appointment.service_id,
        "start_at": appointment.start_at.isoformat(),
        "duration_min": appointment.duration_min,
        "status": appointment.status,
        "is_loyalty_reward": bool(appointment.is_loyalty_reward),
    }


def publish_event(topic: str, tenant_id: int, key: str, payload: dict, client=None) -> bool:
    """Append one event to the bus stream. Never raises."""
    if not settings.EVENT_BUS_ENABLED:
        return False
    client = client or _redis_client()
    if client is None:
        return False

    fields = {
        "topic": topic,
        "tenant_id": str(tenant_id),
        "key": key,
        "payload_json": json.dumps(payload, ensure_ascii=True, separators=(",", ":")),
    }
    try:
        client.xadd(
            settings.EVENT_BUS_STREAM,
            fields=fields,
            maxlen=settings.EVENT_BUS_MAXLEN,
            approximate=True,
        )
    except redis.RedisError as exc:
        logger.warning("event_publish_failed", topic=topic, key=key, error=str(exc))
        return False
    return True


def notify_appointment_created(appointment: Appointment, client=None) -> bool:
    return publish_event(
        "appointment.created",
        appointment.tenant_id,
        f"appointment_{appointment.id}",
        appointment_payload(appointment),
        client=client,
    )
