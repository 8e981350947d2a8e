import logging
import sys
import time
import uuid

import structlog
from fastapi import Request
from starlette.responses import JSONResponse

from .config import settings

_PHONE_KEYS = ("phone", "client_phone")
_EMAIL_KEYS = ("actor", "actor_email")


def _mask_phone(value: str) -> str:
    return f"{value[:3]}***{value[-2:]}" if len(value) > 5 else "***"


def _mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def masking_processor(logger, method_name, event_dict):
    """Masks client phones and staff emails in logs."""
    for key in _PHONE_KEYS:
        if event_dict.get(key) is not None:
            event_dict[key] = _mask_phone(str(event_dict[key]))
    for key in _EMAIL_KEYS:
        if event_dict.get(key) is not None:
            event_dict[key] = _mask_email(str(event_dict[key]))
    return event_dict


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            masking_processor,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("agenda.http")


def _header(request: Request, name: str) -> str | None:
    return (request.headers.get(name) or "").strip().lower() or None


async def request_tracing_middleware(request: Request, call_next):
    """Binds tenant and acting staff to every log line of the request.

    Booking rejections (4xx) are routine and logged at info; only 5xx
    responses and unhandled errors are logged as errors.
    """
    request_id = (request.headers.get("x-request-id") or "").strip() or str(uuid.uuid4())

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        tenant_slug=_header(request, "x-tenant-slug") or settings.DEFAULT_TENANT_SLUG,
        actor=_header(request, "x-actor-email"),
        actor_role=_header(request, "x-actor-role"),
        path=request.url.path,
        method=request.method,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        logger.error(
            "http_request_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return JSONResponse(
            status_code=500,
            content={
                "kind": "internal_error",
                "message": "Internal Server Error",
                "details": {"request_id": request_id},
            },
            headers={"X-Request-ID": request_id},
        )

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    log = logger.error if response.status_code >= 500 else logger.info
    log("http_request", status=response.status_code, duration_ms=duration_ms)
    response.headers["X-Request-ID"] = request_id
    return response
