from fastapi import FastAPI
from fastapi.testclient import TestClient

from agenda.config import settings
from agenda.core import notifications
from agenda.main import app
from agenda.observability import masking_processor, request_tracing_middleware


def test_health_ready_ok_without_event_bus():
    previous_event_bus = bool(settings.EVENT_BUS_ENABLED)
    try:
        settings.EVENT_BUS_ENABLED = False
        client = TestClient(app)
        response = client.get("/health/ready")
        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "ready"
        assert payload["checks"]["db"] == "ok"
        assert payload["checks"]["event_bus"] == "skipped"
    finally:
        settings.EVENT_BUS_ENABLED = previous_event_bus


def test_security_headers_are_present():
    previous_security_headers = bool(settings.SECURITY_HEADERS_ENABLED)
    try:
        settings.SECURITY_HEADERS_ENABLED = True
        client = TestClient(app)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.headers.get("X-Content-Type-Options") == "nosniff"
        assert response.headers.get("X-Frame-Options") == "DENY"
        assert response.headers.get("Referrer-Policy") == "no-referrer"
    finally:
        settings.SECURITY_HEADERS_ENABLED = previous_security_headers


def test_request_id_is_echoed():
    client = TestClient(app)
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers.get("X-Request-ID") == "req-123"

    generated = client.get("/health")
    assert generated.headers.get("X-Request-ID")


def test_unhandled_error_returns_generic_body():
    boom_app = FastAPI()
    boom_app.middleware("http")(request_tracing_middleware)

    @boom_app.get("/boom")
    def boom():
        raise RuntimeError("secret stack detail")

    client = TestClient(boom_app)
    response = client.get("/boom", headers={"X-Request-ID": "req-500"})
    assert response.status_code == 500
    body = response.json()
    assert body["kind"] == "internal_error"
    assert body["details"]["request_id"] == "req-500"
    assert "secret" not in response.text


def test_masking_processor_hides_phone_digits():
    event = masking_processor(None, "info", {"event": "x", "client_phone": "11999990000"})
    assert event["client_phone"] == "119***00"
    short = masking_processor(None, "info", {"event": "x", "phone": "1234"})
    assert short["phone"] == "***"


def test_masking_processor_hides_staff_email():
    event = masking_processor(None, "info", {"event": "x", "actor": "desk@studio.com"})
    assert event["actor"] == "d***@studio.com"
    assert masking_processor(None, "info", {"event": "x", "actor": "desk"})["actor"] == "***"


def test_request_context_carries_tenant_and_actor():
    import structlog

    ctx_app = FastAPI()
    ctx_app.middleware("http")(request_tracing_middleware)

    @ctx_app.get("/ctx")
    def ctx():
        return structlog.contextvars.get_contextvars()

    client = TestClient(ctx_app)
    bound = client.get(
        "/ctx",
        headers={"X-Tenant-Slug": "Studio", "X-Actor-Email": "Desk@Studio.com", "X-Actor-Role": "Admin"},
    ).json()
    assert bound["tenant_slug"] == "studio"
    assert bound["actor"] == "desk@studio.com"
    assert bound["actor_role"] == "admin"

    anonymous = client.get("/ctx").json()
    assert anonymous["tenant_slug"] == settings.DEFAULT_TENANT_SLUG
    assert anonymous["actor"] is None


def test_publish_is_skipped_when_bus_disabled():
    previous_event_bus = bool(settings.EVENT_BUS_ENABLED)
    try:
        settings.EVENT_BUS_ENABLED = False
        assert notifications.publish_event("appointment.created", 1, "k", {}) is False
    finally:
        settings.EVENT_BUS_ENABLED = previous_event_bus


def test_publish_failure_is_swallowed_and_reported():
    import redis

    class DownRedis:
        def xadd(self, *args, **kwargs):
            raise redis.ConnectionError("connection refused")

    previous_event_bus = bool(settings.EVENT_BUS_ENABLED)
    try:
        settings.EVENT_BUS_ENABLED = True
        ok = notifications.publish_event("appointment.created", 1, "k", {"a": 1}, client=DownRedis())
        assert ok is False
    finally:
        settings.EVENT_BUS_ENABLED = previous_event_bus
