"""
HTTP-level tests for the webhook, calendar and booking routes
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from app.app_factory import create_app
from app.dependencies import build_services
from app.middleware import auth
from app.services.email_service import EmailService
from tests.fakes import (
    FakeCalendarProvider,
    FixedClock,
    InMemoryAppointmentStore,
    InMemoryCalendarStore,
    InMemoryPractitionerStore,
    RecordingSleep,
    make_appointment,
    make_calendar,
    make_practitioner,
)

NOTIFICATION_HEADERS = {
    "X-Goog-Channel-ID": "channel-1",
    "X-Goog-Resource-ID": "resource-1",
    "X-Goog-Resource-State": "exists",
    "X-Goog-Resource-URI": "https://www.googleapis.com/calendar/v3/calendars/provider-cal-1/events",
    "X-Goog-Channel-Token": "secret-token",
    "X-Goog-Message-Number": "7",
}


def bearer(sub: str, role: str) -> dict:
    token = jwt.encode(
        {"sub": sub, "role": role, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        auth.JWT_SECRET,
        algorithm=auth.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


ADMIN = bearer("admin-1", "admin")


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def stores():
    return {
        "calendar_store": InMemoryCalendarStore([make_calendar()]),
        "appointment_store": InMemoryAppointmentStore(),
        "practitioner_store": InMemoryPractitionerStore([
            make_practitioner("practitioner-1"),
            make_practitioner("practitioner-2"),
        ]),
    }


@pytest.fixture
def services(stores, clock):
    return build_services(
        provider=FakeCalendarProvider(clock),
        email_service=EmailService(host="", admin_email=""),
        clock=clock,
        **stores,
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services))


class TestWebhookRoute:

    def test_notification_triggers_sync(self, client, services):
        response = client.post("/webhooks/calendar/google", headers=NOTIFICATION_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["calendarId"] == "calendar-1"
        assert body["result"]["skipped"] is False
        assert services.provider.called("list_events")

    def test_missing_resource_uri_is_rejected(self, client, services):
        headers = {k: v for k, v in NOTIFICATION_HEADERS.items() if k != "X-Goog-Resource-URI"}

        response = client.post("/webhooks/calendar/google", headers=headers)

        assert response.status_code == 400
        assert "x-goog-resource-uri" in response.json()["detail"]
        assert not services.provider.called("list_events")

    def test_unknown_channel_is_acknowledged(self, client, services):
        headers = dict(NOTIFICATION_HEADERS, **{"X-Goog-Channel-ID": "someone-else"})

        response = client.post("/webhooks/calendar/google", headers=headers)

        assert response.status_code == 200
        assert response.json()["result"]["errors"] == ["No calendar found for channel someone-else"]
        assert not services.provider.called("list_events")

    def test_internal_failure_is_500(self, client, stores):
        stores["calendar_store"].fail("get_by_channel_id", RuntimeError("db down"))

        response = client.post("/webhooks/calendar/google", headers=NOTIFICATION_HEADERS)

        assert response.status_code == 500


class TestCalendarRoutes:

    def test_health_is_public(self, client):
        response = client.get("/api/calendar/health")

        assert response.status_code == 200
        assert response.json()["status"] in ("healthy", "degraded")
        assert response.json()["provider"]["status"] == "healthy"

    def test_admin_routes_require_token(self, client):
        assert client.get("/api/calendar/list").status_code == 401

    def test_admin_routes_reject_practitioners(self, client):
        response = client.get("/api/calendar/list", headers=bearer("practitioner-1", "therapist"))
        assert response.status_code == 403

    def test_list_masks_shared_email(self, client, stores):
        stores["calendar_store"].rows["calendar-1"].shared_email = "practitioner-1@practice.example"

        response = client.get("/api/calendar/list", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["calendars"][0]["shared_email"] != "practitioner-1@practice.example"

    def test_practitioner_sees_own_calendar_only(self, client):
        own = client.get("/api/calendar/practitioners/practitioner-1", headers=bearer("practitioner-1", "therapist"))
        other = client.get("/api/calendar/practitioners/practitioner-1", headers=bearer("practitioner-2", "therapist"))

        assert own.status_code == 200
        assert own.json()["data"]["provider_calendar_id"] == "provider-cal-1"
        assert other.status_code == 403

    def test_setup_provisions_calendar(self, client, services, stores):
        response = client.post("/api/calendar/practitioners/practitioner-2/setup", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["success"] is True
        assert data["setupStep"] == "completed"
        assert stores["practitioner_store"].references["practitioner-2"][0] == data["calendarId"]

    def test_setup_unknown_practitioner_is_404(self, client):
        response = client.post("/api/calendar/practitioners/nobody/setup", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["detail"]["setupStep"] == "validation"

    def test_setup_transient_lookup_failure_is_503(self, client, services, stores):
        services.provisioning._sleep = RecordingSleep()
        stores["practitioner_store"].fail("get", ConnectionError("connection reset"))

        response = client.post("/api/calendar/practitioners/practitioner-2/setup", headers=ADMIN)

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["setupStep"] == "validation"
        assert detail["retryable"] is True

    def test_batch_setup_listing_failure_is_503(self, client, stores):
        stores["practitioner_store"].fail("list_active", RuntimeError("db down"))

        response = client.post("/api/calendar/admin/batch-setup", headers=ADMIN, json={})

        assert response.status_code == 503
        assert "db down" in response.json()["detail"]["error"]

    def test_check_availability_requires_target(self, client):
        response = client.post(
            "/api/calendar/check-availability",
            headers=ADMIN,
            json={"start_time": "2025-03-11T09:00:00Z", "end_time": "2025-03-11T09:50:00Z"},
        )
        assert response.status_code == 422

    def test_clear_locks(self, client, services):
        services.webhook_handler.locks.try_acquire("calendar-1")

        response = client.post("/api/calendar/admin/clear-locks", headers=ADMIN)

        assert response.json()["data"]["cleared"] == 1


class TestBookingRoutes:

    def test_admit_creates_appointment(self, client, stores):
        response = client.post(
            "/api/bookings/admit",
            headers=bearer("practitioner-1", "therapist"),
            json={
                "practitioner_id": "practitioner-1",
                "start_time": "2025-03-11T09:00:00Z",
                "end_time": "2025-03-11T09:50:00Z",
                "client_id": "client-1",
                "idempotency_key": "key-1",
            },
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["admitted"] is True
        assert data["idempotency_key"] == "key-1"
        assert stores["appointment_store"].create_calls == 1

    def test_overlapping_booking_is_rejected(self, client, stores):
        existing = make_appointment(datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc), id="existing")
        stores["appointment_store"].rows[existing.id] = existing

        response = client.post(
            "/api/bookings/admit",
            headers=bearer("practitioner-1", "therapist"),
            json={
                "practitioner_id": "practitioner-1",
                "start_time": "2025-03-11T09:30:00Z",
                "end_time": "2025-03-11T10:20:00Z",
            },
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["admitted"] is False
        assert data["reason"] == "conflict"
        assert data["conflicting_appointment_id"] == "existing"
        assert stores["appointment_store"].create_calls == 0

    def test_check_reports_availability(self, client):
        response = client.post(
            "/api/bookings/check",
            headers=bearer("practitioner-1", "therapist"),
            json={
                "practitioner_id": "practitioner-1",
                "start_time": "2025-03-11T09:00:00Z",
                "end_time": "2025-03-11T09:50:00Z",
            },
        )

        assert response.status_code == 200
        assert response.json()["data"]["available"] is True
        assert response.json()["data"]["check_failed"] is False

    def test_admit_requires_token(self, client):
        response = client.post("/api/bookings/admit", json={
            "practitioner_id": "practitioner-1",
            "start_time": "2025-03-11T09:00:00Z",
            "end_time": "2025-03-11T09:50:00Z",
        })
        assert response.status_code == 401
