"""
Tests for the Supabase-backed stores
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from app.database import Tables
from app.exceptions import DuplicateIdempotencyKeyError, StoreError
from app.models.calendar import AppointmentStatus, IntegrationStatus, WebhookChannel
from app.storage.supabase_store import (
    SupabaseAppointmentStore,
    SupabaseCalendarStore,
    SupabasePractitionerStore,
)
from tests.fakes import make_appointment

BUILDER_METHODS = (
    "select", "eq", "neq", "lt", "gt", "lte", "order", "limit",
    "insert", "update", "upsert", "delete", "in_", "is_",
)


def query_chain(data=None, error=None) -> MagicMock:
    """A PostgREST query builder whose every filter returns itself"""
    query = MagicMock()
    for name in BUILDER_METHODS:
        getattr(query, name).return_value = query
    query.not_ = query
    if error is not None:
        query.execute.side_effect = error
    else:
        query.execute.return_value = MagicMock(data=data or [])
    return query


def supabase_with(query: MagicMock) -> MagicMock:
    client = MagicMock()
    client.table.return_value = query
    return client


CALENDAR_ROW = {
    "id": "calendar-1",
    "practitioner_id": "practitioner-1",
    "provider_calendar_id": "provider-cal-1",
    "integration_status": "active",
    "channel_id": "channel-1",
    "channel_resource_id": "resource-1",
    "channel_expires_at": "2025-03-17T08:00:00Z",
    "channel_token": "secret-token",
    "sync_token": "token-1",
}


class TestCalendarStore:

    async def test_get_by_channel_id(self):
        query = query_chain([CALENDAR_ROW])
        client = supabase_with(query)
        store = SupabaseCalendarStore(client)

        calendar = await store.get_by_channel_id("channel-1")

        client.table.assert_called_with(Tables.CALENDARS)
        query.eq.assert_called_with("channel_id", "channel-1")
        assert calendar.id == "calendar-1"
        assert calendar.integration_status == IntegrationStatus.ACTIVE
        assert calendar.channel_expires_at == datetime(2025, 3, 17, 8, tzinfo=timezone.utc)

    async def test_missing_row_is_none(self):
        store = SupabaseCalendarStore(supabase_with(query_chain([])))
        assert await store.get("nope") is None

    async def test_update_channel_writes_all_columns(self):
        query = query_chain()
        store = SupabaseCalendarStore(supabase_with(query))

        await store.update_channel("calendar-1", WebhookChannel(
            id="channel-2",
            resource_id="resource-2",
            expiration=datetime(2025, 3, 20, tzinfo=timezone.utc),
            token="tok",
        ))

        payload = query.update.call_args.args[0]
        assert payload["channel_id"] == "channel-2"
        assert payload["channel_resource_id"] == "resource-2"
        assert payload["channel_expires_at"] == "2025-03-20T00:00:00+00:00"
        assert payload["channel_token"] == "tok"
        assert "updated_at" in payload
        query.eq.assert_called_with("id", "calendar-1")

    async def test_clearing_channel_nulls_columns(self):
        query = query_chain()
        store = SupabaseCalendarStore(supabase_with(query))

        await store.update_channel("calendar-1", None)

        payload = query.update.call_args.args[0]
        assert payload["channel_id"] is None
        assert payload["channel_token"] is None

    async def test_failures_are_wrapped(self):
        store = SupabaseCalendarStore(supabase_with(query_chain(error=RuntimeError("permission denied"))))

        with pytest.raises(StoreError) as exc_info:
            await store.update_sync_token("calendar-1", "token-2")

        assert exc_info.value.operation == "update_calendar"
        assert isinstance(exc_info.value.cause, RuntimeError)


class TestAppointmentStore:

    async def test_list_active_filters_cancelled_and_archived(self):
        query = query_chain([])
        store = SupabaseAppointmentStore(supabase_with(query))

        await store.list_active_for_practitioner(
            "practitioner-1",
            datetime(2025, 3, 10, tzinfo=timezone.utc),
            datetime(2025, 4, 9, tzinfo=timezone.utc),
        )

        query.neq.assert_called_with("status", AppointmentStatus.CANCELLED.value)
        query.eq.assert_any_call("is_archived", False)
        query.lt.assert_called_with("start_time", "2025-04-09T00:00:00+00:00")
        query.gt.assert_called_with("end_time", "2025-03-10T00:00:00+00:00")

    async def test_duplicate_idempotency_key(self):
        error = Exception('duplicate key value violates unique constraint (23505)')
        store = SupabaseAppointmentStore(supabase_with(query_chain(error=error)))
        appointment = make_appointment(datetime(2025, 3, 10, 9, tzinfo=timezone.utc), idempotency_key="key-1")

        with pytest.raises(DuplicateIdempotencyKeyError) as exc_info:
            await store.create(appointment)

        assert exc_info.value.idempotency_key == "key-1"

    async def test_other_insert_failures_are_store_errors(self):
        store = SupabaseAppointmentStore(supabase_with(query_chain(error=Exception("check constraint"))))
        appointment = make_appointment(datetime(2025, 3, 10, 9, tzinfo=timezone.utc), idempotency_key="key-1")

        with pytest.raises(StoreError):
            await store.create(appointment)

    async def test_create_returns_stored_row(self):
        start = datetime(2025, 3, 10, 9, tzinfo=timezone.utc)
        appointment = make_appointment(start)
        query = query_chain([appointment.to_row()])
        store = SupabaseAppointmentStore(supabase_with(query))

        created = await store.create(appointment)

        assert created.id == appointment.id
        assert created.start_time == start
        assert query.insert.call_args.args[0]["start_time"] == "2025-03-10T09:00:00+00:00"

    async def test_transient_read_failure_is_retried(self):
        query = query_chain()
        query.execute.side_effect = [ConnectionError("connection reset"), MagicMock(data=[])]
        store = SupabaseAppointmentStore(supabase_with(query))

        assert await store.get_by_idempotency_key("key-1") is None
        assert query.execute.call_count == 2


class TestPractitionerStore:

    async def test_profile_columns_are_flattened(self):
        row = {
            "id": "practitioner-1",
            "email": "p1@practice.example",
            "first_name": "Ana",
            "last_name": "Lopez",
            "role": "therapist",
            "is_active": True,
            "practitioner_profiles": [{"primary_calendar_id": "calendar-1", "calendar_permissions_configured": True}],
        }
        store = SupabasePractitionerStore(supabase_with(query_chain([row])))

        practitioner = await store.get("practitioner-1")

        assert practitioner.display_name == "Ana Lopez"
        assert practitioner.primary_calendar_id == "calendar-1"
        assert practitioner.calendar_permissions_configured is True

    async def test_update_reference_upserts_profile(self):
        query = query_chain()
        client = supabase_with(query)
        store = SupabasePractitionerStore(client)

        await store.update_calendar_reference("practitioner-1", None, False)

        client.table.assert_called_with(Tables.PRACTITIONER_PROFILES)
        payload = query.upsert.call_args.args[0]
        assert payload["primary_calendar_id"] is None
        assert query.upsert.call_args.kwargs["on_conflict"] == "user_id"
