"""
Supabase-backed stores.

The Supabase client is synchronous; every query runs in a worker thread so the
event loop is never blocked. Reads are retried for transient transport errors;
writes are not, since a retried insert may already have been applied.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.database import Tables
from app.exceptions import DuplicateIdempotencyKeyError, StoreError
from app.models.calendar import PRACTITIONER_ROLES, Appointment, AppointmentStatus, Calendar, Practitioner, WebhookChannel
from app.resilience import with_retry
from app.storage.base import AppointmentStore, CalendarStore, PractitionerStore
from app.utils.timezone_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


PRACTITIONER_COLUMNS = (
    "id, email, first_name, last_name, role, is_active, "
    "practitioner_profiles(primary_calendar_id, calendar_permissions_configured)"
)


def _is_duplicate_key_error(error: Exception) -> bool:
    return '23505' in str(error) or 'duplicate key' in str(error).lower()


class _SupabaseStore:
    """Shared thread offloading for the Supabase stores."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    async def _run(self, operation: str, query: Callable[[], Any]) -> List[Dict[str, Any]]:
        """Execute a query builder in a thread and return its rows."""

        def _execute():
            response = query().execute()
            return getattr(response, "data", None) or []

        try:
            return await asyncio.to_thread(_execute)
        except Exception as e:
            logger.error(f"Supabase {operation} failed: {e}")
            raise StoreError(operation, e) from e


class SupabaseCalendarStore(_SupabaseStore, CalendarStore):

    def _table(self):
        return self.supabase.table(Tables.CALENDARS)

    async def _one(self, operation: str, column: str, value: str) -> Optional[Calendar]:
        rows = await self._run(operation, lambda: self._table().select("*").eq(column, value).limit(1))
        return Calendar.from_row(rows[0]) if rows else None

    @with_retry(max_attempts=2, delay=0.5)
    async def get(self, calendar_id: str) -> Optional[Calendar]:
        return await self._one("get_calendar", "id", calendar_id)

    @with_retry(max_attempts=2, delay=0.5)
    async def get_by_practitioner(self, practitioner_id: str) -> Optional[Calendar]:
        return await self._one("get_calendar_by_practitioner", "practitioner_id", practitioner_id)

    @with_retry(max_attempts=2, delay=0.5)
    async def get_by_channel_id(self, channel_id: str) -> Optional[Calendar]:
        return await self._one("get_calendar_by_channel", "channel_id", channel_id)

    @with_retry(max_attempts=2, delay=0.5)
    async def get_by_resource_id(self, resource_id: str) -> Optional[Calendar]:
        return await self._one("get_calendar_by_resource", "channel_resource_id", resource_id)

    @with_retry(max_attempts=2, delay=0.5)
    async def list_all(self) -> List[Calendar]:
        rows = await self._run("list_calendars", lambda: self._table().select("*").order("created_at"))
        return [Calendar.from_row(row) for row in rows]

    @with_retry(max_attempts=2, delay=0.5)
    async def list_channels_expiring_before(self, cutoff: datetime) -> List[Calendar]:
        rows = await self._run(
            "list_expiring_channels",
            lambda: self._table().select("*")
            .not_.is_("channel_id", "null")
            .lte("channel_expires_at", to_iso(cutoff))
        )
        return [Calendar.from_row(row) for row in rows]

    async def create(self, calendar: Calendar) -> Calendar:
        row = calendar.to_row()
        row["id"] = row.get("id") or str(uuid.uuid4())
        rows = await self._run("create_calendar", lambda: self._table().insert(row))
        return Calendar.from_row(rows[0] if rows else row)

    async def update(self, calendar_id: str, fields: Dict[str, Any]) -> None:
        payload = dict(fields, updated_at=to_iso(utc_now()))
        await self._run("update_calendar", lambda: self._table().update(payload).eq("id", calendar_id))

    async def update_sync_token(self, calendar_id: str, sync_token: Optional[str]) -> None:
        await self.update(calendar_id, {"sync_token": sync_token})

    async def update_channel(self, calendar_id: str, channel: Optional[WebhookChannel]) -> None:
        await self.update(calendar_id, {
            "channel_id": channel.id if channel else None,
            "channel_resource_id": channel.resource_id if channel else None,
            "channel_expires_at": to_iso(channel.expiration) if channel else None,
            "channel_token": channel.token if channel else None,
        })

    async def delete(self, calendar_id: str) -> None:
        await self._run("delete_calendar", lambda: self._table().delete().eq("id", calendar_id))


class SupabaseAppointmentStore(_SupabaseStore, AppointmentStore):

    def _table(self):
        return self.supabase.table(Tables.APPOINTMENTS)

    @with_retry(max_attempts=2, delay=0.5)
    async def get(self, appointment_id: str) -> Optional[Appointment]:
        rows = await self._run("get_appointment", lambda: self._table().select("*").eq("id", appointment_id).limit(1))
        return Appointment.from_row(rows[0]) if rows else None

    @with_retry(max_attempts=2, delay=0.5)
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Appointment]:
        rows = await self._run(
            "get_appointment_by_key",
            lambda: self._table().select("*").eq("idempotency_key", idempotency_key).limit(1)
        )
        return Appointment.from_row(rows[0]) if rows else None

    @with_retry(max_attempts=2, delay=0.5)
    async def list_active_for_practitioner(
        self,
        practitioner_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[Appointment]:
        rows = await self._run(
            "list_active_appointments",
            lambda: self._table().select("*")
            .eq("practitioner_id", practitioner_id)
            .neq("status", AppointmentStatus.CANCELLED.value)
            .eq("is_archived", False)
            .lt("start_time", to_iso(window_end))
            .gt("end_time", to_iso(window_start))
            .order("start_time")
        )
        return [Appointment.from_row(row) for row in rows]

    async def create(self, appointment: Appointment) -> Appointment:
        row = appointment.to_row()
        row["id"] = row.get("id") or str(uuid.uuid4())

        def _insert():
            response = self._table().insert(row).execute()
            return getattr(response, "data", None) or []

        try:
            rows = await asyncio.to_thread(_insert)
        except Exception as e:
            if appointment.idempotency_key and _is_duplicate_key_error(e):
                raise DuplicateIdempotencyKeyError(appointment.idempotency_key) from e
            logger.error(f"Supabase create_appointment failed: {e}")
            raise StoreError("create_appointment", e) from e
        return Appointment.from_row(rows[0] if rows else row)

    async def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        notes: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"status": status.value, "updated_at": to_iso(utc_now())}
        if notes is not None:
            payload["notes"] = notes
        await self._run("update_appointment_status", lambda: self._table().update(payload).eq("id", appointment_id))

    async def update_times(self, appointment_id: str, start_time: datetime, end_time: datetime) -> None:
        payload = {"start_time": to_iso(start_time), "end_time": to_iso(end_time), "updated_at": to_iso(utc_now())}
        await self._run("update_appointment_times", lambda: self._table().update(payload).eq("id", appointment_id))

    async def set_provider_event(self, appointment_id: str, provider_event_id: Optional[str]) -> None:
        payload = {"provider_event_id": provider_event_id, "updated_at": to_iso(utc_now())}
        await self._run("set_provider_event", lambda: self._table().update(payload).eq("id", appointment_id))


class SupabasePractitionerStore(_SupabaseStore, PractitionerStore):

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Practitioner:
        profile = row.get("practitioner_profiles") or {}
        if isinstance(profile, list):
            profile = profile[0] if profile else {}
        return Practitioner(
            id=str(row["id"]),
            email=row.get("email"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            role=row.get("role") or "therapist",
            is_active=bool(row.get("is_active", True)),
            primary_calendar_id=profile.get("primary_calendar_id"),
            calendar_permissions_configured=bool(profile.get("calendar_permissions_configured", False)),
        )

    @with_retry(max_attempts=2, delay=0.5)
    async def get(self, practitioner_id: str) -> Optional[Practitioner]:
        rows = await self._run(
            "get_practitioner",
            lambda: self.supabase.table(Tables.USERS).select(PRACTITIONER_COLUMNS).eq("id", practitioner_id).limit(1)
        )
        return self._from_row(rows[0]) if rows else None

    @with_retry(max_attempts=2, delay=0.5)
    async def list_active(self) -> List[Practitioner]:
        rows = await self._run(
            "list_practitioners",
            lambda: self.supabase.table(Tables.USERS).select(PRACTITIONER_COLUMNS)
            .in_("role", PRACTITIONER_ROLES)
            .eq("is_active", True)
        )
        return [self._from_row(row) for row in rows]

    async def update_calendar_reference(
        self,
        practitioner_id: str,
        calendar_id: Optional[str],
        permissions_configured: bool,
    ) -> None:
        payload = {
            "user_id": practitioner_id,
            "primary_calendar_id": calendar_id,
            "calendar_permissions_configured": permissions_configured,
            "updated_at": to_iso(utc_now()),
        }
        await self._run(
            "update_calendar_reference",
            lambda: self.supabase.table(Tables.PRACTITIONER_PROFILES).upsert(payload, on_conflict="user_id")
        )
