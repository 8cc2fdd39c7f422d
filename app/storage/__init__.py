"""Persistence layer for calendars, appointments and practitioners."""
from app.storage.base import AppointmentStore, CalendarStore, PractitionerStore
from app.storage.supabase_store import (
    SupabaseAppointmentStore,
    SupabaseCalendarStore,
    SupabasePractitionerStore,
)

__all__ = [
    "AppointmentStore",
    "CalendarStore",
    "PractitionerStore",
    "SupabaseAppointmentStore",
    "SupabaseCalendarStore",
    "SupabasePractitionerStore",
]
