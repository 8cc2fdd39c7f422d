"""Data models for the calendar sync backend."""
from app.models.calendar import (
    Appointment,
    AppointmentStatus,
    BusyInterval,
    Calendar,
    ConflictRecord,
    IntegrationStatus,
    Practitioner,
    SyncResult,
    WebhookChannel,
    WebhookNotification,
)

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "BusyInterval",
    "Calendar",
    "ConflictRecord",
    "IntegrationStatus",
    "Practitioner",
    "SyncResult",
    "WebhookChannel",
    "WebhookNotification",
]
