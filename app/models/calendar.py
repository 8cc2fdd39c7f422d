"""
Domain models for calendar sync, channel lifecycle and booking admission.

Rows coming from storage are plain dicts; from_row()/to_row() translate them.
All datetimes are aware UTC.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from app.exceptions import InvalidWebhookNotificationError
from app.utils.timezone_utils import parse_datetime, to_iso


PRACTITIONER_ROLES = ["therapist", "practitioner"]


class IntegrationStatus(str, Enum):
    """Provisioning / integration state of a practitioner calendar."""
    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"


class ResourceState(str, Enum):
    """Resource state reported by a push notification."""
    SYNC = "sync"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


@dataclass
class WebhookChannel:
    """A provider push subscription ("channel") on one calendar"""
    id: str
    resource_id: str
    expiration: Optional[datetime] = None
    token: Optional[str] = None


@dataclass
class Calendar:
    """Mapping of a practitioner to a provider calendar plus its sync state"""
    id: str
    practitioner_id: str
    provider_calendar_id: Optional[str] = None
    integration_status: IntegrationStatus = IntegrationStatus.PENDING
    channel_id: Optional[str] = None
    channel_resource_id: Optional[str] = None
    channel_expires_at: Optional[datetime] = None
    channel_token: Optional[str] = None
    sync_token: Optional[str] = None
    shared_email: Optional[str] = None
    acl_role: str = "writer"
    owner_account_email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def channel(self) -> Optional[WebhookChannel]:
        if not self.channel_id:
            return None
        return WebhookChannel(
            id=self.channel_id,
            resource_id=self.channel_resource_id,
            expiration=self.channel_expires_at,
            token=self.channel_token,
        )

    @property
    def is_active(self) -> bool:
        return self.integration_status == IntegrationStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Calendar":
        return cls(
            id=str(row["id"]),
            practitioner_id=str(row["practitioner_id"]),
            provider_calendar_id=row.get("provider_calendar_id"),
            integration_status=IntegrationStatus(row.get("integration_status") or "pending"),
            channel_id=row.get("channel_id"),
            channel_resource_id=row.get("channel_resource_id"),
            channel_expires_at=parse_datetime(row.get("channel_expires_at")),
            channel_token=row.get("channel_token"),
            sync_token=row.get("sync_token"),
            shared_email=row.get("shared_email"),
            acl_role=row.get("acl_role") or "writer",
            owner_account_email=row.get("owner_account_email"),
            created_at=parse_datetime(row.get("created_at")),
            updated_at=parse_datetime(row.get("updated_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "practitioner_id": self.practitioner_id,
            "provider_calendar_id": self.provider_calendar_id,
            "integration_status": self.integration_status.value,
            "channel_id": self.channel_id,
            "channel_resource_id": self.channel_resource_id,
            "channel_expires_at": to_iso(self.channel_expires_at),
            "channel_token": self.channel_token,
            "sync_token": self.sync_token,
            "shared_email": self.shared_email,
            "acl_role": self.acl_role,
            "owner_account_email": self.owner_account_email,
        }


@dataclass
class Appointment:
    """A booked session; active while neither cancelled nor archived"""
    id: str
    practitioner_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    client_id: Optional[str] = None
    session_type: str = "therapy"
    idempotency_key: Optional[str] = None
    provider_event_id: Optional[str] = None
    is_archived: bool = False
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED and not self.is_archived

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Appointment":
        return cls(
            id=str(row["id"]),
            practitioner_id=str(row["practitioner_id"]),
            start_time=parse_datetime(row["start_time"]),
            end_time=parse_datetime(row["end_time"]),
            status=AppointmentStatus(row.get("status") or "scheduled"),
            client_id=row.get("client_id"),
            session_type=row.get("session_type") or "therapy",
            idempotency_key=row.get("idempotency_key"),
            provider_event_id=row.get("provider_event_id"),
            is_archived=bool(row.get("is_archived", False)),
            notes=row.get("notes"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "practitioner_id": self.practitioner_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "status": self.status.value,
            "client_id": self.client_id,
            "session_type": self.session_type,
            "idempotency_key": self.idempotency_key,
            "provider_event_id": self.provider_event_id,
            "is_archived": self.is_archived,
            "notes": self.notes,
        }


@dataclass
class Practitioner:
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = "therapist"
    is_active: bool = True
    primary_calendar_id: Optional[str] = None
    calendar_permissions_configured: bool = False

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Practitioner"


@dataclass(frozen=True)
class BusyInterval:
    """Half-open [start, end) busy period reported by the provider"""
    start: datetime
    end: datetime
    event_id: Optional[str] = None
    appointment_id: Optional[str] = None
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": to_iso(self.start),
            "end": to_iso(self.end),
            "event_id": self.event_id,
            "summary": self.summary,
        }


@dataclass
class ConflictRecord:
    """A local appointment overlapping a busy period that is not its own event"""
    appointment_id: str
    calendar_id: str
    interval: BusyInterval
    detected_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "calendar_id": self.calendar_id,
            "busy": self.interval.to_dict(),
            "detected_at": to_iso(self.detected_at),
        }


@dataclass
class ProviderEvent:
    """Provider calendar event as returned by an (incremental) listing"""
    id: str
    status: str = "confirmed"
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    appointment_id: Optional[str] = None
    summary: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


@dataclass
class EventPage:
    """All events of one listing plus the continuation token for the next one"""
    events: List[ProviderEvent] = field(default_factory=list)
    next_sync_token: Optional[str] = None


@dataclass
class WebhookNotification:
    """Parsed push notification headers"""
    channel_id: str
    resource_id: str
    resource_state: ResourceState
    resource_uri: str
    channel_expiration: Optional[str] = None
    channel_token: Optional[str] = None
    message_number: Optional[str] = None

    HEADER_MAP = {
        "channel_id": "x-goog-channel-id",
        "resource_id": "x-goog-resource-id",
        "resource_state": "x-goog-resource-state",
        "resource_uri": "x-goog-resource-uri",
        "channel_expiration": "x-goog-channel-expiration",
        "channel_token": "x-goog-channel-token",
        "message_number": "x-goog-message-number",
    }
    REQUIRED = ("channel_id", "resource_id", "resource_state", "resource_uri")

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "WebhookNotification":
        """
        Build a notification from request headers (case-insensitive).

        Raises:
            InvalidWebhookNotificationError: mandatory header missing or unknown state
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        values = {attr: lowered.get(header) for attr, header in cls.HEADER_MAP.items()}

        for attr in cls.REQUIRED:
            if not values[attr]:
                raise InvalidWebhookNotificationError(cls.HEADER_MAP[attr])

        try:
            values["resource_state"] = ResourceState(values["resource_state"])
        except ValueError:
            raise InvalidWebhookNotificationError(
                cls.HEADER_MAP["resource_state"],
                f"Unsupported resource state: {values['resource_state']}",
            )

        return cls(**values)


@dataclass
class SyncResult:
    """Outcome of processing one push notification"""
    calendar_id: str = ""
    events_processed: int = 0
    conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calendarId": self.calendar_id,
            "eventsProcessed": self.events_processed,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
            "skipped": self.skipped,
        }
