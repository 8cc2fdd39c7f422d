"""Abstract persistence interfaces for calendars, appointments and practitioners."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.models.calendar import Appointment, AppointmentStatus, Calendar, Practitioner, WebhookChannel


class CalendarStore(ABC):
    """Persistence of practitioner calendars and their channel / sync state."""

    @abstractmethod
    async def get(self, calendar_id: str) -> Optional[Calendar]:
        ...

    @abstractmethod
    async def get_by_practitioner(self, practitioner_id: str) -> Optional[Calendar]:
        ...

    @abstractmethod
    async def get_by_channel_id(self, channel_id: str) -> Optional[Calendar]:
        ...

    @abstractmethod
    async def get_by_resource_id(self, resource_id: str) -> Optional[Calendar]:
        ...

    @abstractmethod
    async def list_all(self) -> List[Calendar]:
        ...

    @abstractmethod
    async def list_channels_expiring_before(self, cutoff: datetime) -> List[Calendar]:
        """Calendars holding a channel whose expiry is at or before cutoff."""

    @abstractmethod
    async def create(self, calendar: Calendar) -> Calendar:
        ...

    @abstractmethod
    async def update(self, calendar_id: str, fields: Dict[str, Any]) -> None:
        """Update columns of one calendar row (values already storage-shaped)."""

    @abstractmethod
    async def update_sync_token(self, calendar_id: str, sync_token: Optional[str]) -> None:
        ...

    @abstractmethod
    async def update_channel(self, calendar_id: str, channel: Optional[WebhookChannel]) -> None:
        """Replace the stored channel reference in one write (None clears it)."""

    @abstractmethod
    async def delete(self, calendar_id: str) -> None:
        ...


class AppointmentStore(ABC):
    """Persistence of appointments used by admission and conflict detection."""

    @abstractmethod
    async def get(self, appointment_id: str) -> Optional[Appointment]:
        ...

    @abstractmethod
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Appointment]:
        ...

    @abstractmethod
    async def list_active_for_practitioner(
        self,
        practitioner_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[Appointment]:
        """Non-cancelled, non-archived appointments intersecting [window_start, window_end)."""

    @abstractmethod
    async def create(self, appointment: Appointment) -> Appointment:
        """
        Raises:
            DuplicateIdempotencyKeyError: another row already holds the idempotency key
        """

    @abstractmethod
    async def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        notes: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def update_times(self, appointment_id: str, start_time: datetime, end_time: datetime) -> None:
        ...

    @abstractmethod
    async def set_provider_event(self, appointment_id: str, provider_event_id: Optional[str]) -> None:
        ...


class PractitionerStore(ABC):
    """Read access to practitioners plus their calendar profile reference."""

    @abstractmethod
    async def get(self, practitioner_id: str) -> Optional[Practitioner]:
        ...

    @abstractmethod
    async def list_active(self) -> List[Practitioner]:
        ...

    @abstractmethod
    async def update_calendar_reference(
        self,
        practitioner_id: str,
        calendar_id: Optional[str],
        permissions_configured: bool,
    ) -> None:
        ...
