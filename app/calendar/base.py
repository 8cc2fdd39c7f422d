"""Abstract base class for calendar provider implementations."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.models.calendar import BusyInterval, EventPage, WebhookChannel


class CalendarProviderClient(ABC):
    """Interface the sync, channel and provisioning services use to talk to the provider.

    Implementations raise app.exceptions.CalendarServiceError subclasses; deleting or
    stopping an already-absent resource must succeed silently.
    """

    @abstractmethod
    async def create_calendar(self, summary: str, description: str, time_zone: str) -> str:
        """Create a secondary calendar and return its provider id."""

    @abstractmethod
    async def calendar_exists(self, calendar_id: str) -> bool:
        """Return False when the provider reports the calendar as gone."""

    @abstractmethod
    async def delete_calendar(self, calendar_id: str) -> None:
        """Delete a calendar; a missing calendar is not an error."""

    @abstractmethod
    async def ensure_acl(self, calendar_id: str, email: str, role: str = "writer") -> None:
        """Grant (or re-grant) a user access to the calendar."""

    @abstractmethod
    async def list_events(
        self,
        calendar_id: str,
        sync_token: Optional[str] = None,
        time_min: Optional[datetime] = None,
    ) -> EventPage:
        """List changed events since sync_token, or all events since time_min.

        Raises:
            SyncTokenExpiredError: the provider no longer accepts sync_token
        """

    @abstractmethod
    async def query_busy(self, calendar_id: str, start: datetime, end: datetime) -> List[BusyInterval]:
        """Busy intervals in [start, end), each tagged with its event id when known."""

    @abstractmethod
    async def create_event(
        self,
        calendar_id: str,
        event: Dict[str, Any],
        appointment_id: Optional[str] = None,
        practitioner_id: Optional[str] = None,
    ) -> str:
        """Create an event and return its id."""

    @abstractmethod
    async def update_event(self, calendar_id: str, event_id: str, updates: Dict[str, Any]) -> None:
        """Patch an existing event."""

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event; a missing event is not an error."""

    @abstractmethod
    async def watch_calendar(self, calendar_id: str) -> WebhookChannel:
        """Open a push channel delivering change notifications for the calendar."""

    @abstractmethod
    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        """Stop a push channel; an unknown channel is not an error."""

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Cheap connectivity check."""

    def get_metrics(self) -> Dict[str, Any]:
        return {}
