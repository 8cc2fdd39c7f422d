"""
Provider event operations for appointments.

Events created here carry the appointment id as a private extended property,
which is how the sync engine links provider changes back to appointments.
"""

import logging
from typing import Any, Dict, Optional

from app.calendar.base import CalendarProviderClient
from app.storage.base import AppointmentStore

logger = logging.getLogger(__name__)


class CalendarEventService:

    def __init__(self, provider: CalendarProviderClient, appointment_store: AppointmentStore):
        self.provider = provider
        self.appointments = appointment_store

    async def create_event(
        self,
        provider_calendar_id: str,
        event: Dict[str, Any],
        appointment_id: Optional[str] = None,
        practitioner_id: Optional[str] = None,
    ) -> str:
        event_id = await self.provider.create_event(
            provider_calendar_id, event, appointment_id=appointment_id, practitioner_id=practitioner_id
        )
        if appointment_id:
            try:
                await self.appointments.set_provider_event(appointment_id, event_id)
            except Exception as e:
                # The extended property still links the event; the next sync repairs the column
                logger.warning(f"Failed to record event {event_id} on appointment {appointment_id}: {e}")
        logger.info(f"Created event {event_id} on calendar {provider_calendar_id}")
        return event_id

    async def update_event(self, provider_calendar_id: str, event_id: str, updates: Dict[str, Any]) -> None:
        await self.provider.update_event(provider_calendar_id, event_id, updates)
        logger.info(f"Updated event {event_id} on calendar {provider_calendar_id}")

    async def delete_event(self, provider_calendar_id: str, event_id: str, appointment_id: Optional[str] = None) -> None:
        await self.provider.delete_event(provider_calendar_id, event_id)
        if appointment_id:
            await self.appointments.set_provider_event(appointment_id, None)
        logger.info(f"Deleted event {event_id} from calendar {provider_calendar_id}")
