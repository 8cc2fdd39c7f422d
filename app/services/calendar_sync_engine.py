"""
Incremental sync of provider calendar changes into local appointments.

Uses the provider's continuation ("sync") token to fetch only changes since the
last pass. An expired token falls back to a bounded look-back listing, which
returns a fresh token.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from app import config
from app.calendar.base import CalendarProviderClient
from app.exceptions import CalendarServiceError, SyncTokenExpiredError
from app.models.calendar import AppointmentStatus, Calendar, IntegrationStatus, ProviderEvent, SyncResult
from app.services.conflict_detector import ConflictDetector
from app.services.sync_state import SyncTokenCache
from app.storage.base import AppointmentStore, CalendarStore
from app.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class IncrementalSyncEngine:
    """Applies provider-side event changes for one calendar at a time"""

    def __init__(
        self,
        provider: CalendarProviderClient,
        calendar_store: CalendarStore,
        appointment_store: AppointmentStore,
        conflict_detector: ConflictDetector,
        token_cache: SyncTokenCache,
        *,
        lookback_days: int = config.SYNC_LOOKBACK_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.calendars = calendar_store
        self.appointments = appointment_store
        self.conflict_detector = conflict_detector
        self.token_cache = token_cache
        self.lookback_days = lookback_days
        self._clock = clock

    async def fetch_changes(self, calendar: Calendar) -> Tuple[List[ProviderEvent], Optional[str]]:
        """
        List changed events for the calendar.

        Returns:
            (events, next continuation token)
        """
        token = self.token_cache.get(calendar.id) or calendar.sync_token

        if token:
            try:
                page = await self.provider.list_events(calendar.provider_calendar_id, sync_token=token)
                return page.events, page.next_sync_token
            except SyncTokenExpiredError:
                logger.info(f"Sync token expired for calendar {calendar.id}, falling back to full sync")
                self.token_cache.discard(calendar.id)
                await self.calendars.update_sync_token(calendar.id, None)
                calendar.sync_token = None

        time_min = self._clock() - timedelta(days=self.lookback_days)
        page = await self.provider.list_events(calendar.provider_calendar_id, time_min=time_min)
        return page.events, page.next_sync_token

    async def sync(self, calendar: Calendar) -> SyncResult:
        """
        Run one incremental sync pass: apply changes, detect conflicts, advance the token.

        Provider failures while listing are reported in the result and leave the
        stored token untouched.
        """
        result = SyncResult(calendar_id=calendar.id)

        try:
            events, next_token = await self.fetch_changes(calendar)
        except CalendarServiceError as e:
            result.errors.append(f"Failed to list events: {e.message}")
            if e.retryable:
                logger.warning(f"Transient failure listing events for calendar {calendar.id}, will retry later: {e}")
            else:
                logger.error(f"Listing events failed for calendar {calendar.id}, marking calendar as error: {e}")
                await self.calendars.update(calendar.id, {"integration_status": IntegrationStatus.ERROR.value})
            return result

        for event in events:
            try:
                await self.apply_event(event)
                result.events_processed += 1
            except Exception as e:
                logger.error(f"Failed to process event {event.id} for calendar {calendar.id}: {e}")
                result.errors.append(f"Event {event.id}: {e}")

        conflicts = await self.conflict_detector.detect_safely(calendar)
        if conflicts:
            result.conflicts = len(conflicts)
            await self.conflict_detector.flag_conflicts(conflicts)

        if next_token:
            self.token_cache.set(calendar.id, next_token)
            if next_token != calendar.sync_token:
                await self.calendars.update_sync_token(calendar.id, next_token)
                calendar.sync_token = next_token

        logger.info(
            f"Synced calendar {calendar.id}: {result.events_processed} events, "
            f"{result.conflicts} conflicts, {len(result.errors)} errors"
        )
        return result

    async def apply_event(self, event: ProviderEvent) -> None:
        """Reflect one provider event onto the appointment it is linked to, if any."""
        if not event.appointment_id:
            return

        appointment = await self.appointments.get(event.appointment_id)
        if appointment is None:
            logger.debug(f"Event {event.id} references unknown appointment {event.appointment_id}")
            return

        if appointment.provider_event_id != event.id:
            await self.appointments.set_provider_event(appointment.id, event.id)

        if event.is_cancelled:
            if appointment.is_active:
                await self.appointments.update_status(
                    appointment.id, AppointmentStatus.CANCELLED, "Cancelled in provider calendar"
                )
                logger.info(f"Appointment {appointment.id} cancelled from provider calendar")
            return

        if event.start and event.end and (event.start != appointment.start_time or event.end != appointment.end_time):
            await self.appointments.update_times(appointment.id, event.start, event.end)
            logger.info(f"Appointment {appointment.id} moved in provider calendar to {event.start.isoformat()}")
