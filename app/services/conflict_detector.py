"""
Conflict detection between local appointments and provider busy time.

A conflict is an active appointment overlapping a busy interval that is not
the appointment's own provider event (i.e. something was booked on the
calendar outside this system).
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List

from app import config
from app.calendar.base import CalendarProviderClient
from app.models.calendar import (
    Appointment,
    AppointmentStatus,
    BusyInterval,
    Calendar,
    ConflictRecord,
)
from app.storage.base import AppointmentStore
from app.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap; intervals that merely touch do not overlap."""
    return a_start < b_end and b_start < a_end


def is_own_event(appointment: Appointment, interval: BusyInterval) -> bool:
    if appointment.provider_event_id and interval.event_id == appointment.provider_event_id:
        return True
    return interval.appointment_id is not None and interval.appointment_id == appointment.id


class ConflictDetector:
    """Compares active appointments with provider busy intervals over a forward window"""

    def __init__(
        self,
        provider: CalendarProviderClient,
        appointment_store: AppointmentStore,
        *,
        window_days: int = config.CONFLICT_WINDOW_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.appointments = appointment_store
        self.window_days = window_days
        self._clock = clock

    async def detect(self, calendar: Calendar) -> List[ConflictRecord]:
        """
        Find conflicts for one calendar over [now, now + window).

        Raises:
            CalendarServiceError: busy intervals could not be fetched
        """
        now = self._clock()
        window_end = now + timedelta(days=self.window_days)

        busy = await self.provider.query_busy(calendar.provider_calendar_id, now, window_end)
        appointments = await self.appointments.list_active_for_practitioner(
            calendar.practitioner_id, now, window_end
        )

        conflicts = []
        for appointment in appointments:
            for interval in busy:
                if is_own_event(appointment, interval):
                    continue
                if intervals_overlap(appointment.start_time, appointment.end_time, interval.start, interval.end):
                    conflicts.append(ConflictRecord(
                        appointment_id=appointment.id,
                        calendar_id=calendar.id,
                        interval=interval,
                        detected_at=now,
                    ))
                    break

        if conflicts:
            logger.warning(f"Detected {len(conflicts)} conflicts for calendar {calendar.id}")
        return conflicts

    async def detect_safely(self, calendar: Calendar) -> List[ConflictRecord]:
        """Fail-open variant for the sync path: a provider failure counts as no conflicts."""
        try:
            return await self.detect(calendar)
        except Exception as e:
            logger.error(f"Conflict detection failed for calendar {calendar.id}, assuming none: {e}")
            return []

    async def flag_conflicts(self, conflicts: List[ConflictRecord]) -> int:
        """
        Mark conflicting appointments as needing rescheduling.

        Returns the number of appointments updated; per-row failures are logged and skipped.
        """
        flagged = 0
        for conflict in conflicts:
            busy = conflict.interval
            note = (
                f"Calendar conflict detected: {busy.summary or 'Busy time'} "
                f"({busy.start.isoformat()} - {busy.end.isoformat()})"
            )
            try:
                await self.appointments.update_status(conflict.appointment_id, AppointmentStatus.RESCHEDULED, note)
                flagged += 1
            except Exception as e:
                logger.error(f"Failed to flag appointment {conflict.appointment_id}: {e}")
        return flagged
