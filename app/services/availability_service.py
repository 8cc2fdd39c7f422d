"""
Provider-side availability checks for practitioner calendars.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.calendar.base import CalendarProviderClient
from app.models.calendar import BusyInterval
from app.services.conflict_detector import intervals_overlap
from app.storage.base import CalendarStore
from app.utils.timezone_utils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityResult:
    available: bool
    conflicts: List[BusyInterval] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "error": self.error,
        }


class CalendarAvailabilityService:
    """Checks slots against provider busy time, one calendar or many at once"""

    def __init__(self, provider: CalendarProviderClient, calendar_store: CalendarStore, batch_size: int = 5):
        self.provider = provider
        self.calendars = calendar_store
        self.batch_size = batch_size

    async def list_busy(self, provider_calendar_id: str, start: datetime, end: datetime) -> List[BusyInterval]:
        return await self.provider.query_busy(provider_calendar_id, ensure_utc(start), ensure_utc(end))

    async def check_availability(self, provider_calendar_id: str, start: datetime, end: datetime) -> AvailabilityResult:
        """
        Whether [start, end) is free on the provider calendar.

        Provider failures report the slot as unavailable with the error attached.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        try:
            busy = await self.provider.query_busy(provider_calendar_id, start, end)
        except Exception as e:
            logger.error(f"Availability check failed for calendar {provider_calendar_id}: {e}")
            return AvailabilityResult(available=False, error=str(e))

        conflicts = [b for b in busy if intervals_overlap(start, end, b.start, b.end)]
        return AvailabilityResult(available=not conflicts, conflicts=conflicts)

    async def check_practitioner(self, practitioner_id: str, start: datetime, end: datetime) -> AvailabilityResult:
        calendar = await self.calendars.get_by_practitioner(practitioner_id)
        if calendar is None or not calendar.is_active or not calendar.provider_calendar_id:
            return AvailabilityResult(available=False, error="No active calendar for practitioner")
        return await self.check_availability(calendar.provider_calendar_id, start, end)

    async def batch_check_availability(self, requests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Check many practitioner slots, `batch_size` at a time.

        Each request holds practitioner_id, start_time and end_time; results keep the input order.
        """
        results: List[Dict[str, Any]] = []
        for offset in range(0, len(requests), self.batch_size):
            chunk = requests[offset:offset + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.check_practitioner(r["practitioner_id"], r["start_time"], r["end_time"]) for r in chunk),
                return_exceptions=True
            )
            for request, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    outcome = AvailabilityResult(available=False, error=str(outcome))
                results.append({"practitioner_id": request["practitioner_id"], **outcome.to_dict()})
        return results
