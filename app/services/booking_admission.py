"""
Booking admission control

Decides whether a proposed appointment may be created: validates the timing,
checks the practitioner's existing appointments for overlap, and creates the
appointment under an idempotency key so retried requests never double-book.

Any failure to determine availability rejects the booking (fail closed), and
the result always says whether the slot was taken or simply could not be checked.
"""

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from app import config
from app.exceptions import DuplicateIdempotencyKeyError
from app.i18n import format_appointment_time, get_message, session_label
from app.models.calendar import Appointment, AppointmentStatus
from app.storage.base import AppointmentStore
from app.utils.timezone_utils import DEFAULT_TIMEZONE, ensure_utc, local_to_utc, to_iso, to_local, utc_now

logger = logging.getLogger(__name__)


class AdmissionReason(str, Enum):
    INVALID_TIMING = "invalid_timing"
    CONFLICT = "conflict"
    IDEMPOTENCY_MISMATCH = "idempotency_mismatch"
    UNAVAILABLE = "unavailable"


@dataclass
class BookingRequest:
    practitioner_id: str
    start_time: datetime
    end_time: datetime
    client_id: Optional[str] = None
    session_type: str = "therapy"
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        self.start_time = ensure_utc(self.start_time)
        self.end_time = ensure_utc(self.end_time)


@dataclass
class AlternativeSlot:
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"start_time": to_iso(self.start_time), "end_time": to_iso(self.end_time)}


@dataclass
class ConflictCheck:
    has_conflict: bool
    conflicting: Optional[Appointment] = None
    message: Optional[str] = None
    check_failed: bool = False


@dataclass
class AdmissionResult:
    admitted: bool
    reason: Optional[AdmissionReason] = None
    message: Optional[str] = None
    appointment_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    duplicate: bool = False
    conflicting_appointment_id: Optional[str] = None
    alternatives: List[AlternativeSlot] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "admitted": self.admitted,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "appointment_id": self.appointment_id,
            "idempotency_key": self.idempotency_key,
            "duplicate": self.duplicate,
            "conflicting_appointment_id": self.conflicting_appointment_id,
            "alternatives": [slot.to_dict() for slot in self.alternatives],
        }


@dataclass
class SlotSearchPolicy:
    """Where to look for alternative slots: on-the-hour candidates in practice-local time."""
    days: int = config.ALTERNATIVE_SLOT_DAYS
    first_hour: int = config.ALTERNATIVE_SLOT_FIRST_HOUR
    last_hour: int = config.ALTERNATIVE_SLOT_LAST_HOUR
    step_minutes: int = config.ALTERNATIVE_SLOT_STEP_MINUTES
    max_suggestions: int = config.ALTERNATIVE_SLOT_MAX_SUGGESTIONS
    default_duration_minutes: int = config.DEFAULT_SESSION_MINUTES
    timezone: str = DEFAULT_TIMEZONE

    def candidate_starts(self, around: datetime) -> List[datetime]:
        """Candidate start instants from the day of `around` onwards, in order."""
        local_day = to_local(around, self.timezone).replace(tzinfo=None, hour=0, minute=0, second=0, microsecond=0)
        starts = []
        for day_offset in range(self.days):
            day = local_day + timedelta(days=day_offset)
            minute = self.first_hour * 60
            while minute <= self.last_hour * 60:
                starts.append(local_to_utc(day + timedelta(minutes=minute), self.timezone))
                minute += self.step_minutes
        return starts


def overlaps_existing(existing: Appointment, start: datetime, end: datetime) -> bool:
    """
    Whether an existing appointment collides with [start, end).

    Any of: it starts inside the new slot, ends inside it, encloses it,
    or is enclosed by it.
    """
    starts_inside = start <= existing.start_time < end
    ends_inside = start < existing.end_time <= end
    encloses = existing.start_time <= start and existing.end_time >= end
    enclosed = existing.start_time >= start and existing.end_time <= end
    return starts_inside or ends_inside or encloses or enclosed


class BookingAdmissionController:
    """Admits or rejects booking attempts against the appointment store"""

    def __init__(
        self,
        appointment_store: AppointmentStore,
        *,
        slot_policy: Optional[SlotSearchPolicy] = None,
        language: str = config.BOOKING_LANGUAGE,
        max_advance_days: int = config.BOOKING_MAX_ADVANCE_DAYS,
        min_duration_minutes: int = config.BOOKING_MIN_DURATION_MINUTES,
        max_duration_minutes: int = config.BOOKING_MAX_DURATION_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.appointments = appointment_store
        self.slot_policy = slot_policy or SlotSearchPolicy()
        self.language = language
        self.max_advance = timedelta(days=max_advance_days)
        self.min_duration = timedelta(minutes=min_duration_minutes)
        self.max_duration = timedelta(minutes=max_duration_minutes)
        self._clock = clock
        self._practitioner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @staticmethod
    def generate_idempotency_key(practitioner_id: str, start_time: datetime, client_id: Optional[str] = None) -> str:
        """booking_{practitioner}_{start epoch ms}_{client or guest}_{random}"""
        epoch_ms = int(ensure_utc(start_time).timestamp() * 1000)
        return f"booking_{practitioner_id}_{epoch_ms}_{client_id or 'guest'}_{uuid.uuid4().hex[:8]}"

    async def validate_timing(self, start_time: datetime, end_time: datetime) -> Optional[str]:
        """Return a localized error message, or None when the timing is acceptable."""
        now = self._clock()
        start_time = ensure_utc(start_time)
        end_time = ensure_utc(end_time)

        if start_time <= now:
            return await get_message('start_in_past', self.language)
        if start_time > now + self.max_advance:
            return await get_message('start_too_far', self.language)
        if end_time <= start_time:
            return await get_message('end_before_start', self.language)

        duration = end_time - start_time
        if duration < self.min_duration:
            return await get_message(
                'duration_too_short', self.language, minutes=int(self.min_duration.total_seconds() // 60)
            )
        if duration > self.max_duration:
            return await get_message(
                'duration_too_long', self.language, minutes=int(self.max_duration.total_seconds() // 60)
            )
        return None

    def _lock_for(self, practitioner_id: str) -> asyncio.Lock:
        lock = self._practitioner_locks.get(practitioner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._practitioner_locks[practitioner_id] = lock
        return lock

    async def _conflict_message(self, existing: Appointment) -> str:
        return await get_message(
            'slot_unavailable',
            self.language,
            session=session_label(existing.session_type, self.language),
            time=format_appointment_time(existing.start_time, self.language, self.slot_policy.timezone),
        )

    async def check_conflict(
        self,
        practitioner_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> ConflictCheck:
        """
        Check a slot against the practitioner's active appointments.

        A store failure is reported as a conflict with check_failed=True.
        """
        start_time = ensure_utc(start_time)
        end_time = ensure_utc(end_time)
        try:
            existing = await self.appointments.list_active_for_practitioner(practitioner_id, start_time, end_time)
        except Exception as e:
            logger.error(f"Availability check failed for practitioner {practitioner_id}: {e}")
            return ConflictCheck(
                has_conflict=True,
                check_failed=True,
                message=await get_message('availability_check_failed', self.language),
            )

        for appointment in existing:
            if appointment.id == exclude_appointment_id or not appointment.is_active:
                continue
            if overlaps_existing(appointment, start_time, end_time):
                return ConflictCheck(
                    has_conflict=True,
                    conflicting=appointment,
                    message=await self._conflict_message(appointment),
                )
        return ConflictCheck(has_conflict=False)

    async def _replay(self, request: BookingRequest, key: str, existing: Appointment) -> AdmissionResult:
        same_booking = (
            existing.practitioner_id == request.practitioner_id
            and existing.client_id == request.client_id
            and existing.start_time == request.start_time
            and existing.end_time == request.end_time
        )
        if same_booking:
            logger.info(f"Idempotent replay of booking {key} -> appointment {existing.id}")
            return AdmissionResult(
                admitted=True, appointment_id=existing.id, idempotency_key=key, duplicate=True
            )
        return AdmissionResult(
            admitted=False,
            reason=AdmissionReason.IDEMPOTENCY_MISMATCH,
            message=await get_message('idempotency_mismatch', self.language),
            idempotency_key=key,
        )

    async def _unavailable(self, key: Optional[str]) -> AdmissionResult:
        return AdmissionResult(
            admitted=False,
            reason=AdmissionReason.UNAVAILABLE,
            message=await get_message('availability_check_failed', self.language),
            idempotency_key=key,
        )

    async def admit(self, request: BookingRequest, *, include_alternatives: bool = False) -> AdmissionResult:
        """
        Validate, check and (if free) create the appointment.

        The same idempotency key presented again for the same practitioner, client
        and slot returns the original appointment instead of creating a second one.
        """
        timing_error = await self.validate_timing(request.start_time, request.end_time)
        if timing_error:
            return AdmissionResult(admitted=False, reason=AdmissionReason.INVALID_TIMING, message=timing_error)

        key = request.idempotency_key
        if key:
            try:
                existing = await self.appointments.get_by_idempotency_key(key)
            except Exception as e:
                logger.error(f"Idempotency lookup failed for {key}: {e}")
                return await self._unavailable(key)
            if existing is not None:
                return await self._replay(request, key, existing)
        else:
            key = self.generate_idempotency_key(request.practitioner_id, request.start_time, request.client_id)

        async with self._lock_for(request.practitioner_id):
            check = await self.check_conflict(request.practitioner_id, request.start_time, request.end_time)
            if check.check_failed:
                return await self._unavailable(key)

            if check.has_conflict:
                logger.info(
                    f"Rejected booking for practitioner {request.practitioner_id} at "
                    f"{request.start_time.isoformat()}: overlaps appointment {check.conflicting.id}"
                )
                result = AdmissionResult(
                    admitted=False,
                    reason=AdmissionReason.CONFLICT,
                    message=check.message,
                    idempotency_key=key,
                    conflicting_appointment_id=check.conflicting.id,
                )
                if include_alternatives:
                    duration = int((request.end_time - request.start_time).total_seconds() // 60)
                    result.alternatives = await self.suggest_alternatives(
                        request.practitioner_id, request.start_time, duration
                    )
                return result

            appointment = Appointment(
                id=str(uuid.uuid4()),
                practitioner_id=request.practitioner_id,
                start_time=request.start_time,
                end_time=request.end_time,
                status=AppointmentStatus.SCHEDULED,
                client_id=request.client_id,
                session_type=request.session_type,
                idempotency_key=key,
                notes=request.notes,
            )
            try:
                created = await self.appointments.create(appointment)
            except DuplicateIdempotencyKeyError:
                try:
                    winner = await self.appointments.get_by_idempotency_key(key)
                except Exception as e:
                    logger.error(f"Failed to re-read booking {key} after duplicate insert: {e}")
                    return await self._unavailable(key)
                if winner is None:
                    return await self._unavailable(key)
                return await self._replay(request, key, winner)
            except Exception as e:
                logger.error(f"Failed to create appointment for practitioner {request.practitioner_id}: {e}")
                return await self._unavailable(key)

        logger.info(f"Admitted booking {key} as appointment {created.id}")
        return AdmissionResult(admitted=True, appointment_id=created.id, idempotency_key=key)

    async def suggest_alternatives(
        self,
        practitioner_id: str,
        original_start: datetime,
        duration_minutes: Optional[int] = None,
    ) -> List[AlternativeSlot]:
        """
        Free slots near the requested one, per the slot search policy.

        Returns an empty list when availability cannot be read.
        """
        policy = self.slot_policy
        duration = timedelta(minutes=duration_minutes or policy.default_duration_minutes)
        original_start = ensure_utc(original_start)
        now = self._clock()

        candidates = policy.candidate_starts(original_start)
        if not candidates:
            return []

        try:
            existing = await self.appointments.list_active_for_practitioner(
                practitioner_id, candidates[0], candidates[-1] + duration
            )
        except Exception as e:
            logger.error(f"Could not load appointments for alternatives ({practitioner_id}): {e}")
            return []

        suggestions: List[AlternativeSlot] = []
        for start in candidates:
            if abs((start - original_start).total_seconds()) < 60 or start <= now:
                continue
            end = start + duration
            if any(a.is_active and overlaps_existing(a, start, end) for a in existing):
                continue
            suggestions.append(AlternativeSlot(start_time=start, end_time=end))
            if len(suggestions) >= policy.max_suggestions:
                break
        return suggestions
