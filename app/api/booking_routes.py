"""
Booking API
Admission of new appointments against a practitioner's existing schedule
"""
import logging

from fastapi import APIRouter, Depends

from ..dependencies import CalendarServices, get_services
from ..middleware.auth import TokenPayload, require_auth
from ..schemas.calendar import BookingAdmitRequest, BookingCheckRequest
from ..schemas.responses import success_response
from ..services.booking_admission import BookingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.post("/admit")
async def admit_booking(
    request: BookingAdmitRequest,
    user: TokenPayload = Depends(require_auth),
    services: CalendarServices = Depends(get_services),
):
    """
    Create an appointment if the slot is free.

    Rejections (conflict, invalid timing, idempotency mismatch, availability
    unknown) are answered with 200 and admitted=false; the reason code tells
    the caller whether retrying can help.
    """
    result = await services.admission.admit(
        BookingRequest(
            practitioner_id=request.practitioner_id,
            start_time=request.start_time,
            end_time=request.end_time,
            client_id=request.client_id,
            session_type=request.session_type,
            idempotency_key=request.idempotency_key,
        ),
        include_alternatives=request.include_alternatives,
    )
    if not result.admitted:
        logger.info(f"Booking rejected for practitioner {request.practitioner_id}: {result.reason.value}")
    return success_response(result.to_dict())


@router.post("/check")
async def check_booking_slot(
    request: BookingCheckRequest,
    user: TokenPayload = Depends(require_auth),
    services: CalendarServices = Depends(get_services),
):
    """Dry-run overlap check; nothing is created"""
    check = await services.admission.check_conflict(
        request.practitioner_id,
        request.start_time,
        request.end_time,
        exclude_appointment_id=request.exclude_appointment_id,
    )
    return success_response({
        "available": not check.has_conflict,
        "check_failed": check.check_failed,
        "conflicting_appointment_id": check.conflicting.id if check.conflicting else None,
        "message": check.message,
    })
