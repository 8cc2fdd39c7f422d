"""Shared schemas package."""

from app.schemas.calendar import (
    AvailabilitySlot,
    BatchAvailabilityRequest,
    BatchSetupRequest,
    BookingAdmitRequest,
    BookingCheckRequest,
    CheckAvailabilityRequest,
    CreateCalendarRequest,
    EventRequest,
    EventUpdate,
)
from app.schemas.responses import (
    ErrorResponse,
    HealthResponse,
    ResponseMetadata,
    success_response,
    error_response,
)

__all__ = [
    # Request schemas
    "AvailabilitySlot",
    "BatchAvailabilityRequest",
    "BatchSetupRequest",
    "BookingAdmitRequest",
    "BookingCheckRequest",
    "CheckAvailabilityRequest",
    "CreateCalendarRequest",
    "EventRequest",
    "EventUpdate",
    # Response schemas
    "ErrorResponse",
    "HealthResponse",
    "ResponseMetadata",
    # Response helpers
    "success_response",
    "error_response",
]
