"""Request bodies for the calendar, booking and provisioning routes."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class CreateCalendarRequest(BaseModel):
    """Provision a calendar for one practitioner."""
    practitioner_id: str = Field(..., description="Practitioner user id")
    practitioner_email: Optional[str] = Field(None, description="Address to share the calendar with")


class CheckAvailabilityRequest(BaseModel):
    """Slot check against provider busy time."""
    calendar_id: Optional[str] = Field(None, description="Provider calendar id")
    practitioner_id: Optional[str] = Field(None, description="Resolve the calendar from the practitioner")
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _target_and_range(self):
        if not self.calendar_id and not self.practitioner_id:
            raise ValueError("calendar_id or practitioner_id is required")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilitySlot(BaseModel):
    practitioner_id: str
    start_time: datetime
    end_time: datetime


class BatchAvailabilityRequest(BaseModel):
    slots: List[AvailabilitySlot] = Field(..., min_length=1, max_length=100)


class EventRequest(BaseModel):
    """Create a provider event, optionally linked to an appointment."""
    calendar_id: str = Field(..., description="Provider calendar id")
    summary: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    appointment_id: Optional[str] = None
    practitioner_id: Optional[str] = None

    def to_event_body(self, time_zone: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "summary": self.summary,
            "start": {"dateTime": self.start_time.isoformat(), "timeZone": time_zone},
            "end": {"dateTime": self.end_time.isoformat(), "timeZone": time_zone},
        }
        if self.description:
            body["description"] = self.description
        if self.location:
            body["location"] = self.location
        return body


class EventUpdate(BaseModel):
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_patch(self, time_zone: str) -> Dict[str, Any]:
        patch: Dict[str, Any] = {}
        for name in ("summary", "description", "location"):
            value = getattr(self, name)
            if value is not None:
                patch[name] = value
        if self.start_time:
            patch["start"] = {"dateTime": self.start_time.isoformat(), "timeZone": time_zone}
        if self.end_time:
            patch["end"] = {"dateTime": self.end_time.isoformat(), "timeZone": time_zone}
        return patch


class BookingAdmitRequest(BaseModel):
    """Book a session after timing, idempotency and overlap checks."""
    practitioner_id: str
    start_time: datetime
    end_time: datetime
    client_id: Optional[str] = None
    session_type: str = Field("therapy", description="Session kind shown to the practitioner")
    idempotency_key: Optional[str] = Field(None, description="Client-supplied key; generated when absent")
    include_alternatives: bool = Field(False, description="Suggest open slots when the request conflicts")


class BookingCheckRequest(BaseModel):
    practitioner_id: str
    start_time: datetime
    end_time: datetime
    exclude_appointment_id: Optional[str] = None


class BatchSetupRequest(BaseModel):
    """Provision calendars for the listed practitioners, or every active one."""
    practitioner_ids: Optional[List[str]] = None
