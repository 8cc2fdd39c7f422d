"""
Calendar API
Endpoints for practitioner calendar provisioning, availability, provider events
and webhook channel administration
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import config
from ..dependencies import CalendarServices, get_services
from ..exceptions import CalendarServiceError, ResourceNotFoundError
from ..middleware.auth import ADMIN_ROLES, TokenPayload, require_role, require_self_or_admin
from ..models.calendar import Calendar
from ..schemas.calendar import (
    BatchAvailabilityRequest,
    BatchSetupRequest,
    CheckAvailabilityRequest,
    CreateCalendarRequest,
    EventRequest,
    EventUpdate,
)
from ..schemas.responses import success_response
from ..services.calendar_provisioning import ProvisioningStep
from ..utils.logging_config import mask_email
from ..utils.timezone_utils import to_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["Calendar"])

require_admin = require_role(ADMIN_ROLES)


def _calendar_summary(calendar: Calendar, services: CalendarServices) -> Dict[str, Any]:
    return {
        "id": calendar.id,
        "practitioner_id": calendar.practitioner_id,
        "provider_calendar_id": calendar.provider_calendar_id,
        "integration_status": calendar.integration_status.value,
        "shared_email": mask_email(calendar.shared_email) if calendar.shared_email else None,
        "channel_id": calendar.channel_id,
        "channel_expires_at": to_iso(calendar.channel_expires_at),
        "channel_state": services.channel_manager.channel_state(calendar).value,
        "has_sync_token": bool(calendar.sync_token),
    }


def _provider_error(e: CalendarServiceError) -> HTTPException:
    if isinstance(e, ResourceNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    return HTTPException(status_code=503 if e.retryable else 502, detail=e.message)


async def _provision(services: CalendarServices, practitioner_id: str, email: Optional[str] = None) -> Dict[str, Any]:
    result = await services.provisioning.provision(practitioner_id, email)
    if not result.success:
        if result.retryable:
            status_code = 503
        elif result.step == ProvisioningStep.VALIDATION:
            status_code = 404
        else:
            status_code = 502
        raise HTTPException(status_code=status_code, detail=result.to_dict())
    return success_response(result.to_dict())


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@router.get("/health")
async def calendar_health(services: CalendarServices = Depends(get_services)):
    """Provider reachability, webhook processing and channel health in one view"""
    provider = await services.provider.health_check()
    webhooks = await services.webhook_handler.health_check()
    channels = await services.channel_manager.health_check()

    healthy = (
        provider.get("status") == "healthy"
        and webhooks.get("status") == "healthy"
        and channels.get("healthy", False)
    )
    return {
        "status": "healthy" if healthy else "degraded",
        "provider": provider,
        "webhooks": webhooks,
        "channels": channels,
    }


# ---------------------------------------------------------------------------
# Calendars
# ---------------------------------------------------------------------------

@router.post("/create")
async def create_calendar(
    request: CreateCalendarRequest,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    """Provision (or reconcile) the calendar of one practitioner"""
    logger.info(f"Calendar creation requested for practitioner {request.practitioner_id} by {user.sub}")
    return await _provision(services, request.practitioner_id, request.practitioner_email)


@router.get("/list")
async def list_calendars(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    calendars = await services.calendar_store.list_all()
    return success_response({
        "calendars": [_calendar_summary(c, services) for c in calendars],
        "total": len(calendars),
    })


@router.get("/practitioners/{practitioner_id}")
async def get_practitioner_calendar(
    practitioner_id: str,
    user: TokenPayload = Depends(require_self_or_admin),
    services: CalendarServices = Depends(get_services),
):
    calendar = await services.calendar_store.get_by_practitioner(practitioner_id)
    if calendar is None:
        raise HTTPException(status_code=404, detail=f"No calendar for practitioner {practitioner_id}")
    return success_response(_calendar_summary(calendar, services))


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

@router.post("/check-availability")
async def check_availability(
    request: CheckAvailabilityRequest,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    """
    Check a slot against provider busy time.

    Provider failures report the slot as unavailable with the error attached.
    """
    if request.calendar_id:
        result = await services.availability.check_availability(
            request.calendar_id, request.start_time, request.end_time
        )
    else:
        result = await services.availability.check_practitioner(
            request.practitioner_id, request.start_time, request.end_time
        )
    return success_response(result.to_dict())


@router.post("/batch-availability")
async def batch_availability(
    request: BatchAvailabilityRequest,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    results = await services.availability.batch_check_availability([slot.model_dump() for slot in request.slots])
    return success_response({"results": results})


@router.get("/{calendar_id}/busy")
async def list_busy_times(
    calendar_id: str,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    if end_time <= start_time:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")
    try:
        busy = await services.availability.list_busy(calendar_id, start_time, end_time)
    except CalendarServiceError as e:
        raise _provider_error(e)
    return success_response({"busy": [b.to_dict() for b in busy]})


# ---------------------------------------------------------------------------
# Provider events
# ---------------------------------------------------------------------------

@router.post("/events")
async def create_event(
    request: EventRequest,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    try:
        event_id = await services.events.create_event(
            request.calendar_id,
            request.to_event_body(config.CALENDAR_TIMEZONE),
            appointment_id=request.appointment_id,
            practitioner_id=request.practitioner_id,
        )
    except CalendarServiceError as e:
        raise _provider_error(e)
    return success_response({"event_id": event_id, "calendar_id": request.calendar_id})


@router.put("/events/{calendar_id}/{event_id}")
async def update_event(
    calendar_id: str,
    event_id: str,
    request: EventUpdate,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    patch = request.to_patch(config.CALENDAR_TIMEZONE)
    if not patch:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        await services.events.update_event(calendar_id, event_id, patch)
    except CalendarServiceError as e:
        raise _provider_error(e)
    return success_response({"event_id": event_id, "updated": sorted(patch)})


@router.delete("/events/{calendar_id}/{event_id}")
async def delete_event(
    calendar_id: str,
    event_id: str,
    appointment_id: Optional[str] = None,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    try:
        await services.events.delete_event(calendar_id, event_id, appointment_id=appointment_id)
    except CalendarServiceError as e:
        raise _provider_error(e)
    return success_response({"event_id": event_id, "deleted": True})


# ---------------------------------------------------------------------------
# Webhook channels
# ---------------------------------------------------------------------------

@router.get("/subscriptions")
async def list_subscriptions(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    """Channel state of every calendar plus aggregate channel health"""
    calendars = await services.calendar_store.list_all()
    stats = await services.channel_manager.check_channel_health()
    return success_response({
        "subscriptions": [_calendar_summary(c, services) for c in calendars if c.channel_id],
        "stats": stats.to_dict(),
    })


@router.post("/admin/renew-channels")
async def renew_channels(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    logger.info(f"Manual channel renewal triggered by {user.sub}")
    report = await services.channel_manager.process_channel_renewals()
    return success_response(report.to_dict())


@router.post("/admin/recreate-channels")
async def recreate_channels(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    """Recreate the channel of every active calendar (e.g. after a webhook URL change)"""
    logger.warning(f"Channel recreation for all calendars triggered by {user.sub}")
    report = await services.channel_manager.recreate_all_channels()
    return success_response(report.to_dict())


@router.post("/admin/clear-locks")
async def clear_processing_locks(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    cleared = services.webhook_handler.clear_processing_locks()
    return success_response({"cleared": cleared})


@router.get("/metrics")
async def calendar_metrics(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    return success_response({
        "provider": services.provider.get_metrics(),
        "webhooks": services.webhook_handler.get_processing_status(),
    })


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

@router.post("/practitioners/{practitioner_id}/setup")
async def setup_practitioner_calendar(
    practitioner_id: str,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    return await _provision(services, practitioner_id)


@router.get("/practitioners/{practitioner_id}/status")
async def get_setup_status(
    practitioner_id: str,
    user: TokenPayload = Depends(require_self_or_admin),
    services: CalendarServices = Depends(get_services),
):
    status = await services.provisioning.get_calendar_status(practitioner_id)
    return success_response(status.to_dict())


@router.post("/practitioners/{practitioner_id}/rollback")
async def rollback_practitioner_calendar(
    practitioner_id: str,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    rolled_back = await services.provisioning.rollback_calendar_setup(practitioner_id)
    if not rolled_back:
        raise HTTPException(status_code=404, detail=f"No calendar for practitioner {practitioner_id}")
    return success_response({"practitioner_id": practitioner_id, "rolled_back": True})


@router.post("/admin/batch-setup")
async def batch_setup(
    request: BatchSetupRequest,
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    """Provision every listed (or every active) practitioner with bounded concurrency"""
    logger.info(f"Batch calendar setup triggered by {user.sub}")
    result = await services.provisioning.batch_provision(request.practitioner_ids)
    if result.error:
        raise HTTPException(status_code=503, detail=result.to_dict())
    return success_response(result.to_dict())


@router.get("/admin/onboarding-stats")
async def onboarding_stats(
    user: TokenPayload = Depends(require_admin),
    services: CalendarServices = Depends(get_services),
):
    return success_response(await services.provisioning.get_onboarding_stats())
