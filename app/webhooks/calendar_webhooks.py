"""
Calendar Webhook Handlers
Receive Google Calendar push notifications and run an incremental sync

The endpoint is public: authenticity rests on the channel id (and channel token,
when one was issued) matching a stored subscription.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..dependencies import CalendarServices, get_services
from ..exceptions import InvalidWebhookNotificationError
from ..models.calendar import WebhookNotification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/calendar", tags=["Calendar Webhooks"])


@router.post("/google")
async def google_calendar_webhook(request: Request, services: CalendarServices = Depends(get_services)):
    """
    Handle Google Calendar push notifications

    States:
    - sync: Channel verification after watch(); processed like any change
    - exists: Resource changed (incremental sync)
    - not_exists: Resource deleted (incremental sync reports cancellations)

    Every handled outcome, including skipped and unknown channels, answers 200
    so the provider does not retry.
    """
    try:
        notification = WebhookNotification.from_headers(request.headers)
    except InvalidWebhookNotificationError as e:
        logger.warning(f"Rejected calendar notification: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    try:
        result = await services.webhook_handler.process_webhook(notification)
    except Exception as e:
        logger.error(f"Error processing calendar webhook for channel {notification.channel_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error processing notification")

    return {"success": True, "result": result.to_dict()}

