"""
Service wiring.

One CalendarServices container is built at startup and kept on app.state;
routes reach it through the get_services dependency. Tests build their own
container around fakes and hand it to create_app().
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from app import config
from app.calendar.base import CalendarProviderClient
from app.calendar.google_client import GoogleCalendarClient
from app.services.availability_service import CalendarAvailabilityService
from app.services.booking_admission import BookingAdmissionController
from app.services.calendar_channel_manager import CalendarChannelManager
from app.services.calendar_event_service import CalendarEventService
from app.services.calendar_provisioning import CalendarProvisioningWorkflow
from app.services.calendar_sync_engine import IncrementalSyncEngine
from app.services.calendar_webhook_handler import CalendarWebhookHandler
from app.services.conflict_detector import ConflictDetector
from app.services.email_service import EmailService
from app.services.sync_state import CalendarLockRegistry, SyncTokenCache
from app.storage.base import AppointmentStore, CalendarStore, PractitionerStore
from app.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class CalendarServices:
    provider: CalendarProviderClient
    calendar_store: CalendarStore
    appointment_store: AppointmentStore
    practitioner_store: PractitionerStore
    webhook_handler: CalendarWebhookHandler
    channel_manager: CalendarChannelManager
    admission: BookingAdmissionController
    provisioning: CalendarProvisioningWorkflow
    availability: CalendarAvailabilityService
    events: CalendarEventService


def build_services(
    *,
    calendar_store: Optional[CalendarStore] = None,
    appointment_store: Optional[AppointmentStore] = None,
    practitioner_store: Optional[PractitionerStore] = None,
    provider: Optional[CalendarProviderClient] = None,
    email_service: Optional[EmailService] = None,
    clock: Callable[[], datetime] = utc_now,
) -> CalendarServices:
    """
    Wire every calendar component around one provider client and one set of stores.

    Stores default to the Supabase implementations and the provider to the
    Google client; both are created lazily so importing this module never
    touches the network.
    """
    if calendar_store is None or appointment_store is None or practitioner_store is None:
        from app.database import get_calendar_client
        from app.storage.supabase_store import (
            SupabaseAppointmentStore,
            SupabaseCalendarStore,
            SupabasePractitionerStore,
        )
        client = get_calendar_client()
        calendar_store = calendar_store or SupabaseCalendarStore(client)
        appointment_store = appointment_store or SupabaseAppointmentStore(client)
        practitioner_store = practitioner_store or SupabasePractitionerStore(client)

    provider = provider or GoogleCalendarClient()
    email_service = email_service or EmailService()

    locks = CalendarLockRegistry(max_hold_seconds=config.WEBHOOK_LOCK_MAX_HOLD_SECONDS)
    token_cache = SyncTokenCache(
        ttl_seconds=config.SYNC_TOKEN_CACHE_TTL_SECONDS,
        max_entries=config.SYNC_TOKEN_CACHE_MAX_ENTRIES,
    )

    detector = ConflictDetector(provider, appointment_store, clock=clock)
    sync_engine = IncrementalSyncEngine(
        provider, calendar_store, appointment_store, detector, token_cache, clock=clock
    )
    webhook_handler = CalendarWebhookHandler(calendar_store, sync_engine, locks, token_cache)
    channel_manager = CalendarChannelManager(provider, calendar_store, clock=clock)

    provisioning = CalendarProvisioningWorkflow(
        provider,
        calendar_store,
        practitioner_store,
        email_service=email_service,
        channel_manager=channel_manager,
        on_calendar_removed=webhook_handler.forget_calendar,
        clock=clock,
    )

    logger.info("Calendar services wired")
    return CalendarServices(
        provider=provider,
        calendar_store=calendar_store,
        appointment_store=appointment_store,
        practitioner_store=practitioner_store,
        webhook_handler=webhook_handler,
        channel_manager=channel_manager,
        admission=BookingAdmissionController(appointment_store, clock=clock),
        provisioning=provisioning,
        availability=CalendarAvailabilityService(provider, calendar_store),
        events=CalendarEventService(provider, appointment_store),
    )


def get_services(request: Request) -> CalendarServices:
    return request.app.state.services
