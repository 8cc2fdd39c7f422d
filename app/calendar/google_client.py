"""
Google Calendar provider client

Wraps the blocking google-api-python-client in worker threads with a bounded
timeout, translates HTTP errors into the calendar error taxonomy and retries
transient failures with exponential backoff.

Docs: https://developers.google.com/calendar/api/v3/reference
"""

import asyncio
import json
import logging
import secrets
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app import config
from app.calendar.base import CalendarProviderClient
from app.exceptions import (
    CalendarServiceError,
    ProviderConfigurationError,
    QuotaExceededError,
    ResourceNotFoundError,
    SyncTokenExpiredError,
)
from app.models.calendar import BusyInterval, EventPage, ProviderEvent, WebhookChannel
from app.resilience import Sleep, is_retryable_error, retry_async
from app.utils.timezone_utils import parse_datetime, to_iso, utc_now

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/calendar']

# 403 reasons Google uses for throttling rather than permission problems
THROTTLE_REASONS = ('ratelimitexceeded', 'userratelimitexceeded', 'quotaexceeded', 'rate limit')


@dataclass
class ProviderMetrics:
    api_calls: int = 0
    errors: int = 0
    calendars_created: int = 0
    events_created: int = 0
    channels_created: int = 0
    channels_stopped: int = 0
    total_response_ms: float = 0.0

    @property
    def average_response_ms(self) -> float:
        if not self.api_calls:
            return 0.0
        return self.total_response_ms / self.api_calls


def translate_http_error(error: HttpError, operation: str) -> CalendarServiceError:
    """Map a provider HTTP error onto the calendar error taxonomy."""
    status = int(getattr(error.resp, 'status', 0) or 0)
    detail = str(error)

    if status == 404:
        return ResourceNotFoundError(f"{operation}: resource not found")
    if status == 410:
        return SyncTokenExpiredError()
    if status == 429 or (status == 403 and any(r in detail.lower() for r in THROTTLE_REASONS)):
        return QuotaExceededError(f"{operation}: rate limit exceeded")
    if status >= 500:
        return CalendarServiceError(
            f"{operation}: service unavailable ({status})", code="PROVIDER_UNAVAILABLE", retryable=True
        )
    return CalendarServiceError(f"{operation} failed ({status}): {detail}", code=f"HTTP_{status}", retryable=False)


def _parse_event_time(value: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """Parse an event start/end; all-day events (date only) start at midnight UTC."""
    if not value:
        return None
    if value.get('dateTime'):
        return parse_datetime(value['dateTime'])
    if value.get('date'):
        return datetime.fromisoformat(value['date']).replace(tzinfo=timezone.utc)
    return None


def parse_provider_event(item: Dict[str, Any]) -> ProviderEvent:
    private = (item.get('extendedProperties') or {}).get('private') or {}
    return ProviderEvent(
        id=item['id'],
        status=item.get('status', 'confirmed'),
        start=_parse_event_time(item.get('start')),
        end=_parse_event_time(item.get('end')),
        appointment_id=private.get('appointmentId'),
        summary=item.get('summary'),
    )


def build_calendar_service(
    service_account_key: Optional[str] = None,
    subject: Optional[str] = None,
):
    """
    Build a Calendar v3 service from service-account JSON.

    Raises:
        ProviderConfigurationError: no or invalid credentials configured
    """
    raw = service_account_key or config.GOOGLE_SERVICE_ACCOUNT_KEY
    if not raw:
        raise ProviderConfigurationError("GOOGLE_SERVICE_ACCOUNT_KEY is not configured")

    try:
        info = json.loads(raw)
        creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    except (ValueError, KeyError) as e:
        raise ProviderConfigurationError(f"Invalid service account key: {e}") from e

    subject = subject or config.GOOGLE_SERVICE_ACCOUNT_SUBJECT
    if subject:
        creds = creds.with_subject(subject)

    return build('calendar', 'v3', credentials=creds, cache_discovery=False)


class GoogleCalendarClient(CalendarProviderClient):
    """Google Calendar v3 implementation of the provider client"""

    def __init__(
        self,
        service=None,
        *,
        webhook_url: Optional[str] = None,
        timeout: float = config.PROVIDER_TIMEOUT_SECONDS,
        max_attempts: int = config.PROVIDER_MAX_RETRIES,
        retry_backoff: float = config.PROVIDER_RETRY_BACKOFF_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Args:
            service: Pre-built googleapiclient resource (built from config when omitted)
            webhook_url: Public URL receiving push notifications
            timeout: Per-call timeout in seconds
            max_attempts: Attempts per call for transient failures
            retry_backoff: Delay after the first transient failure
            sleep: Awaitable sleep used between attempts
        """
        self._service = service
        self.webhook_url = webhook_url if webhook_url is not None else config.CALENDAR_WEBHOOK_URL
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self.metrics = ProviderMetrics()

    @property
    def service(self):
        if self._service is None:
            self._service = build_calendar_service()
        return self._service

    async def _execute(self, operation: str, make_request: Callable[[], Any]) -> Any:
        """
        Execute one API request in a worker thread with timeout, translation and retry.

        Expired sync tokens are surfaced immediately so the caller can fall back.
        """
        async def attempt():
            started = time.monotonic()
            self.metrics.api_calls += 1
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(lambda: make_request().execute()),
                    timeout=self.timeout
                )
            except HttpError as e:
                self.metrics.errors += 1
                raise translate_http_error(e, operation) from e
            except asyncio.TimeoutError as e:
                self.metrics.errors += 1
                raise CalendarServiceError(
                    f"{operation} timed out after {self.timeout}s", code="TIMEOUT", retryable=True
                ) from e
            finally:
                self.metrics.total_response_ms += (time.monotonic() - started) * 1000

        return await retry_async(
            attempt,
            step=operation,
            max_attempts=self.max_attempts,
            base_delay=self.retry_backoff,
            sleep=self._sleep,
            retry_if=lambda e: is_retryable_error(e) and not isinstance(e, SyncTokenExpiredError),
        )

    async def create_calendar(self, summary: str, description: str, time_zone: str) -> str:
        body = {'summary': summary, 'description': description, 'timeZone': time_zone}
        created = await self._execute(
            'calendars.insert',
            lambda: self.service.calendars().insert(body=body)
        )
        self.metrics.calendars_created += 1
        logger.info(f"Created provider calendar {created['id']}")
        return created['id']

    async def calendar_exists(self, calendar_id: str) -> bool:
        try:
            await self._execute('calendars.get', lambda: self.service.calendars().get(calendarId=calendar_id))
            return True
        except ResourceNotFoundError:
            return False

    async def delete_calendar(self, calendar_id: str) -> None:
        try:
            await self._execute('calendars.delete', lambda: self.service.calendars().delete(calendarId=calendar_id))
            logger.info(f"Deleted provider calendar {calendar_id}")
        except ResourceNotFoundError:
            logger.info(f"Provider calendar {calendar_id} already deleted")

    async def ensure_acl(self, calendar_id: str, email: str, role: str = "writer") -> None:
        body = {'role': role, 'scope': {'type': 'user', 'value': email}}
        await self._execute(
            'acl.insert',
            lambda: self.service.acl().insert(calendarId=calendar_id, body=body, sendNotifications=False)
        )

    async def list_events(
        self,
        calendar_id: str,
        sync_token: Optional[str] = None,
        time_min: Optional[datetime] = None,
    ) -> EventPage:
        params: Dict[str, Any] = {'calendarId': calendar_id, 'singleEvents': True, 'maxResults': 250}
        if sync_token:
            params['syncToken'] = sync_token
        else:
            params['showDeleted'] = True
            if time_min is not None:
                params['timeMin'] = to_iso(time_min)

        page = EventPage()
        page_token = None
        while True:
            request_params = dict(params, pageToken=page_token) if page_token else params
            try:
                response = await self._execute(
                    'events.list',
                    lambda: self.service.events().list(**request_params)
                )
            except SyncTokenExpiredError:
                raise SyncTokenExpiredError(calendar_id)

            page.events.extend(parse_provider_event(item) for item in response.get('items', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                page.next_sync_token = response.get('nextSyncToken')
                return page

    async def query_busy(self, calendar_id: str, start: datetime, end: datetime) -> List[BusyInterval]:
        params = {
            'calendarId': calendar_id,
            'timeMin': to_iso(start),
            'timeMax': to_iso(end),
            'singleEvents': True,
            'orderBy': 'startTime',
            'maxResults': 250,
        }
        intervals: List[BusyInterval] = []
        page_token = None
        while True:
            request_params = dict(params, pageToken=page_token) if page_token else params
            response = await self._execute(
                'events.list',
                lambda: self.service.events().list(**request_params)
            )
            for item in response.get('items', []):
                if item.get('status') == 'cancelled' or item.get('transparency') == 'transparent':
                    continue
                event = parse_provider_event(item)
                if event.start is None or event.end is None:
                    continue
                intervals.append(BusyInterval(
                    start=event.start,
                    end=event.end,
                    event_id=event.id,
                    appointment_id=event.appointment_id,
                    summary=event.summary,
                ))
            page_token = response.get('nextPageToken')
            if not page_token:
                return intervals

    async def create_event(
        self,
        calendar_id: str,
        event: Dict[str, Any],
        appointment_id: Optional[str] = None,
        practitioner_id: Optional[str] = None,
    ) -> str:
        body = dict(event)
        private = {}
        if appointment_id:
            private['appointmentId'] = appointment_id
        if practitioner_id:
            private['practitionerId'] = practitioner_id
        if private:
            body['extendedProperties'] = {'private': private}

        created = await self._execute(
            'events.insert',
            lambda: self.service.events().insert(calendarId=calendar_id, body=body, sendUpdates='none')
        )
        self.metrics.events_created += 1
        return created['id']

    async def update_event(self, calendar_id: str, event_id: str, updates: Dict[str, Any]) -> None:
        await self._execute(
            'events.patch',
            lambda: self.service.events().patch(calendarId=calendar_id, eventId=event_id, body=updates)
        )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            await self._execute(
                'events.delete',
                lambda: self.service.events().delete(calendarId=calendar_id, eventId=event_id)
            )
        except ResourceNotFoundError:
            logger.info(f"Event {event_id} already deleted from {calendar_id}")

    async def watch_calendar(self, calendar_id: str) -> WebhookChannel:
        if not self.webhook_url:
            raise ProviderConfigurationError("CALENDAR_WEBHOOK_URL is not configured")

        channel_id = f"cal_{uuid.uuid4().hex}"
        token = secrets.token_urlsafe(24)
        body = {
            'id': channel_id,
            'type': 'web_hook',
            'address': self.webhook_url,
            'token': token,
        }
        response = await self._execute(
            'events.watch',
            lambda: self.service.events().watch(calendarId=calendar_id, body=body)
        )
        self.metrics.channels_created += 1

        expiration = None
        if response.get('expiration'):
            expiration = datetime.fromtimestamp(int(response['expiration']) / 1000, tz=timezone.utc)

        logger.info(f"Opened push channel {channel_id} for calendar {calendar_id} (expires {to_iso(expiration)})")
        return WebhookChannel(
            id=response.get('id', channel_id),
            resource_id=response['resourceId'],
            expiration=expiration,
            token=token,
        )

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        body = {'id': channel_id, 'resourceId': resource_id}
        try:
            await self._execute('channels.stop', lambda: self.service.channels().stop(body=body))
            self.metrics.channels_stopped += 1
        except ResourceNotFoundError:
            logger.info(f"Push channel {channel_id} already stopped")

    async def health_check(self) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            await self._execute('calendarList.list', lambda: self.service.calendarList().list(maxResults=1))
            return {
                'status': 'healthy',
                'response_time_ms': round((time.monotonic() - started) * 1000, 1),
                'checked_at': to_iso(utc_now()),
            }
        except CalendarServiceError as e:
            return {'status': 'unhealthy', 'error': e.message, 'checked_at': to_iso(utc_now())}

    def get_metrics(self) -> Dict[str, Any]:
        metrics = asdict(self.metrics)
        metrics['average_response_ms'] = round(self.metrics.average_response_ms, 1)
        return metrics
