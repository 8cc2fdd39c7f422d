"""
Webhook channel lifecycle management

Provider push channels expire after a few days. This manager classifies each
calendar's channel (none / active / expiring / expired / error), renews channels
inside the renewal window and can rebuild every channel from scratch.

Renewal opens the new channel first, swaps the stored reference in one write,
then stops the old channel best-effort; notifications still arriving on the
old channel resolve to no calendar and are ignored.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from app import config
from app.calendar.base import CalendarProviderClient
from app.models.calendar import Calendar, IntegrationStatus, WebhookChannel
from app.storage.base import CalendarStore
from app.utils.timezone_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    ERROR = "error"


@dataclass
class ChannelStats:
    total: int = 0
    active: int = 0
    expiring: int = 0
    expired: int = 0
    error: int = 0
    without_channel: int = 0
    next_renewal_check: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalChannels": self.total,
            "activeChannels": self.active,
            "expiringChannels": self.expiring,
            "expiredChannels": self.expired,
            "errorChannels": self.error,
            "calendarsWithoutChannel": self.without_channel,
            "nextRenewalCheck": to_iso(self.next_renewal_check),
        }


@dataclass
class ChannelOperationResult:
    calendar_id: str
    success: bool
    channel_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calendarId": self.calendar_id,
            "success": self.success,
            "channelId": self.channel_id,
            "expiresAt": to_iso(self.expires_at),
            "error": self.error,
        }


@dataclass
class ChannelBatchReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[ChannelOperationResult] = field(default_factory=list)

    def add(self, outcome: ChannelOperationResult) -> None:
        self.processed += 1
        if outcome.success:
            self.succeeded += 1
        else:
            self.failed += 1
        self.results.append(outcome)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class CalendarChannelManager:
    """Keeps one live push channel per active calendar"""

    def __init__(
        self,
        provider: CalendarProviderClient,
        calendar_store: CalendarStore,
        *,
        renewal_window_hours: int = config.CHANNEL_RENEWAL_WINDOW_HOURS,
        check_interval_hours: int = config.CHANNEL_RENEWAL_INTERVAL_HOURS,
        unhealthy_error_ratio: float = config.CHANNEL_UNHEALTHY_ERROR_RATIO,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.calendars = calendar_store
        self.renewal_window = timedelta(hours=renewal_window_hours)
        self.check_interval = timedelta(hours=check_interval_hours)
        self.unhealthy_error_ratio = unhealthy_error_ratio
        self._clock = clock
        self.last_renewal_run: Optional[datetime] = None

    def channel_state(self, calendar: Calendar, now: Optional[datetime] = None) -> ChannelState:
        now = now or self._clock()
        if calendar.integration_status == IntegrationStatus.ERROR:
            return ChannelState.ERROR
        if not calendar.channel_id:
            return ChannelState.NONE
        if calendar.channel_expires_at is None:
            return ChannelState.ACTIVE
        if calendar.channel_expires_at <= now:
            return ChannelState.EXPIRED
        if calendar.channel_expires_at <= now + self.renewal_window:
            return ChannelState.EXPIRING
        return ChannelState.ACTIVE

    async def check_channel_health(self) -> ChannelStats:
        now = self._clock()
        stats = ChannelStats()
        for calendar in await self.calendars.list_all():
            state = self.channel_state(calendar, now)
            if state == ChannelState.NONE:
                stats.without_channel += 1
                continue
            stats.total += 1
            if state == ChannelState.ACTIVE:
                stats.active += 1
            elif state == ChannelState.EXPIRING:
                stats.expiring += 1
            elif state == ChannelState.EXPIRED:
                stats.expired += 1
            else:
                stats.error += 1

        base = self.last_renewal_run or now
        stats.next_renewal_check = base + self.check_interval
        return stats

    async def _open_channel(self, calendar: Calendar) -> WebhookChannel:
        """Open a channel and record it; an unrecorded channel is stopped again."""
        channel = await self.provider.watch_calendar(calendar.provider_calendar_id)
        try:
            await self.calendars.update_channel(calendar.id, channel)
        except Exception:
            await self._stop_quietly(channel, calendar.id)
            raise
        return channel

    async def _stop_quietly(self, channel: Optional[WebhookChannel], calendar_id: str) -> None:
        if channel is None or not channel.resource_id:
            return
        try:
            await self.provider.stop_channel(channel.id, channel.resource_id)
        except Exception as e:
            logger.warning(f"Failed to stop channel {channel.id} for calendar {calendar_id}: {e}")

    async def renew_channel(self, calendar: Calendar) -> ChannelOperationResult:
        """Replace the calendar's channel; on failure mark the calendar error."""
        old_channel = calendar.channel
        try:
            channel = await self._open_channel(calendar)
        except Exception as e:
            logger.error(f"Failed to renew channel for calendar {calendar.id}: {e}")
            await self._mark_error(calendar)
            return ChannelOperationResult(calendar_id=calendar.id, success=False, error=str(e))

        if calendar.integration_status == IntegrationStatus.ERROR:
            await self.calendars.update(calendar.id, {"integration_status": IntegrationStatus.ACTIVE.value})

        await self._stop_quietly(old_channel, calendar.id)
        logger.info(f"Renewed channel for calendar {calendar.id}: {channel.id} (expires {to_iso(channel.expiration)})")
        return ChannelOperationResult(
            calendar_id=calendar.id, success=True, channel_id=channel.id, expires_at=channel.expiration
        )

    async def _mark_error(self, calendar: Calendar) -> None:
        try:
            await self.calendars.update(calendar.id, {"integration_status": IntegrationStatus.ERROR.value})
        except Exception as e:
            logger.error(f"Failed to mark calendar {calendar.id} as error: {e}")

    async def process_channel_renewals(self) -> ChannelBatchReport:
        """
        Renew every channel expiring within the renewal window.

        A failed renewal is not retried in the same pass; the channel stays in the
        window, so the next pass picks it up again.
        """
        now = self._clock()
        self.last_renewal_run = now
        report = ChannelBatchReport()

        candidates = await self.calendars.list_channels_expiring_before(now + self.renewal_window)
        for calendar in candidates:
            if not calendar.provider_calendar_id:
                continue
            report.add(await self.renew_channel(calendar))

        logger.info(
            f"Channel renewal pass: {report.succeeded} renewed, {report.failed} failed "
            f"of {report.processed} expiring"
        )
        return report

    async def setup_channel_for_calendar(self, calendar: Calendar) -> ChannelOperationResult:
        """Open the first channel for a newly provisioned calendar."""
        if calendar.channel_id:
            return ChannelOperationResult(
                calendar_id=calendar.id, success=True,
                channel_id=calendar.channel_id, expires_at=calendar.channel_expires_at
            )
        try:
            channel = await self._open_channel(calendar)
        except Exception as e:
            logger.error(f"Failed to set up channel for calendar {calendar.id}: {e}")
            return ChannelOperationResult(calendar_id=calendar.id, success=False, error=str(e))

        logger.info(f"Channel {channel.id} set up for calendar {calendar.id}")
        return ChannelOperationResult(
            calendar_id=calendar.id, success=True, channel_id=channel.id, expires_at=channel.expiration
        )

    async def remove_channel_for_calendar(self, calendar: Calendar) -> None:
        """Stop the calendar's channel and clear the stored reference."""
        await self._stop_quietly(calendar.channel, calendar.id)
        if calendar.channel_id:
            await self.calendars.update_channel(calendar.id, None)
            logger.info(f"Removed channel {calendar.channel_id} from calendar {calendar.id}")

    async def recreate_all_channels(self) -> ChannelBatchReport:
        """Stop and re-open channels for every active calendar, collecting per-calendar errors."""
        report = ChannelBatchReport()
        for calendar in await self.calendars.list_all():
            if not calendar.is_active or not calendar.provider_calendar_id:
                continue

            await self._stop_quietly(calendar.channel, calendar.id)
            try:
                channel = await self._open_channel(calendar)
            except Exception as e:
                logger.error(f"Failed to recreate channel for calendar {calendar.id}: {e}")
                report.add(ChannelOperationResult(calendar_id=calendar.id, success=False, error=str(e)))
                continue

            report.add(ChannelOperationResult(
                calendar_id=calendar.id, success=True, channel_id=channel.id, expires_at=channel.expiration
            ))

        logger.info(f"Recreated {report.succeeded} channels ({report.failed} failed)")
        return report

    async def health_check(self) -> Dict[str, Any]:
        """Unhealthy when more than the configured share of channels are in error."""
        try:
            stats = await self.check_channel_health()
        except Exception as e:
            logger.error(f"Channel health check failed: {e}")
            return {"healthy": False, "error": str(e)}

        error_ratio = stats.error / stats.total if stats.total else 0.0
        return {
            "healthy": error_ratio <= self.unhealthy_error_ratio,
            "errorRatio": round(error_ratio, 3),
            "stats": stats.to_dict(),
        }
