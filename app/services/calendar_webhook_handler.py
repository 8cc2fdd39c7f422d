"""
Calendar webhook notification handler

Maps a push notification to its calendar and runs an incremental sync, at most
one at a time per calendar. Notifications arriving while a sync is running are
skipped: the running pass picks up their changes through the sync token.
"""

import logging
from typing import Any, Dict, Optional

from app import config
from app.models.calendar import Calendar, SyncResult, WebhookNotification
from app.services.calendar_sync_engine import IncrementalSyncEngine
from app.services.sync_state import CalendarLockRegistry, SyncTokenCache
from app.storage.base import CalendarStore
from app.utils.timezone_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class CalendarWebhookHandler:
    """Processes provider push notifications"""

    def __init__(
        self,
        calendar_store: CalendarStore,
        sync_engine: IncrementalSyncEngine,
        locks: CalendarLockRegistry,
        token_cache: SyncTokenCache,
        *,
        resource_id_fallback: bool = config.WEBHOOK_RESOURCE_ID_FALLBACK,
    ):
        self.calendars = calendar_store
        self.sync_engine = sync_engine
        self.locks = locks
        self.token_cache = token_cache
        self.resource_id_fallback = resource_id_fallback
        self.stats = {
            "received": 0,
            "processed": 0,
            "skipped": 0,
            "unknown_channel": 0,
            "failed": 0,
            "last_processed_at": None,
        }

    async def _resolve_calendar(self, notification: WebhookNotification) -> Optional[Calendar]:
        calendar = await self.calendars.get_by_channel_id(notification.channel_id)
        if calendar is None and self.resource_id_fallback:
            calendar = await self.calendars.get_by_resource_id(notification.resource_id)
            if calendar is not None:
                logger.info(
                    f"Matched unknown channel {notification.channel_id} to calendar {calendar.id} by resource id"
                )
        return calendar

    async def process_webhook(self, notification: WebhookNotification) -> SyncResult:
        """
        Handle one notification.

        Unknown channels and token mismatches are soft no-ops (the provider must
        not retry them); only unexpected internal failures propagate.
        """
        self.stats["received"] += 1
        logger.info(
            f"Calendar notification: channel={notification.channel_id} "
            f"state={notification.resource_state.value} message={notification.message_number}"
        )

        calendar = await self._resolve_calendar(notification)
        if calendar is None:
            self.stats["unknown_channel"] += 1
            logger.info(f"Ignoring notification for unknown channel {notification.channel_id}")
            return SyncResult(errors=[f"No calendar found for channel {notification.channel_id}"])

        if calendar.channel_token and notification.channel_token != calendar.channel_token:
            self.stats["unknown_channel"] += 1
            logger.warning(f"Channel token mismatch for calendar {calendar.id}, ignoring notification")
            return SyncResult(calendar_id=calendar.id, errors=["Channel token mismatch"])

        lock_token = self.locks.try_acquire(calendar.id)
        if lock_token is None:
            self.stats["skipped"] += 1
            logger.info(f"Calendar {calendar.id} is already syncing, skipping notification")
            return SyncResult(calendar_id=calendar.id, errors=["Already processing"], skipped=True)

        try:
            result = await self.sync_engine.sync(calendar)
            self.stats["processed"] += 1
            self.stats["last_processed_at"] = to_iso(utc_now())
            return result
        except Exception:
            self.stats["failed"] += 1
            raise
        finally:
            self.locks.release(calendar.id, lock_token)

    def forget_calendar(self, calendar_id: str) -> None:
        """Drop per-calendar process state when a calendar is deleted or rolled back."""
        self.locks.release(calendar_id)
        self.token_cache.discard(calendar_id)

    def get_processing_status(self) -> Dict[str, Any]:
        return {
            "processing_calendars": self.locks.held(),
            "cached_sync_tokens": len(self.token_cache),
            **self.stats,
        }

    def clear_processing_locks(self) -> int:
        """Admin escape hatch: release every processing lock."""
        count = self.locks.clear()
        logger.warning(f"Cleared {count} calendar processing locks")
        return count

    async def health_check(self) -> Dict[str, Any]:
        try:
            calendars = await self.calendars.list_all()
        except Exception as e:
            logger.error(f"Webhook handler health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

        with_channel = sum(1 for c in calendars if c.channel_id)
        return {
            "status": "healthy",
            "calendars": len(calendars),
            "calendars_with_channel": with_channel,
            "processing": len(self.locks),
        }
