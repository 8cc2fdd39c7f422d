"""
Tests for push notification handling
"""

import asyncio

import pytest

from app.exceptions import InvalidWebhookNotificationError
from app.models.calendar import EventPage, ResourceState, WebhookNotification
from app.services.calendar_webhook_handler import CalendarWebhookHandler
from tests.fakes import make_calendar


HEADERS = {
    "X-Goog-Channel-ID": "channel-1",
    "X-Goog-Resource-ID": "resource-1",
    "X-Goog-Resource-State": "exists",
    "X-Goog-Resource-URI": "https://www.googleapis.com/calendar/v3/calendars/provider-cal-1/events",
    "X-Goog-Channel-Token": "secret-token",
    "X-Goog-Message-Number": "42",
}


def notification(**overrides) -> WebhookNotification:
    headers = dict(HEADERS)
    headers.update(overrides)
    return WebhookNotification.from_headers(headers)


@pytest.fixture
def handler(calendar_store, sync_engine, locks, token_cache):
    return CalendarWebhookHandler(calendar_store, sync_engine, locks, token_cache, resource_id_fallback=False)


class TestNotificationParsing:

    def test_parses_headers_case_insensitively(self):
        parsed = notification()
        assert parsed.channel_id == "channel-1"
        assert parsed.resource_state == ResourceState.EXISTS
        assert parsed.channel_token == "secret-token"
        assert parsed.message_number == "42"

    @pytest.mark.parametrize("header", [
        "X-Goog-Channel-ID", "X-Goog-Resource-ID", "X-Goog-Resource-State", "X-Goog-Resource-URI",
    ])
    def test_missing_mandatory_header(self, header):
        headers = {k: v for k, v in HEADERS.items() if k != header}
        with pytest.raises(InvalidWebhookNotificationError) as exc:
            WebhookNotification.from_headers(headers)
        assert exc.value.field == header.lower()

    def test_unknown_resource_state(self):
        with pytest.raises(InvalidWebhookNotificationError):
            notification(**{"X-Goog-Resource-State": "updated"})

    def test_optional_metadata_may_be_absent(self):
        headers = {k: v for k, v in HEADERS.items() if k not in ("X-Goog-Channel-Token", "X-Goog-Message-Number")}
        parsed = WebhookNotification.from_headers(headers)
        assert parsed.channel_token is None
        assert parsed.message_number is None


class TestCalendarWebhookHandler:

    async def test_unknown_channel_is_soft_noop(self, handler):
        result = await handler.process_webhook(notification())

        assert result.events_processed == 0
        assert result.errors == ["No calendar found for channel channel-1"]
        assert handler.stats["unknown_channel"] == 1

    async def test_resource_id_fallback(self, calendar_store, sync_engine, locks, token_cache):
        calendar_store.rows["calendar-1"] = make_calendar(channel_id="channel-new")
        handler = CalendarWebhookHandler(calendar_store, sync_engine, locks, token_cache, resource_id_fallback=True)

        result = await handler.process_webhook(notification())

        assert result.calendar_id == "calendar-1"
        assert result.errors == []

    async def test_token_mismatch_is_ignored(self, handler, calendar_store, provider):
        calendar_store.rows["calendar-1"] = make_calendar()

        result = await handler.process_webhook(notification(**{"X-Goog-Channel-Token": "forged"}))

        assert result.errors == ["Channel token mismatch"]
        assert provider.called("list_events") == []

    async def test_runs_sync_for_known_channel(self, handler, calendar_store, provider, locks):
        calendar_store.rows["calendar-1"] = make_calendar()
        provider.pages = [EventPage(next_sync_token="t1")]

        result = await handler.process_webhook(notification())

        assert result.calendar_id == "calendar-1"
        assert result.skipped is False
        assert len(provider.called("list_events")) == 1
        assert not locks.is_locked("calendar-1")
        assert handler.stats["processed"] == 1

    async def test_sync_state_notification_is_processed(self, handler, calendar_store, provider):
        calendar_store.rows["calendar-1"] = make_calendar()

        result = await handler.process_webhook(notification(**{"X-Goog-Resource-State": "sync"}))

        assert result.errors == []
        assert len(provider.called("list_events")) == 1

    async def test_concurrent_notification_is_skipped(self, handler, calendar_store, provider, locks):
        calendar_store.rows["calendar-1"] = make_calendar()
        release = asyncio.Event()
        original = provider.list_events

        async def slow_list_events(*args, **kwargs):
            await release.wait()
            return await original(*args, **kwargs)

        provider.list_events = slow_list_events

        first = asyncio.create_task(handler.process_webhook(notification()))
        await asyncio.sleep(0)
        second = await handler.process_webhook(notification())
        release.set()
        first_result = await first

        assert second.skipped is True
        assert second.errors == ["Already processing"]
        assert first_result.skipped is False
        assert not locks.is_locked("calendar-1")

    async def test_lock_released_when_sync_raises(self, handler, calendar_store, sync_engine, locks):
        calendar_store.rows["calendar-1"] = make_calendar()

        async def boom(calendar):
            raise RuntimeError("unexpected")

        sync_engine.sync = boom

        with pytest.raises(RuntimeError):
            await handler.process_webhook(notification())

        assert not locks.is_locked("calendar-1")
        assert handler.stats["failed"] == 1

    async def test_forget_calendar_drops_state(self, handler, locks, token_cache):
        locks.try_acquire("calendar-1")
        token_cache.set("calendar-1", "t1")

        handler.forget_calendar("calendar-1")

        assert not locks.is_locked("calendar-1")
        assert token_cache.get("calendar-1") is None

    async def test_clear_processing_locks(self, handler, locks):
        locks.try_acquire("a")
        locks.try_acquire("b")

        assert handler.clear_processing_locks() == 2
        assert handler.get_processing_status()["processing_calendars"] == []

    async def test_health_check(self, handler, calendar_store):
        calendar_store.rows["calendar-1"] = make_calendar()
        calendar_store.rows["calendar-2"] = make_calendar(id="calendar-2", practitioner_id="p2", channel_id=None)

        health = await handler.health_check()

        assert health["status"] == "healthy"
        assert health["calendars"] == 2
        assert health["calendars_with_channel"] == 1
