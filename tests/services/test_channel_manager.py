"""
Tests for webhook channel lifecycle management
"""

from datetime import timedelta

from app.exceptions import CalendarServiceError
from app.models.calendar import IntegrationStatus
from app.services.calendar_channel_manager import ChannelState
from tests.fakes import make_calendar


def expiring_in(clock, **delta):
    return clock() + timedelta(**delta)


class TestChannelState:

    def test_states(self, channel_manager, clock):
        assert channel_manager.channel_state(make_calendar(channel_id=None)) == ChannelState.NONE
        assert channel_manager.channel_state(
            make_calendar(channel_expires_at=expiring_in(clock, days=5))
        ) == ChannelState.ACTIVE
        assert channel_manager.channel_state(
            make_calendar(channel_expires_at=expiring_in(clock, hours=20))
        ) == ChannelState.EXPIRING
        assert channel_manager.channel_state(
            make_calendar(channel_expires_at=expiring_in(clock, hours=-1))
        ) == ChannelState.EXPIRED
        assert channel_manager.channel_state(
            make_calendar(integration_status="error")
        ) == ChannelState.ERROR


class TestChannelRenewal:

    async def test_renews_only_channels_inside_window(self, channel_manager, calendar_store, provider, clock):
        calendar_store.rows["soon"] = make_calendar(
            id="soon", practitioner_id="p1", channel_id="chan-soon", channel_expires_at=expiring_in(clock, hours=20)
        )
        calendar_store.rows["later"] = make_calendar(
            id="later", practitioner_id="p2", channel_id="chan-later", channel_expires_at=expiring_in(clock, hours=30)
        )

        report = await channel_manager.process_channel_renewals()

        assert report.processed == 1
        assert report.succeeded == 1
        assert report.results[0].calendar_id == "soon"
        assert calendar_store.rows["soon"].channel_id != "chan-soon"
        assert calendar_store.rows["later"].channel_id == "chan-later"

    async def test_renewal_opens_new_before_stopping_old(self, channel_manager, calendar_store, provider, clock):
        calendar = make_calendar(channel_expires_at=expiring_in(clock, hours=2))
        calendar_store.rows[calendar.id] = calendar

        result = await channel_manager.renew_channel(calendar)

        names = [c[0] for c in provider.calls]
        assert names.index("watch_calendar") < names.index("stop_channel")
        assert provider.stopped_channels == ["channel-1"]
        assert result.success
        assert calendar_store.rows[calendar.id].channel_id == result.channel_id
        assert calendar_store.rows[calendar.id].channel_expires_at == clock() + timedelta(days=7)

    async def test_failed_renewal_marks_calendar_error(self, channel_manager, calendar_store, provider, clock):
        calendar = make_calendar(channel_expires_at=expiring_in(clock, hours=2))
        calendar_store.rows[calendar.id] = calendar
        provider.fail("watch_calendar", CalendarServiceError("forbidden"))

        result = await channel_manager.renew_channel(calendar)

        assert not result.success
        assert result.error == "forbidden"
        assert calendar_store.rows[calendar.id].integration_status == IntegrationStatus.ERROR
        assert calendar_store.rows[calendar.id].channel_id == "channel-1"
        assert provider.stopped_channels == []

    async def test_unrecorded_new_channel_is_stopped(self, channel_manager, calendar_store, provider, clock):
        calendar = make_calendar(channel_expires_at=expiring_in(clock, hours=2))
        calendar_store.rows[calendar.id] = calendar
        calendar_store.fail("update_channel", RuntimeError("store unavailable"))

        result = await channel_manager.renew_channel(calendar)

        assert not result.success
        assert len(provider.called("watch_calendar")) == 1
        # the new channel is stopped, the still-recorded old one keeps running
        assert provider.stopped_channels == ["chan-1"]
        assert calendar_store.rows[calendar.id].channel_id == "channel-1"
        assert calendar_store.rows[calendar.id].integration_status == IntegrationStatus.ERROR

    async def test_successful_renewal_restores_error_calendar(self, channel_manager, calendar_store, clock):
        calendar = make_calendar(integration_status="error", channel_expires_at=expiring_in(clock, hours=-3))
        calendar_store.rows[calendar.id] = calendar

        report = await channel_manager.process_channel_renewals()

        assert report.succeeded == 1
        assert calendar_store.rows[calendar.id].integration_status == IntegrationStatus.ACTIVE

    async def test_stop_failure_does_not_fail_renewal(self, channel_manager, calendar_store, provider, clock):
        calendar = make_calendar(channel_expires_at=expiring_in(clock, hours=2))
        calendar_store.rows[calendar.id] = calendar
        provider.fail("stop_channel", CalendarServiceError("backend error", retryable=True))

        result = await channel_manager.renew_channel(calendar)

        assert result.success

    async def test_failures_do_not_stop_the_pass(self, channel_manager, calendar_store, provider, clock):
        for n in range(3):
            calendar_store.rows[f"c{n}"] = make_calendar(
                id=f"c{n}", practitioner_id=f"p{n}", channel_id=f"chan-{n}",
                provider_calendar_id=f"prov-{n}", channel_expires_at=expiring_in(clock, hours=1)
            )
        original = provider.watch_calendar

        async def flaky_watch(calendar_id):
            if calendar_id == "prov-1":
                raise CalendarServiceError("forbidden")
            return await original(calendar_id)

        provider.watch_calendar = flaky_watch

        report = await channel_manager.process_channel_renewals()

        assert report.processed == 3
        assert report.succeeded == 2
        assert report.failed == 1


class TestChannelSetup:

    async def test_setup_opens_channel(self, channel_manager, calendar_store, provider):
        calendar = make_calendar(channel_id=None, channel_resource_id=None, channel_token=None)
        calendar_store.rows[calendar.id] = calendar

        result = await channel_manager.setup_channel_for_calendar(calendar)

        assert result.success
        assert calendar_store.rows[calendar.id].channel_id == result.channel_id
        assert calendar_store.rows[calendar.id].channel_token is not None

    async def test_setup_is_noop_with_existing_channel(self, channel_manager, provider):
        result = await channel_manager.setup_channel_for_calendar(make_calendar())

        assert result.success
        assert result.channel_id == "channel-1"
        assert provider.called("watch_calendar") == []

    async def test_remove_channel(self, channel_manager, calendar_store, provider):
        calendar = make_calendar()
        calendar_store.rows[calendar.id] = calendar

        await channel_manager.remove_channel_for_calendar(calendar)

        assert provider.stopped_channels == ["channel-1"]
        assert calendar_store.rows[calendar.id].channel_id is None

    async def test_recreate_all_skips_inactive(self, channel_manager, calendar_store, provider):
        calendar_store.rows["a"] = make_calendar(id="a", practitioner_id="p1", channel_id="chan-a")
        calendar_store.rows["b"] = make_calendar(id="b", practitioner_id="p2", channel_id="chan-b",
                                                 integration_status="pending")

        report = await channel_manager.recreate_all_channels()

        assert report.processed == 1
        assert report.succeeded == 1
        assert provider.stopped_channels == ["chan-a"]
        assert calendar_store.rows["b"].channel_id == "chan-b"

    async def test_recreate_stops_channel_it_could_not_record(self, channel_manager, calendar_store, provider):
        calendar_store.rows["a"] = make_calendar(id="a", practitioner_id="p1", channel_id="chan-a")
        calendar_store.fail("update_channel", RuntimeError("store unavailable"))

        report = await channel_manager.recreate_all_channels()

        assert report.failed == 1
        assert provider.stopped_channels == ["chan-a", "chan-1"]


class TestChannelHealth:

    async def test_counts_states(self, channel_manager, calendar_store, clock):
        calendar_store.rows["a"] = make_calendar(id="a", practitioner_id="p1",
                                                 channel_expires_at=expiring_in(clock, days=3))
        calendar_store.rows["b"] = make_calendar(id="b", practitioner_id="p2",
                                                 channel_expires_at=expiring_in(clock, hours=3))
        calendar_store.rows["c"] = make_calendar(id="c", practitioner_id="p3", channel_id=None)

        stats = await channel_manager.check_channel_health()

        assert stats.total == 2
        assert stats.active == 1
        assert stats.expiring == 1
        assert stats.without_channel == 1
        assert stats.next_renewal_check == clock() + timedelta(hours=6)

    async def test_unhealthy_above_error_ratio(self, channel_manager, calendar_store, clock):
        for n in range(5):
            calendar_store.rows[f"c{n}"] = make_calendar(
                id=f"c{n}", practitioner_id=f"p{n}", channel_expires_at=expiring_in(clock, days=3),
                integration_status="error" if n == 0 else "active",
            )

        health = await channel_manager.health_check()

        assert health["healthy"] is False
        assert health["errorRatio"] == 0.2

    async def test_healthy_without_channels(self, channel_manager):
        health = await channel_manager.health_check()
        assert health["healthy"] is True
