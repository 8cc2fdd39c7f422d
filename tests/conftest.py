"""
Shared fixtures for the calendar sync tests
"""

import pytest

from app.services.calendar_channel_manager import CalendarChannelManager
from app.services.calendar_sync_engine import IncrementalSyncEngine
from app.services.conflict_detector import ConflictDetector
from app.services.sync_state import CalendarLockRegistry, SyncTokenCache
from tests.fakes import (
    FakeCalendarProvider,
    FixedClock,
    InMemoryAppointmentStore,
    InMemoryCalendarStore,
    InMemoryPractitionerStore,
    RecordingSleep,
)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def provider(clock):
    return FakeCalendarProvider(clock)


@pytest.fixture
def calendar_store():
    return InMemoryCalendarStore()


@pytest.fixture
def appointment_store():
    return InMemoryAppointmentStore()


@pytest.fixture
def practitioner_store():
    return InMemoryPractitionerStore()


@pytest.fixture
def token_cache():
    return SyncTokenCache(ttl_seconds=3600, max_entries=100)


@pytest.fixture
def locks():
    return CalendarLockRegistry(max_hold_seconds=600)


@pytest.fixture
def conflict_detector(provider, appointment_store, clock):
    return ConflictDetector(provider, appointment_store, window_days=30, clock=clock)


@pytest.fixture
def sync_engine(provider, calendar_store, appointment_store, conflict_detector, token_cache, clock):
    return IncrementalSyncEngine(
        provider, calendar_store, appointment_store, conflict_detector, token_cache,
        lookback_days=30, clock=clock
    )


@pytest.fixture
def channel_manager(provider, calendar_store, clock):
    return CalendarChannelManager(
        provider, calendar_store,
        renewal_window_hours=24, check_interval_hours=6, unhealthy_error_ratio=0.1, clock=clock
    )
