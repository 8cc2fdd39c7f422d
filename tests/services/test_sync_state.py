"""
Tests for processing locks and the sync token cache
"""

from app.services.sync_state import CalendarLockRegistry, SyncTokenCache


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCalendarLockRegistry:

    def test_lock_is_exclusive(self):
        locks = CalendarLockRegistry()
        assert locks.try_acquire("calendar-1")
        assert not locks.try_acquire("calendar-1")
        assert locks.try_acquire("calendar-2")

    def test_release_allows_reacquire(self):
        locks = CalendarLockRegistry()
        locks.try_acquire("calendar-1")
        locks.release("calendar-1")
        assert locks.try_acquire("calendar-1")

    def test_release_unknown_key_is_noop(self):
        CalendarLockRegistry().release("missing")

    def test_stale_lock_is_reclaimed(self):
        ticker = Ticker()
        locks = CalendarLockRegistry(max_hold_seconds=600, clock=ticker)
        locks.try_acquire("calendar-1")

        ticker.now = 599
        assert not locks.try_acquire("calendar-1")
        ticker.now = 601
        assert locks.try_acquire("calendar-1")

    def test_reclaimed_lock_survives_release_by_previous_holder(self):
        ticker = Ticker()
        locks = CalendarLockRegistry(max_hold_seconds=600, clock=ticker)
        first = locks.try_acquire("calendar-1")

        ticker.now = 601
        second = locks.try_acquire("calendar-1")
        assert second and second != first

        locks.release("calendar-1", first)
        assert locks.is_locked("calendar-1")
        assert not locks.try_acquire("calendar-1")

        locks.release("calendar-1", second)
        assert not locks.is_locked("calendar-1")

    def test_release_without_token_is_unconditional(self):
        locks = CalendarLockRegistry()
        locks.try_acquire("calendar-1")
        locks.release("calendar-1")
        assert not locks.is_locked("calendar-1")

    def test_clear_returns_count(self):
        locks = CalendarLockRegistry()
        locks.try_acquire("a")
        locks.try_acquire("b")
        assert locks.clear() == 2
        assert len(locks) == 0
        assert locks.held() == []


class TestSyncTokenCache:

    def test_set_and_get(self):
        cache = SyncTokenCache()
        cache.set("calendar-1", "t1")
        cache.set("calendar-1", "t2")
        assert cache.get("calendar-1") == "t2"
        assert len(cache) == 1

    def test_entries_expire(self):
        ticker = Ticker()
        cache = SyncTokenCache(ttl_seconds=60, clock=ticker)
        cache.set("calendar-1", "t1")

        ticker.now = 61
        assert cache.get("calendar-1") is None
        assert len(cache) == 0

    def test_size_bound_evicts_oldest(self):
        cache = SyncTokenCache(max_entries=2)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.set("c", "3")

        assert cache.get("a") is None
        assert cache.get("b") == "2"
        assert cache.get("c") == "3"

    def test_discard_and_clear(self):
        cache = SyncTokenCache()
        cache.set("a", "1")
        cache.set("b", "2")
        cache.discard("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0
