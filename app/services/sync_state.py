"""
Process-local sync state: per-calendar processing locks and the continuation-token cache.

Both registries are plain objects owned by the service container. Entries are
removed explicitly when a calendar is deleted or rolled back, and are bounded
by a TTL so a stuck operation or an abandoned calendar cannot grow them forever.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class CalendarLockRegistry:
    """
    Non-blocking, per-calendar mutual exclusion.

    try_acquire() never waits: a caller that loses the race skips its work.
    The check-and-set is guarded by a threading lock so it stays atomic when
    the host runs handlers on several threads.
    """

    def __init__(self, max_hold_seconds: float = 600, clock: Callable[[], float] = time.monotonic):
        self.max_hold_seconds = max_hold_seconds
        self._clock = clock
        self._held: Dict[str, Tuple[float, str]] = {}
        self._guard = threading.Lock()

    def try_acquire(self, key: str) -> Optional[str]:
        """Return an ownership token, or None when the key is held and not stale."""
        now = self._clock()
        with self._guard:
            held = self._held.get(key)
            if held is not None:
                if now - held[0] < self.max_hold_seconds:
                    return None
                logger.warning(f"Reclaiming stale processing lock for calendar {key}")
            token = uuid.uuid4().hex
            self._held[key] = (now, token)
            return token

    def release(self, key: str, token: Optional[str] = None) -> None:
        """
        Release the lock on key.

        With a token, only the holder that acquired it releases; a holder whose
        lock was reclaimed as stale leaves the new holder's lock in place.
        """
        with self._guard:
            held = self._held.get(key)
            if held is None:
                return
            if token is not None and held[1] != token:
                logger.warning(f"Lock on calendar {key} was reclaimed; not releasing the new holder")
                return
            del self._held[key]

    def is_locked(self, key: str) -> bool:
        with self._guard:
            return key in self._held

    def held(self) -> List[str]:
        with self._guard:
            return list(self._held)

    def clear(self) -> int:
        with self._guard:
            count = len(self._held)
            self._held.clear()
            return count

    def __len__(self) -> int:
        return len(self._held)


class SyncTokenCache:
    """
    TTL- and size-bounded cache of the newest continuation token per calendar.

    The stored Calendar record stays the source of truth; the cache only keeps
    the latest token when the record write lags behind.
    """

    def __init__(
        self,
        ttl_seconds: float = 86400,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._guard = threading.Lock()

    def get(self, calendar_id: str) -> Optional[str]:
        with self._guard:
            entry = self._entries.get(calendar_id)
            if entry is None:
                return None
            token, stored_at = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[calendar_id]
                return None
            return token

    def set(self, calendar_id: str, token: str) -> None:
        with self._guard:
            self._entries.pop(calendar_id, None)
            self._entries[calendar_id] = (token, self._clock())
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def discard(self, calendar_id: str) -> None:
        with self._guard:
            self._entries.pop(calendar_id, None)

    def clear(self) -> None:
        with self._guard:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
