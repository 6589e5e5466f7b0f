"""
Time-expiring value cache. Serves a value produced by a refresh callable and
refreshes it at most once per TTL window, even with many concurrent callers.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    last_refreshed: float


class ExpiringCache(Generic[T]):
    """
    Wraps `refresh` (any zero-argument callable) and a TTL in seconds.

    Construction refreshes once and lets any exception propagate. Reads of a
    fresh entry take no lock. Once the entry is older than `ttl`, callers
    serialize on a single lock; the first one refreshes and the rest see the
    new entry. A failed refresh keeps the previous entry, so the next call
    retries.
    """

    def __init__(self, refresh: Callable[[], T], ttl: float, *, clock: Callable[[], float] = time.monotonic):
        self._refresh = refresh
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entry = CacheEntry(value=refresh(), last_refreshed=clock())

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def age(self) -> float:
        """Seconds since the cached value was last refreshed."""
        return self._clock() - self._entry.last_refreshed

    def _expired(self, entry: CacheEntry[T]) -> bool:
        return (self._clock() - entry.last_refreshed) > self._ttl

    def get(self) -> T:
        value, _ = self.get_verbose()
        return value

    def get_verbose(self) -> tuple[T, bool]:
        """Return (value, refreshed) where refreshed is True if this call ran the refresh."""
        entry = self._entry
        if not self._expired(entry):
            return entry.value, False

        with self._lock:
            # Another caller may have refreshed while we waited for the lock
            entry = self._entry
            if not self._expired(entry):
                return entry.value, False
            value = self._refresh()
            self._entry = CacheEntry(value=value, last_refreshed=self._clock())
            logger.debug("Cache refreshed by %r", self._refresh)
            return value, True

    def invalidate(self) -> None:
        """Force the next get() to refresh. The current value stays until then."""
        with self._lock:
            self._entry = CacheEntry(value=self._entry.value, last_refreshed=float("-inf"))
