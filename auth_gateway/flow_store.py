"""
In-memory store for pending logins (state -> nonce, PKCE verifier).
Filled by /api/auth/login and consumed exactly once by /api/auth/redirect.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class PendingAuth:
    nonce: str
    pkce_verifier: str


class PendingAuthStore:
    """
    One lock over the whole mapping; entries are short-lived and few.
    take() is the only way an entry leaves the store, so a state value can
    complete a login at most once. With a ttl, entries older than ttl seconds
    are treated as absent and purged on the next put().
    """

    def __init__(self, ttl: float | None = None, *, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._pending: dict[str, tuple[float, PendingAuth]] = {}
        self._lock = threading.Lock()

    def _expired(self, created_at: float, now: float) -> bool:
        return self._ttl is not None and (now - created_at) > self._ttl

    def put(self, key: str, value: PendingAuth) -> None:
        with self._lock:
            self._clean_expired()
            self._pending[key] = (self._clock(), value)

    def take(self, key: str) -> PendingAuth | None:
        with self._lock:
            entry = self._pending.pop(key, None)
        if entry is None:
            return None
        created_at, flow = entry
        if self._expired(created_at, self._clock()):
            return None
        return flow

    def _clean_expired(self) -> None:
        if self._ttl is None:
            return
        now = self._clock()
        expired = [s for s, (created_at, _) in self._pending.items() if self._expired(created_at, now)]
        for s in expired:
            del self._pending[s]

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
