from __future__ import annotations

import threading
from typing import Dict, Optional

from secmon.clock import SystemClock


class TimeDedupe:
    """A TTL-based deduper: map keys to expiry timestamps.

    Suppression is temporary, so a condition that keeps happening is
    re-reported once per TTL instead of on every request.
    """

    def __init__(self, ttl_seconds: float = 60, clock: Optional[SystemClock] = None) -> None:
        self.ttl = ttl_seconds
        self._clock = clock or SystemClock()
        self._store: Dict[str, float] = {}
        self._lock = threading.Lock()

    def first_seen(self, key: str) -> bool:
        """Record ``key`` and return True unless it was already live."""
        now = self._clock.now()
        with self._lock:
            exp = self._store.get(key)
            if exp is not None and exp > now:
                return False
            self._store[key] = now + self.ttl
            if len(self._store) > 1024:
                self._purge(now)
            return True

    def _purge(self, now: float) -> None:
        expired = [key for key, exp in self._store.items() if exp <= now]
        for key in expired:
            self._store.pop(key, None)

    def __contains__(self, key: str) -> bool:
        now = self._clock.now()
        with self._lock:
            exp = self._store.get(key)
            if exp is None:
                return False
            if exp <= now:
                # expired, remove and report absent
                self._store.pop(key, None)
                return False
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
