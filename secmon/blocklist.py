from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from secmon.clock import SystemClock, isoformat_ms

SWEEP_INTERVAL_SECONDS = 60
# longest block accepted; longer requests are shortened to this
MAX_BLOCK_SECONDS = 10 * 365 * 86400


@dataclass(frozen=True)
class BlockEntry:
    ip: str
    expires_at_ms: int

    def is_active(self, now_ms: int) -> bool:
        return self.expires_at_ms > now_ms

    def to_dict(self) -> Dict[str, object]:
        return {"ip": self.ip, "blocked_until": isoformat_ms(self.expires_at_ms)}


class Blocklist:
    """IP -> block expiry map with lazy eviction on read.

    An entry whose expiry has passed counts as absent and is dropped the first
    time it is observed, so no timer thread is needed.
    """

    def __init__(self, clock: Optional[SystemClock] = None, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self._clock = clock or SystemClock()
        self._entries: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = self._clock.now()

    def is_blocked(self, ip: str) -> bool:
        return self.expires_at(ip) is not None

    def expires_at(self, ip: str) -> Optional[int]:
        """Return the expiry in epoch ms for a blocked IP, or None."""
        now_ms = self._clock.now_ms()
        with self._lock:
            until = self._entries.get(ip)
            if until is None:
                return None
            if until <= now_ms:
                del self._entries[ip]
                return None
            return until

    def block(self, ip: str, duration_seconds: float) -> BlockEntry:
        """Block ``ip`` for ``duration_seconds`` (capped at MAX_BLOCK_SECONDS), replacing any existing expiry."""
        now_ms = self._clock.now_ms()
        until = now_ms + int(min(duration_seconds, MAX_BLOCK_SECONDS) * 1000)
        with self._lock:
            self._entries[ip] = until
            self._maybe_sweep(now_ms)
        return BlockEntry(ip, until)

    def unblock(self, ip: str) -> bool:
        with self._lock:
            return self._entries.pop(ip, None) is not None

    def list_active(self) -> List[BlockEntry]:
        now_ms = self._clock.now_ms()
        with self._lock:
            self._sweep(now_ms)
            return [BlockEntry(ip, until) for ip, until in self._entries.items()]

    def _maybe_sweep(self, now_ms: int) -> None:
        """Drop expired entries at most once per sweep interval."""
        if now_ms / 1000 - self._last_sweep < self._sweep_interval:
            return
        self._sweep(now_ms)

    def _sweep(self, now_ms: int) -> None:
        self._last_sweep = now_ms / 1000
        expired = [ip for ip, until in self._entries.items() if until <= now_ms]
        for ip in expired:
            del self._entries[ip]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
