from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall-clock time source used in production."""

    def now(self) -> float:
        return time.time()

    def now_ms(self) -> int:
        return int(self.now() * 1000)

    def now_seconds(self) -> int:
        return int(self.now())


class ManualClock(SystemClock):
    """Clock that only moves when told to. Handy for tests and replays."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, value: float) -> None:
        with self._lock:
            self._now = float(value)


# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_EPOCH_MS = 253_402_300_799_999
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def isoformat_ms(epoch_ms: int) -> str:
    """Render an epoch in milliseconds as an ISO-8601 UTC string.

    Values outside 1970..9999 are clamped to the nearest end of that range.
    """
    epoch_ms = min(max(int(epoch_ms), 0), MAX_EPOCH_MS)
    stamp = EPOCH + timedelta(milliseconds=epoch_ms)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
