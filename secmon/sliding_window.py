"""Per-key sliding time windows.

Each key owns a list of integer epoch-second timestamps. Pruning happens as
part of every read, so an active key never holds more than one window's worth
of timestamps and no background sweep is needed. Keys whose window drains to
empty are forgotten, and the number of tracked keys is capped in LRU order.
"""

from __future__ import annotations

import threading
import zlib
from collections import OrderedDict
from typing import List, Optional

from secmon.clock import SystemClock

DEFAULT_SHARDS = 16


class SlidingWindowCounter:
    def __init__(
        self,
        clock: Optional[SystemClock] = None,
        max_keys: int = 100_000,
        shards: int = DEFAULT_SHARDS,
    ) -> None:
        self._clock = clock or SystemClock()
        self._max_keys = max(1, max_keys)
        self._windows: "OrderedDict[str, List[int]]" = OrderedDict()
        # guards the key map itself; per-key mutation is serialized by the shard locks
        self._map_lock = threading.Lock()
        self._shards = [threading.Lock() for _ in range(max(1, shards))]

    def _lock_for(self, key: str) -> threading.Lock:
        index = zlib.crc32(key.encode("utf-8", "ignore")) % len(self._shards)
        return self._shards[index]

    def _take(self, key: str) -> List[int]:
        with self._map_lock:
            return self._windows.pop(key, [])

    def _put(self, key: str, window: List[int]) -> None:
        with self._map_lock:
            self._windows[key] = window
            while len(self._windows) > self._max_keys:
                self._windows.popitem(last=False)

    @staticmethod
    def _prune(window: List[int], now: int, window_seconds: int) -> List[int]:
        cutoff = now - window_seconds
        return [ts for ts in window if ts >= cutoff]

    def record_event(self, key: str) -> None:
        """Append the current timestamp to the key's window."""
        now = self._clock.now_seconds()
        with self._lock_for(key):
            window = self._take(key)
            window.append(now)
            self._put(key, window)

    def count_recent(self, key: str, window_seconds: int) -> int:
        """Prune the key's window to the last ``window_seconds`` and return its size."""
        now = self._clock.now_seconds()
        with self._lock_for(key):
            pruned = self._prune(self._take(key), now, window_seconds)
            if pruned:
                self._put(key, pruned)
            return len(pruned)

    def observe(self, key: str, window_seconds: int) -> int:
        """Prune, append the current timestamp and return the new count in one step."""
        now = self._clock.now_seconds()
        with self._lock_for(key):
            pruned = self._prune(self._take(key), now, window_seconds)
            pruned.append(now)
            self._put(key, pruned)
            return len(pruned)

    def clear(self, key: str) -> None:
        with self._lock_for(key):
            self._take(key)

    def __contains__(self, key: str) -> bool:
        with self._map_lock:
            return key in self._windows

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._windows)
