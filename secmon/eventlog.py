"""Append-only security event log (one JSON object per line)."""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

from secmon.clock import SystemClock, isoformat_ms

logger = logging.getLogger(__name__)

THREAT_DETECTED = "THREAT_DETECTED"
IP_BLOCKED = "IP_BLOCKED"
IP_UNBLOCKED = "IP_UNBLOCKED"
BRUTE_FORCE_DETECTED = "BRUTE_FORCE_DETECTED"
SLOW_REQUEST = "SLOW_REQUEST"


class SecurityEventLog:
    """NDJSON event file that rolls over to ``path.1 .. path.N`` past ``max_bytes``.

    ``max_bytes`` of 0 never rotates; ``backups`` of 0 truncates instead of
    keeping old files.
    """

    def __init__(
        self,
        path: Optional[str],
        clock: Optional[SystemClock] = None,
        max_bytes: int = 0,
        backups: int = 1,
    ) -> None:
        self.path = path
        self._clock = clock or SystemClock()
        self._max_bytes = max_bytes
        self._backups = max(backups, 0)
        self._lock = threading.Lock()

    def log(self, event_type: str, **fields: Any) -> Dict[str, Any]:
        """Append one record; write failures are reported and otherwise ignored."""
        record: Dict[str, Any] = {"at": isoformat_ms(self._clock.now_ms()), "type": event_type}
        record.update(fields)
        if not self.path:
            return record
        try:
            line = json.dumps(record, sort_keys=True, default=str)
            with self._lock:
                self._rollover()
                os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("security event log write failed (%s): %s", event_type, exc)
        return record

    def _rollover(self) -> None:
        if self._max_bytes <= 0:
            return
        try:
            if os.path.getsize(self.path) <= self._max_bytes:
                return
        except OSError:
            # nothing written yet
            return
        try:
            if not self._backups:
                os.truncate(self.path, 0)
                return
            names = [self.path] + [f"{self.path}.{n}" for n in range(1, self._backups + 1)]
            # oldest first, so path.N-1 lands on path.N before path.N-1 is refilled
            for older, newer in reversed(list(zip(names, names[1:]))):
                if os.path.exists(older):
                    os.replace(older, newer)
        except OSError as exc:
            logger.warning("security event log rotation failed: %s", exc)

    def read(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Return up to ``limit`` most recent records, skipping unreadable lines."""
        if not self.path:
            return []
        try:
            with self._lock, open(self.path, "r", encoding="utf-8") as handle:
                lines = handle.readlines()
        except OSError:
            return []
        records = []
        for line in lines[-limit:] if limit > 0 else lines:
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return records
