"""Failed-login tracking and escalation to a long block."""

from __future__ import annotations

import threading
from typing import Optional

from secmon.alerts import HIGH, AlertSink, render_title
from secmon.blocklist import Blocklist
from secmon.clock import isoformat_ms
from secmon.eventlog import BRUTE_FORCE_DETECTED, IP_BLOCKED, SecurityEventLog
from secmon.sliding_window import SlidingWindowCounter


def failed_login_key(ip: str) -> str:
    return f"failed_login_{ip}"


class BruteForceTracker:
    """Count recent authentication failures per IP and block past a threshold.

    An IP is clean with no failures in the window, accumulating with
    1..threshold-1, and escalates on the failure that reaches the threshold.
    Escalation blocks the IP for ``block_seconds`` and clears its window.
    """

    def __init__(
        self,
        counter: SlidingWindowCounter,
        blocklist: Blocklist,
        sink: AlertSink,
        event_log: SecurityEventLog,
        threshold: int = 5,
        window_seconds: int = 300,
        block_seconds: int = 86400,
    ) -> None:
        self.counter = counter
        self.blocklist = blocklist
        self.sink = sink
        self.event_log = event_log
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self._lock = threading.Lock()

    def recent_failures(self, ip: str) -> int:
        return self.counter.count_recent(failed_login_key(ip), self.window_seconds)

    def report_failure(self, ip: str, request_id: Optional[str] = None) -> bool:
        """Record one failed login for ``ip``. Returns True when it escalated."""
        key = failed_login_key(ip)
        with self._lock:
            # read before append: the failure being reported is the +1
            previous = self.counter.count_recent(key, self.window_seconds)
            escalate = previous + 1 >= self.threshold
            if escalate:
                # reset now instead of letting the window age out, so a manual unblock starts clean
                self.counter.clear(key)
            else:
                self.counter.record_event(key)
        if escalate:
            self._escalate(ip, previous + 1, request_id)
        return escalate

    def _escalate(self, ip: str, attempts: int, request_id: Optional[str]) -> None:
        entry = self.blocklist.block(ip, self.block_seconds)
        blocked_until = isoformat_ms(entry.expires_at_ms)
        self.event_log.log(IP_BLOCKED, ip=ip, until=blocked_until, reason="brute_force")
        self.event_log.log(
            BRUTE_FORCE_DETECTED,
            ip=ip,
            action="IP_BLOCKED",
            attempts=attempts,
            window_seconds=self.window_seconds,
            duration_seconds=self.block_seconds,
        )
        self.sink.emit(
            HIGH,
            render_title("brute_force", ip=ip),
            {
                "ip": ip,
                "attempts": attempts,
                "window_seconds": self.window_seconds,
                "blocked_until": blocked_until,
            },
            request_id=request_id,
        )
