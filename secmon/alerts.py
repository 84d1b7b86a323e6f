from __future__ import annotations

import logging
import queue
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

from secmon.clock import SystemClock, isoformat_ms
from secmon.storage import read_json_list, write_json_atomic

logger = logging.getLogger(__name__)

Notifier = Callable[[Dict[str, Any]], Any]

CRITICAL = "CRITICAL"
HIGH = "HIGH"
WARN = "WARN"
INFO = "INFO"

NOTIFY_LEVELS = {CRITICAL, HIGH}

ALERT_TITLES: Dict[str, str] = {
    "critical_threat": "Critical security threat: {type}",
    "threat": "Security threat: {type}",
    "brute_force": "Brute force login attempts from {ip}",
    "high_rate": "High request rate from {ip}",
    "very_slow": "Very slow request on {path}",
}


def render_title(kind: str, **meta: Any) -> str:
    template = ALERT_TITLES.get(kind)
    if template is None:
        return kind.replace("_", " ").capitalize()
    try:
        return template.format(**meta)
    except (KeyError, IndexError, ValueError):
        return kind.replace("_", " ").capitalize()


def build_alert(
    level: str,
    title: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    created_at_ms: Optional[int] = None,
) -> Dict[str, Any]:
    alert: Dict[str, Any] = {
        "id": f"alert_{uuid.uuid4().hex[:12]}",
        "level": str(level or INFO).upper(),
        "title": title,
        "details": details or {},
        "created_at": isoformat_ms(created_at_ms if created_at_ms is not None else SystemClock().now_ms()),
    }
    if request_id:
        alert["request_id"] = request_id
    return alert


class NotificationDispatcher:
    """Deliver alerts to a notifier on a background thread.

    The queue is bounded; when it is full the alert is dropped rather than
    making the caller wait.
    """

    _STOP = object()

    def __init__(self, notifier: Notifier, maxsize: int = 256) -> None:
        self._notifier = notifier
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._thread = threading.Thread(target=self._run, name="secmon-notify", daemon=True)
        self._thread.start()

    def submit(self, alert: Dict[str, Any]) -> bool:
        try:
            self._queue.put_nowait(alert)
            return True
        except queue.Full:
            logger.warning("notification queue full, dropping alert %s", alert.get("id"))
            return False

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._notifier(item)
            except Exception as exc:
                logger.warning("alert notifier failed: %s", exc)
            finally:
                self._queue.task_done()

    def close(self, timeout: float = 5.0) -> None:
        try:
            self._queue.put(self._STOP, timeout=timeout)
        except queue.Full:
            return
        self._thread.join(timeout)


class AlertSink:
    """Bounded in-memory alert list, mirrored to a JSON file.

    Append and truncation happen under one lock so readers never see a
    half-trimmed list. The file is rewritten after the lock is released.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        max_alerts: int = 500,
        clock: Optional[SystemClock] = None,
        notifier: Optional[Notifier] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.path = path
        self.max_alerts = max(1, max_alerts)
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._dispatcher = dispatcher
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._version = 0
        self._written_version = 0
        self._alerts: List[Dict[str, Any]] = read_json_list(path, self.max_alerts) if path else []

    def emit(
        self,
        level: str,
        title: str,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Record an alert, persist the list and notify for CRITICAL/HIGH levels."""
        try:
            alert = build_alert(level, title, details, request_id, self._clock.now_ms())
        except Exception as exc:
            logger.warning("could not build alert %r: %s", title, exc)
            return None

        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > self.max_alerts:
                del self._alerts[: len(self._alerts) - self.max_alerts]
            self._version += 1
            version = self._version
            snapshot = list(self._alerts)

        self._persist(snapshot, version)

        if alert["level"] in NOTIFY_LEVELS:
            logger.warning("[SEC-ALERT] %s %s", alert["level"], title)
            self._notify(alert)
        else:
            logger.info("[SEC-ALERT] %s %s", alert["level"], title)
        return alert

    def _persist(self, snapshot: List[Dict[str, Any]], version: int) -> None:
        if not self.path:
            return
        with self._write_lock:
            # a newer snapshot already reached disk
            if version <= self._written_version:
                return
            try:
                write_json_atomic(self.path, snapshot)
                self._written_version = version
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("failed to persist alerts to %s: %s", self.path, exc)

    def _notify(self, alert: Dict[str, Any]) -> None:
        if self._dispatcher is not None:
            self._dispatcher.submit(alert)
            return
        if self._notifier is None:
            return
        try:
            self._notifier(alert)
        except Exception as exc:
            logger.warning("alert notifier failed: %s", exc)

    def get_alerts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return alerts newest first."""
        with self._lock:
            newest_first = list(reversed(self._alerts))
        if limit is not None and limit >= 0:
            return newest_first[:limit]
        return newest_first

    def find(self, alert_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for alert in reversed(self._alerts):
                if alert.get("id") == alert_id:
                    return alert
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
