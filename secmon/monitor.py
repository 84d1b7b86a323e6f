"""Request security monitor.

Wires the detectors together around a request's lifecycle:

    check_blocked(ip)          -> reject blocked IPs before anything else
    before_request(snapshot)   -> threat scan + per-IP rate observation
    after_request(ctx, status) -> counters, failed-login tracking, slow requests

Every public method folds internal failures into "carry on": a broken
detector is counted and logged, and the request proceeds as if monitoring
were absent. The only outcome that changes the request flow is the 403
rejection of a blocked IP.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from secmon.alerts import CRITICAL, HIGH, WARN, AlertSink, NotificationDispatcher, Notifier, render_title
from secmon.blocklist import Blocklist, BlockEntry
from secmon.bruteforce import BruteForceTracker
from secmon.clock import SystemClock, isoformat_ms
from secmon.config import MonitorConfig
from secmon.dedupe import TimeDedupe
from secmon.eventlog import IP_BLOCKED, IP_UNBLOCKED, SLOW_REQUEST, THREAT_DETECTED, SecurityEventLog
from secmon.metrics import MetricCounter, PrometheusMetrics
from secmon.patterns import RequestInfo, Severity, ThreatEvent, ThreatMatcher, build_snapshot
from secmon.sliding_window import SlidingWindowCounter
from secmon.slack import SlackNotifier

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
BLOCKED_MESSAGE = "IP temporarily blocked"


def normalize_ip(raw: Optional[str]) -> str:
    """Strip the IPv4-mapped IPv6 prefix; missing addresses become "unknown"."""
    if not raw:
        return "unknown"
    ip = str(raw).strip()
    if ip.lower().startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip or "unknown"


def _header(headers: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    if not headers:
        return None
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if str(key).lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class RequestSnapshot:
    """The narrow view of a request the monitor needs from a web framework."""

    method: str
    path: str
    ip: str
    user_agent: Optional[str] = None
    body: Any = None
    query: Any = None
    params: Any = None
    headers: Mapping[str, Any] = field(default_factory=dict)

    def serialized(self) -> str:
        return build_snapshot(self.body, self.query, self.params)


@dataclass
class RequestContext:
    request_id: str
    ip: str
    method: str
    path: str
    started_ms: int
    threats: List[ThreatEvent] = field(default_factory=list)


@dataclass(frozen=True)
class Rejection:
    ip: str
    blocked_until_ms: int
    status_code: int = 403

    def body(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": BLOCKED_MESSAGE,
            "blocked_until": isoformat_ms(self.blocked_until_ms),
        }


class RequestMonitor:
    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        clock: Optional[SystemClock] = None,
        notifier: Optional[Notifier] = None,
        async_notify: bool = True,
        matcher: Optional[ThreatMatcher] = None,
    ) -> None:
        self.config = config or MonitorConfig.from_env()
        self.clock = clock or SystemClock()
        cfg = self.config

        if notifier is None and cfg.slack_webhook_url:
            notifier = SlackNotifier(cfg.slack_webhook_url, cfg.dashboard_url)
        self._dispatcher = NotificationDispatcher(notifier) if notifier is not None and async_notify else None

        self.metrics = MetricCounter()
        self.prometheus = PrometheusMetrics() if cfg.prometheus_enabled else None
        self.matcher = matcher or ThreatMatcher(clock=self.clock)
        self.blocklist = Blocklist(self.clock)
        self.request_buckets = SlidingWindowCounter(self.clock, max_keys=cfg.max_tracked_keys)
        self.failed_logins = SlidingWindowCounter(self.clock, max_keys=cfg.max_tracked_keys)
        self.sink = AlertSink(
            cfg.alerts_path,
            max_alerts=cfg.max_alerts,
            clock=self.clock,
            notifier=notifier,
            dispatcher=self._dispatcher,
        )
        self.event_log = SecurityEventLog(
            cfg.events_path,
            self.clock,
            max_bytes=cfg.event_log_max_bytes,
            backups=cfg.event_log_backups,
        )
        self.brute_force = BruteForceTracker(
            self.failed_logins,
            self.blocklist,
            self.sink,
            self.event_log,
            threshold=cfg.failed_login_threshold,
            window_seconds=cfg.failed_login_window_seconds,
            block_seconds=cfg.brute_force_block_seconds,
        )
        # one high-rate alert per IP per rate window
        self._rate_alerts = TimeDedupe(cfg.api_rate_window_seconds, self.clock)

    # -- never-throw policy -------------------------------------------------

    def _guard(self, check: str, func: Callable[..., Any], *args: Any, default: Any = None, **kwargs: Any) -> Any:
        """Run one check; any exception becomes ``default`` and is counted under ``check``."""
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            self._record_failure(check, exc)
            return default

    def _record_failure(self, check: str, exc: BaseException) -> None:
        try:
            self.metrics.increment("monitor_errors_total")
            self.metrics.increment(f"monitor_errors_{check}")
            logger.debug("security monitor check %s failed: %r", check, exc)
        except Exception:
            pass

    # -- blocking hook ------------------------------------------------------

    def check_blocked(self, ip: str) -> Optional[Rejection]:
        """Return a Rejection if ``ip`` is currently blocked, else None."""
        return self._guard("blocklist", self._check_blocked, normalize_ip(ip))

    def rejection_body(self, rejection: Rejection) -> Dict[str, Any]:
        """JSON body for a rejected request; drops ``blocked_until`` if it cannot be rendered."""
        return self._guard(
            "blocklist", rejection.body, default={"ok": False, "error": BLOCKED_MESSAGE}
        )

    def _check_blocked(self, ip: str) -> Optional[Rejection]:
        until = self.blocklist.expires_at(ip)
        if until is None:
            return None
        self.metrics.increment("requests_rejected_total")
        return Rejection(ip=ip, blocked_until_ms=until)

    # -- pre-handling -------------------------------------------------------

    def new_request_id(self, headers: Optional[Mapping[str, Any]] = None) -> str:
        return _header(headers, REQUEST_ID_HEADER) or uuid.uuid4().hex

    def before_request(self, snapshot: RequestSnapshot) -> RequestContext:
        ip = normalize_ip(getattr(snapshot, "ip", None))
        request_id = self._guard("request_id", self.new_request_id, getattr(snapshot, "headers", None))
        ctx = RequestContext(
            request_id=request_id or uuid.uuid4().hex,
            ip=ip,
            method=str(getattr(snapshot, "method", "") or ""),
            path=str(getattr(snapshot, "path", "") or ""),
            started_ms=self._guard("clock", self.clock.now_ms, default=0),
        )
        self._guard("metrics", self._count_request)
        ctx.threats = self._guard("detection", self.detect_threats, snapshot, ip, default=[])
        for threat in ctx.threats:
            self._guard("threat_handling", self._handle_threat, threat, ctx)
        self._guard("rate", self.observe_request_rate, ip)
        return ctx

    def _count_request(self) -> None:
        self.metrics.increment("requests_total")
        if self.prometheus is not None:
            self.prometheus.requests_total.inc()

    def detect_threats(self, snapshot: RequestSnapshot, ip: Optional[str] = None) -> List[ThreatEvent]:
        info = RequestInfo(
            method=snapshot.method,
            path=snapshot.path,
            ip=ip or normalize_ip(snapshot.ip),
            user_agent=snapshot.user_agent,
        )
        return self.matcher.detect(snapshot.serialized(), info)

    def _handle_threat(self, threat: ThreatEvent, ctx: RequestContext) -> None:
        details = threat.to_dict()
        self.event_log.log(THREAT_DETECTED, threat=details, request_id=ctx.request_id, action="OBSERVED")
        self.metrics.increment(f"threats_{threat.type.value}")
        if threat.severity == Severity.CRITICAL:
            self._block(ctx.ip, self.config.block_duration_seconds, reason=threat.type.value)
            self.sink.emit(
                CRITICAL,
                render_title("critical_threat", type=threat.type.value),
                details,
                request_id=ctx.request_id,
            )
        elif threat.severity == Severity.HIGH:
            self.sink.emit(
                HIGH,
                render_title("threat", type=threat.type.value),
                details,
                request_id=ctx.request_id,
            )

    def observe_request_rate(self, ip: str) -> int:
        """Count this request against the IP's rate window; alert (never block) past the soft limit."""
        if not ip:
            return 0
        window = self.config.api_rate_window_seconds
        count = self.request_buckets.observe(ip, window)
        if count > self.config.api_max_requests and self._rate_alerts.first_seen(ip):
            self.sink.emit(
                WARN,
                render_title("high_rate", ip=ip),
                {"ip": ip, "count": count, "window_seconds": window},
            )
        return count

    # -- post-handling ------------------------------------------------------

    def after_request(self, ctx: Optional[RequestContext], status_code: int) -> Optional[int]:
        """Finish monitoring a request. Returns the elapsed milliseconds, or None."""
        if ctx is None:
            return None
        duration = self._guard("clock", self._elapsed_ms, ctx)
        if duration is None:
            return None
        code = self._guard("metrics", self._record_response, status_code, duration, default=0)
        if code >= 400:
            self._guard("metrics", self.metrics.increment, "errors_total")
            if code == 401:
                self._guard("bruteforce", self.brute_force.report_failure, ctx.ip, ctx.request_id)
        if duration > self.config.slow_request_ms:
            self._guard("slow_request", self._report_slow_request, ctx, duration)
        return duration

    def _elapsed_ms(self, ctx: RequestContext) -> int:
        return max(0, self.clock.now_ms() - ctx.started_ms)

    def _record_response(self, status_code: int, duration: int) -> int:
        code = int(status_code)
        self.metrics.increment("request_duration_ms", duration)
        self.metrics.set("last_request_duration_ms", duration)
        self.metrics.increment(f"status_{code}")
        if self.prometheus is not None:
            self.prometheus.observe_response(code, duration)
        return code

    def _report_slow_request(self, ctx: RequestContext, duration: int) -> None:
        self.event_log.log(
            SLOW_REQUEST,
            request_id=ctx.request_id,
            path=ctx.path,
            method=ctx.method,
            duration_ms=duration,
            ip=ctx.ip,
        )
        if duration > self.config.very_slow_request_ms:
            self.sink.emit(
                WARN,
                render_title("very_slow", path=ctx.path),
                {"path": ctx.path, "method": ctx.method, "duration_ms": duration},
                request_id=ctx.request_id,
            )

    def report_auth_failure(self, ip: str, request_id: Optional[str] = None) -> bool:
        """Entry point for auth layers: one rejected login from ``ip``."""
        return bool(self._guard("bruteforce", self.brute_force.report_failure, normalize_ip(ip), request_id))

    # -- blocking -----------------------------------------------------------

    def _block(self, ip: str, seconds: int, reason: str) -> BlockEntry:
        entry = self.blocklist.block(ip, seconds)
        # the block stands even if the record of it cannot be written
        self._guard("eventlog", self._log_block, entry, reason)
        return entry

    def _log_block(self, entry: BlockEntry, reason: str) -> None:
        self.event_log.log(IP_BLOCKED, ip=entry.ip, until=isoformat_ms(entry.expires_at_ms), reason=reason)

    def block_ip(self, ip: str, seconds: Optional[int] = None, reason: str = "manual") -> Optional[Dict[str, Any]]:
        duration = seconds if seconds and seconds > 0 else self.config.block_duration_seconds
        return self._guard("blocklist", self._block_to_dict, normalize_ip(ip), duration, reason)

    def _block_to_dict(self, ip: str, seconds: int, reason: str) -> Dict[str, Any]:
        return self._block(ip, seconds, reason).to_dict()

    def unblock_ip(self, ip: str) -> bool:
        return bool(self._guard("blocklist", self._unblock, normalize_ip(ip), default=False))

    def _unblock(self, ip: str) -> bool:
        removed = self.blocklist.unblock(ip)
        self.event_log.log(IP_UNBLOCKED, ip=ip, was_blocked=removed)
        return removed

    # -- admin views --------------------------------------------------------

    def get_alerts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._guard("alerts", self.sink.get_alerts, limit, default=[])

    def get_blocklist(self) -> List[Dict[str, Any]]:
        return self._guard("blocklist", self._blocklist_view, default=[])

    def _blocklist_view(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.blocklist.list_active()]

    def find_alert(self, alert_id: str) -> Optional[Dict[str, Any]]:
        return self._guard("alerts", self.sink.find, alert_id)

    def metrics_snapshot(self) -> Dict[str, float]:
        return self._guard("metrics", self.metrics.snapshot, default={})

    def prometheus_metrics(self) -> Optional[bytes]:
        if self.prometheus is None:
            return None
        return self._guard("metrics", self.prometheus.render)

    def close(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.close()
