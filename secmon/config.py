from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from secmon.blocklist import MAX_BLOCK_SECONDS

# Thresholds and durations, tunable through SEC_MON_* environment variables.
DEFAULT_FAILED_LOGIN_THRESHOLD = 5
DEFAULT_FAILED_LOGIN_WINDOW_SECONDS = 300
DEFAULT_API_MAX_REQUESTS = 100
DEFAULT_API_RATE_WINDOW_SECONDS = 60
DEFAULT_BLOCK_DURATION_SECONDS = 3600
DEFAULT_BRUTE_FORCE_BLOCK_SECONDS = 86400
DEFAULT_SLOW_REQUEST_MS = 1000
DEFAULT_VERY_SLOW_REQUEST_MS = 5000
DEFAULT_MAX_ALERTS = 500
DEFAULT_MAX_TRACKED_KEYS = 100_000
DEFAULT_EVENT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_EVENT_LOG_BACKUPS = 1
DEFAULT_DASHBOARD_URL = "http://localhost:3000"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(
    env: Mapping[str, str],
    name: str,
    default: int,
    minimum: int = 1,
    maximum: Optional[int] = None,
) -> int:
    """Read an integer knob, falling back to the default on junk or out-of-range values."""
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(float(str(raw).strip()))
    except (TypeError, ValueError, OverflowError):
        return default
    if value < minimum or (maximum is not None and value > maximum):
        return default
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    return str(raw).strip().lower() in _TRUTHY


@dataclass(frozen=True)
class MonitorConfig:
    failed_login_threshold: int = DEFAULT_FAILED_LOGIN_THRESHOLD
    failed_login_window_seconds: int = DEFAULT_FAILED_LOGIN_WINDOW_SECONDS
    api_max_requests: int = DEFAULT_API_MAX_REQUESTS
    api_rate_window_seconds: int = DEFAULT_API_RATE_WINDOW_SECONDS
    block_duration_seconds: int = DEFAULT_BLOCK_DURATION_SECONDS
    brute_force_block_seconds: int = DEFAULT_BRUTE_FORCE_BLOCK_SECONDS
    slow_request_ms: int = DEFAULT_SLOW_REQUEST_MS
    very_slow_request_ms: int = DEFAULT_VERY_SLOW_REQUEST_MS
    max_alerts: int = DEFAULT_MAX_ALERTS
    max_tracked_keys: int = DEFAULT_MAX_TRACKED_KEYS
    data_dir: str = field(default_factory=lambda: os.path.join(os.getcwd(), "observability"))
    event_log_max_bytes: int = DEFAULT_EVENT_LOG_MAX_BYTES
    event_log_backups: int = DEFAULT_EVENT_LOG_BACKUPS
    prometheus_enabled: bool = False
    slack_webhook_url: Optional[str] = None
    dashboard_url: str = DEFAULT_DASHBOARD_URL
    # required in the X-API-Key header of admin routes when set
    admin_api_key: Optional[str] = None

    @property
    def alerts_path(self) -> str:
        return os.path.join(self.data_dir, "security-alerts.json")

    @property
    def events_path(self) -> str:
        return os.path.join(self.data_dir, "security-events.log")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MonitorConfig":
        """Build the configuration once at startup from environment variables."""
        env = os.environ if environ is None else environ
        data_dir = (env.get("SEC_MON_DATA_DIR") or "").strip()
        return cls(
            failed_login_threshold=_env_int(
                env, "SEC_MON_FAILED_LOGIN_THRESHOLD", DEFAULT_FAILED_LOGIN_THRESHOLD
            ),
            failed_login_window_seconds=_env_int(
                env, "SEC_MON_FAILED_LOGIN_WINDOW_SEC", DEFAULT_FAILED_LOGIN_WINDOW_SECONDS
            ),
            api_max_requests=_env_int(env, "SEC_MON_MAX_RPM", DEFAULT_API_MAX_REQUESTS),
            api_rate_window_seconds=_env_int(
                env, "SEC_MON_RPM_WINDOW_SEC", DEFAULT_API_RATE_WINDOW_SECONDS
            ),
            block_duration_seconds=_env_int(
                env,
                "SEC_MON_BLOCK_DURATION_SEC",
                DEFAULT_BLOCK_DURATION_SECONDS,
                maximum=MAX_BLOCK_SECONDS,
            ),
            brute_force_block_seconds=_env_int(
                env,
                "SEC_MON_BRUTE_BLOCK_DURATION_SEC",
                DEFAULT_BRUTE_FORCE_BLOCK_SECONDS,
                maximum=MAX_BLOCK_SECONDS,
            ),
            slow_request_ms=_env_int(env, "SEC_MON_SLOW_REQUEST_MS", DEFAULT_SLOW_REQUEST_MS),
            very_slow_request_ms=_env_int(env, "SEC_MON_VERY_SLOW_MS", DEFAULT_VERY_SLOW_REQUEST_MS),
            max_alerts=_env_int(env, "SEC_MON_MAX_ALERTS", DEFAULT_MAX_ALERTS),
            max_tracked_keys=_env_int(env, "SEC_MON_MAX_TRACKED_KEYS", DEFAULT_MAX_TRACKED_KEYS),
            data_dir=os.path.abspath(data_dir) if data_dir else os.path.join(os.getcwd(), "observability"),
            event_log_max_bytes=_env_int(
                env, "SEC_MON_EVENT_LOG_MAX_BYTES", DEFAULT_EVENT_LOG_MAX_BYTES, minimum=0
            ),
            event_log_backups=_env_int(
                env, "SEC_MON_EVENT_LOG_BACKUPS", DEFAULT_EVENT_LOG_BACKUPS, minimum=0
            ),
            prometheus_enabled=_env_bool(env, "SEC_MON_PROMETHEUS"),
            slack_webhook_url=(env.get("SLACK_WEBHOOK_URL") or None),
            dashboard_url=env.get("DASHBOARD_URL") or DEFAULT_DASHBOARD_URL,
            admin_api_key=(env.get("METRICS_API_KEY") or env.get("API_KEY") or None),
        )
