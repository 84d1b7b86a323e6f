from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

SLACK_TIMEOUT_SECONDS = 3.0


def build_payload(alert: Dict[str, Any], dashboard_url: str) -> Dict[str, Any]:
    level = str(alert.get("level") or "HIGH").upper()
    color = "danger" if level == "CRITICAL" else "warning"
    details = alert.get("details") or {}
    request = details.get("request") or {}
    source = details.get("ip") or request.get("ip") or "-"
    endpoint = request.get("path") or details.get("path") or "-"

    attachment: Dict[str, Any] = {
        "fallback": alert.get("title") or "Security alert",
        "color": color,
        "fields": [
            {"title": "Level", "value": level, "short": True},
            {"title": "Source", "value": source, "short": True},
            {"title": "Endpoint", "value": endpoint, "short": True},
            {"title": "Alert ID", "value": alert.get("id") or "-", "short": True},
        ],
        "actions": [
            {"type": "button", "text": "Open Dashboard", "url": dashboard_url},
        ],
    }

    return {
        "text": f":rotating_light: *{alert.get('title') or 'Security alert'}*",
        "attachments": [attachment],
    }


class SlackNotifier:
    """Post high-severity alerts to a Slack incoming webhook."""

    def __init__(
        self,
        webhook_url: Optional[str],
        dashboard_url: str = "http://localhost:3000",
        timeout: float = SLACK_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.dashboard_url = dashboard_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def __call__(self, alert: Dict[str, Any]) -> bool:
        return self.notify(alert)

    def notify(self, alert: Dict[str, Any]) -> bool:
        """Send alert to Slack if a webhook is configured. Returns True on success."""
        if not self.webhook_url:
            return False
        payload = build_payload(alert, self.dashboard_url)
        try:
            response = self._session.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as exc:
            logger.warning("slack notification failed: %s", exc)
            return False
