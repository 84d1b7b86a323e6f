"""Admin endpoints for the security dashboard."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Optional

from flask import Blueprint, jsonify, make_response, request
from flask_cors import CORS

from secmon.monitor import RequestMonitor

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def _int_arg(raw: Any, default: int) -> int:
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def create_admin_blueprint(monitor: RequestMonitor, name: str = "secmon_admin") -> Blueprint:
    bp = Blueprint(name, __name__)
    CORS(bp)  # let the dashboard running on a different port poll these routes
    if not monitor.config.admin_api_key:
        logger.warning("security admin routes are open: set METRICS_API_KEY or API_KEY to protect them")

    @bp.before_request
    def require_api_key() -> Optional[Any]:
        expected = monitor.config.admin_api_key
        # preflight requests carry no credentials
        if not expected or request.method == "OPTIONS":
            return None
        supplied = request.headers.get(API_KEY_HEADER, "")
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            return jsonify({"ok": False, "error": "Unauthorized"}), 401
        return None

    @bp.route("/alerts", methods=["GET"])
    def alerts() -> Any:
        """Current alerts, newest first."""
        limit = request.args.get("limit")
        items = monitor.get_alerts(_int_arg(limit, -1) if limit is not None else None)
        return jsonify({"alerts": items, "count": len(items)})

    @bp.route("/alerts/<alert_id>", methods=["GET"])
    def alert_by_id(alert_id: str) -> Any:
        alert = monitor.find_alert(alert_id)
        if not alert:
            return jsonify({"status": "not_found", "id": alert_id}), 404
        return jsonify(alert)

    @bp.route("/blocklist", methods=["GET"])
    def blocklist() -> Any:
        return jsonify({"blocked": monitor.get_blocklist()})

    @bp.route("/block", methods=["POST"])
    def block() -> Any:
        """Manually block an IP for ``duration`` seconds (defaults to the generic block)."""
        payload = request.get_json(silent=True) or {}
        ip = payload.get("ip") or request.args.get("ip")
        if not ip:
            return jsonify({"status": "error", "message": "ip is required"}), 400
        duration = _int_arg(payload.get("duration") or request.args.get("duration"), 0)
        entry = monitor.block_ip(ip, duration)
        if entry is None:
            return jsonify({"status": "error", "message": "block failed"}), 500
        return jsonify({"status": "blocked", **entry})

    @bp.route("/unblock", methods=["POST"])
    def unblock() -> Any:
        payload = request.get_json(silent=True) or {}
        ip = payload.get("ip") or request.args.get("ip")
        if not ip:
            return jsonify({"status": "error", "message": "ip is required"}), 400
        removed = monitor.unblock_ip(ip)
        return jsonify({"status": "unblocked" if removed else "not_blocked", "ip": ip})

    @bp.route("/blocklist/<path:ip>", methods=["DELETE"])
    def unblock_by_path(ip: str) -> Any:
        removed = monitor.unblock_ip(ip)
        return jsonify({"status": "unblocked" if removed else "not_blocked", "ip": ip})

    @bp.route("/metrics", methods=["GET"])
    def metrics() -> Any:
        return jsonify(monitor.metrics_snapshot())

    @bp.route("/metrics/prometheus", methods=["GET"])
    def prometheus_metrics() -> Any:
        body = monitor.prometheus_metrics()
        if body is None:
            return jsonify({"status": "disabled"}), 404
        response = make_response(body)
        response.headers["Content-Type"] = "text/plain; version=0.0.4; charset=utf-8"
        return response

    return bp
