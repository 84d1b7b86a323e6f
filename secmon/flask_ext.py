"""Flask hooks that feed requests through a RequestMonitor."""

from __future__ import annotations

from typing import Any, Optional

from flask import Flask, Response, g, jsonify, request

from secmon.monitor import RequestMonitor, RequestSnapshot, normalize_ip

EXTENSION_KEY = "secmon"


def _client_ip() -> str:
    return normalize_ip(request.remote_addr)


def _request_body() -> Any:
    body = request.get_json(silent=True)
    if body is not None:
        return body
    if request.form:
        return request.form.to_dict()
    return None


def snapshot_from_request() -> RequestSnapshot:
    """Build the monitor's view of the current Flask request."""
    return RequestSnapshot(
        method=request.method,
        path=request.path,
        ip=_client_ip(),
        user_agent=request.headers.get("User-Agent"),
        body=_request_body(),
        query=request.args.to_dict(),
        params=dict(request.view_args or {}),
        headers=request.headers,
    )


class SecurityMonitorExtension:
    """Install the blocklist gate and the monitoring hooks on a Flask app.

    Usage: SecurityMonitorExtension(app, monitor) or ext.init_app(app) later.
    """

    def __init__(self, app: Optional[Flask] = None, monitor: Optional[RequestMonitor] = None) -> None:
        self.monitor = monitor or RequestMonitor()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        # the blocklist gate must run before the monitoring hook
        app.before_request(self._enforce_blocklist)
        app.before_request(self._before_request)
        app.after_request(self._after_request)
        app.extensions[EXTENSION_KEY] = self

    def _enforce_blocklist(self) -> Optional[Response]:
        rejection = self.monitor.check_blocked(_client_ip())
        if rejection is None:
            return None
        response = jsonify(self.monitor.rejection_body(rejection))
        response.status_code = rejection.status_code
        return response

    def _before_request(self) -> None:
        try:
            snapshot = snapshot_from_request()
        except Exception:
            snapshot = RequestSnapshot(method=request.method, path=request.path, ip=_client_ip())
        g.secmon_ctx = self.monitor.before_request(snapshot)

    def _after_request(self, response: Response) -> Response:
        ctx = g.pop("secmon_ctx", None)
        if ctx is None:
            # rejected before monitoring started
            return response
        self.monitor.after_request(ctx, response.status_code)
        response.headers.setdefault("X-Request-Id", ctx.request_id)
        return response


def get_monitor(app: Flask) -> RequestMonitor:
    return app.extensions[EXTENSION_KEY].monitor

