"""Demo service protected by the security monitor.

Exposes a login endpoint (401 on bad credentials, so repeated failures trip
the brute-force tracker), a search endpoint that echoes its query, and the
admin API under /security.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from flask import Flask, jsonify, request

from secmon.admin import create_admin_blueprint
from secmon.config import MonitorConfig
from secmon.flask_ext import SecurityMonitorExtension
from secmon.monitor import RequestMonitor

DEMO_USERNAME = os.environ.get("DEMO_USERNAME", "admin")
DEMO_PASSWORD = os.environ.get("DEMO_PASSWORD", "password123")
ADMIN_PREFIX = "/security"


def create_app(config: Optional[MonitorConfig] = None, monitor: Optional[RequestMonitor] = None) -> Flask:
    app = Flask(__name__)
    monitor = monitor or RequestMonitor(config or MonitorConfig.from_env())
    SecurityMonitorExtension(app, monitor)
    app.register_blueprint(create_admin_blueprint(monitor), url_prefix=ADMIN_PREFIX)

    @app.route("/", methods=["GET"])
    def index() -> Any:
        return jsonify(
            {
                "message": "secmon demo service is running.",
                "endpoints": {
                    "POST /login": "Submit {username, password}. Failures return 401.",
                    "GET /search?q=term": "Simulates a database search endpoint.",
                    f"GET {ADMIN_PREFIX}/alerts": "Recent security alerts.",
                    f"GET {ADMIN_PREFIX}/blocklist": "Currently blocked IPs.",
                },
            }
        )

    @app.route("/login", methods=["POST"])
    def login() -> Any:
        payload = request.get_json(silent=True) or {}
        success = payload.get("username") == DEMO_USERNAME and payload.get("password") == DEMO_PASSWORD
        if not success:
            return jsonify({"status": "failure", "message": "Login failed"}), 401
        return jsonify({"status": "success", "message": "Login succeeded"})

    @app.route("/search", methods=["GET"])
    def search() -> Any:
        query = request.args.get("q", "")
        return jsonify(
            {
                "results": [{"title": "Demo result", "description": "This is a placeholder search response."}],
                "query": query,
            }
        )

    @app.route("/items/<item_id>", methods=["GET"])
    def item(item_id: str) -> Any:
        return jsonify({"id": item_id})

    @app.route("/health", methods=["GET"])
    def health() -> Any:
        return jsonify({"status": "ok", "blocked": len(monitor.blocklist), "alerts": len(monitor.sink)})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    port = int(os.environ.get("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port)
