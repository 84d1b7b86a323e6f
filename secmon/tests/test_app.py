import dataclasses

import pytest

from secmon.app import create_app
from secmon.flask_ext import get_monitor
from secmon.monitor import RequestMonitor

ATTACKER = {"REMOTE_ADDR": "203.0.113.50"}
ADMIN = {"REMOTE_ADDR": "192.0.2.1"}


@pytest.fixture()
def app(config, clock):
    monitor = RequestMonitor(config, clock=clock)
    application = create_app(monitor=monitor)
    application.config.update(TESTING=True)
    yield application
    monitor.close()


@pytest.fixture()
def client(app):
    return app.test_client()


def test_normal_request_passes_through(client, app):
    response = client.get("/search", query_string={"q": "hello"}, environ_base=ATTACKER)
    assert response.status_code == 200
    assert response.get_json()["query"] == "hello"
    assert response.headers["X-Request-Id"]
    assert get_monitor(app).metrics_snapshot()["requests_total"] == 1


def test_inbound_request_id_is_echoed(client):
    response = client.get("/", headers={"X-Request-Id": "trace-42"}, environ_base=ATTACKER)
    assert response.headers["X-Request-Id"] == "trace-42"


def test_sql_injection_blocks_subsequent_requests(client):
    first = client.get("/search", query_string={"q": "1; DROP TABLE users; --"}, environ_base=ATTACKER)
    # monitoring is observational: the offending request itself still completes
    assert first.status_code == 200

    second = client.get("/search", query_string={"q": "hello"}, environ_base=ATTACKER)
    assert second.status_code == 403
    body = second.get_json()
    assert body["ok"] is False
    assert body["error"] == "IP temporarily blocked"
    assert body["blocked_until"].endswith("Z")

    other = client.get("/search", query_string={"q": "hello"}, environ_base=ADMIN)
    assert other.status_code == 200


def test_blocked_requests_skip_monitoring(client, app):
    monitor = get_monitor(app)
    monitor.block_ip("203.0.113.50", 60)
    response = client.get("/search", query_string={"q": "<script>"}, environ_base=ATTACKER)
    assert response.status_code == 403
    assert monitor.get_alerts() == []
    assert "requests_total" not in monitor.metrics_snapshot()
    assert monitor.metrics_snapshot()["requests_rejected_total"] == 1


def test_route_params_are_scanned(client, app):
    client.get("/items/x;rm", environ_base=ATTACKER)
    alerts = get_monitor(app).get_alerts()
    assert any(alert["details"].get("type") == "command_injection" for alert in alerts)


def test_failed_logins_escalate_to_block(client):
    for _ in range(5):
        response = client.post("/login", json={"username": "admin", "password": "nope"}, environ_base=ATTACKER)
        assert response.status_code == 401
    blocked = client.post("/login", json={"username": "admin", "password": "password123"}, environ_base=ATTACKER)
    assert blocked.status_code == 403


def test_successful_login_is_not_counted(client, app):
    for _ in range(6):
        response = client.post(
            "/login", json={"username": "admin", "password": "password123"}, environ_base=ATTACKER
        )
        assert response.status_code == 200
    assert get_monitor(app).brute_force.recent_failures("203.0.113.50") == 0


def test_admin_views_and_unblock(client):
    client.get("/search", query_string={"q": "UNION SELECT password FROM users"}, environ_base=ATTACKER)

    alerts = client.get("/security/alerts", environ_base=ADMIN).get_json()
    assert alerts["count"] >= 1
    assert alerts["alerts"][0]["level"] == "CRITICAL"

    alert_id = alerts["alerts"][0]["id"]
    assert client.get(f"/security/alerts/{alert_id}", environ_base=ADMIN).get_json()["id"] == alert_id
    assert client.get("/security/alerts/missing", environ_base=ADMIN).status_code == 404

    blocked = client.get("/security/blocklist", environ_base=ADMIN).get_json()["blocked"]
    assert [entry["ip"] for entry in blocked] == ["203.0.113.50"]

    response = client.post("/security/unblock", json={"ip": "203.0.113.50"}, environ_base=ADMIN)
    assert response.get_json()["status"] == "unblocked"
    assert client.get("/search", query_string={"q": "hi"}, environ_base=ATTACKER).status_code == 200


def test_admin_manual_block_and_delete(client):
    response = client.post("/security/block", json={"ip": "198.51.100.9", "duration": 30}, environ_base=ADMIN)
    assert response.get_json()["status"] == "blocked"
    assert client.get("/", environ_base={"REMOTE_ADDR": "198.51.100.9"}).status_code == 403

    deleted = client.delete("/security/blocklist/198.51.100.9", environ_base=ADMIN)
    assert deleted.get_json()["status"] == "unblocked"
    assert client.get("/", environ_base={"REMOTE_ADDR": "198.51.100.9"}).status_code == 200


def test_admin_requires_ip(client):
    assert client.post("/security/unblock", json={}, environ_base=ADMIN).status_code == 400
    assert client.post("/security/block", json={}, environ_base=ADMIN).status_code == 400


def test_admin_metrics(client):
    client.get("/missing-page", environ_base=ATTACKER)
    metrics = client.get("/security/metrics", environ_base=ADMIN).get_json()
    assert metrics["status_404"] == 1
    assert metrics["errors_total"] == 1
    assert client.get("/security/metrics/prometheus", environ_base=ADMIN).status_code == 404


def test_admin_allows_cross_origin_polling(client):
    response = client.get("/security/alerts", headers={"Origin": "http://localhost:3000"}, environ_base=ADMIN)
    assert response.headers.get("Access-Control-Allow-Origin") in {"*", "http://localhost:3000"}


def test_oversized_admin_block_still_rejects_with_403(client):
    response = client.post("/security/block", json={"ip": "192.0.2.77", "duration": 10**12}, environ_base=ADMIN)
    assert response.status_code == 200
    assert response.get_json()["blocked_until"].endswith("Z")

    blocked = client.get("/", environ_base={"REMOTE_ADDR": "192.0.2.77"})
    assert blocked.status_code == 403
    assert blocked.get_json()["error"] == "IP temporarily blocked"
    assert client.get("/security/blocklist", environ_base=ADMIN).get_json()["blocked"][0]["ip"] == "192.0.2.77"


@pytest.fixture()
def keyed_client(config, clock):
    monitor = RequestMonitor(dataclasses.replace(config, admin_api_key="s3cret"), clock=clock)
    application = create_app(monitor=monitor)
    application.config.update(TESTING=True)
    yield application.test_client()
    monitor.close()


def test_admin_routes_require_api_key_when_configured(keyed_client):
    assert keyed_client.get("/security/alerts", environ_base=ADMIN).status_code == 401
    assert keyed_client.get("/security/blocklist", environ_base=ADMIN).status_code == 401

    denied = keyed_client.post("/security/block", json={"ip": "192.0.2.77"}, environ_base=ADMIN)
    assert denied.status_code == 401
    assert denied.get_json() == {"ok": False, "error": "Unauthorized"}
    assert keyed_client.get("/", environ_base={"REMOTE_ADDR": "192.0.2.77"}).status_code == 200

    wrong = keyed_client.post(
        "/security/unblock", json={"ip": "192.0.2.77"}, headers={"X-API-Key": "guess"}, environ_base=ADMIN
    )
    assert wrong.status_code == 401


def test_admin_routes_accept_the_api_key(keyed_client):
    headers = {"X-API-Key": "s3cret"}
    assert keyed_client.get("/security/alerts", headers=headers, environ_base=ADMIN).status_code == 200
    blocked = keyed_client.post("/security/block", json={"ip": "192.0.2.77"}, headers=headers, environ_base=ADMIN)
    assert blocked.status_code == 200
    assert keyed_client.get("/", environ_base={"REMOTE_ADDR": "192.0.2.77"}).status_code == 403
    listing = keyed_client.get("/security/blocklist", headers=headers, environ_base=ADMIN)
    assert [entry["ip"] for entry in listing.get_json()["blocked"]] == ["192.0.2.77"]


def test_broken_matcher_does_not_break_the_response(config, clock):
    class BrokenMatcher:
        def detect(self, snapshot, request=None):
            raise RuntimeError("regex engine exploded")

    monitor = RequestMonitor(config, clock=clock, matcher=BrokenMatcher())
    client = create_app(monitor=monitor).test_client()
    response = client.get("/search", query_string={"q": "UNION SELECT x FROM y"}, environ_base=ATTACKER)
    assert response.status_code == 200
    assert response.get_json()["query"] == "UNION SELECT x FROM y"
    assert monitor.metrics_snapshot()["monitor_errors_detection"] == 1
    monitor.close()


def test_broken_event_log_does_not_break_the_response(client, app):
    monitor = get_monitor(app)

    def broken(*args, **kwargs):
        raise OSError("read-only filesystem")

    monitor.event_log.log = broken
    response = client.get("/search", query_string={"q": "1; DROP TABLE users; --"}, environ_base=ATTACKER)
    assert response.status_code == 200
    assert monitor.metrics_snapshot()["monitor_errors_threat_handling"] >= 1
