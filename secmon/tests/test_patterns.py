import re

from secmon.patterns import (
    RequestInfo,
    Severity,
    ThreatMatcher,
    ThreatType,
    build_snapshot,
    severity_for,
)


def _types(events):
    return {event.type for event in events}


def test_sql_injection_is_critical(clock):
    matcher = ThreatMatcher(clock=clock)
    snapshot = build_snapshot(query={"q": "1; DROP TABLE users; --"})
    events = matcher.detect(snapshot, RequestInfo("GET", "/search", "8.8.8.8", "curl"))
    sqli = [event for event in events if event.type == ThreatType.SQL_INJECTION]
    assert len(sqli) == 1
    assert sqli[0].severity == Severity.CRITICAL
    assert sqli[0].request.ip == "8.8.8.8"
    assert sqli[0].timestamp.endswith("Z")


def test_multiple_signatures_can_match_one_request():
    matcher = ThreatMatcher()
    snapshot = build_snapshot(body={"name": "x; DROP TABLE users; --"})
    events = matcher.detect(snapshot)
    assert _types(events) == {ThreatType.SQL_INJECTION, ThreatType.COMMAND_INJECTION}
    assert all(event.severity == Severity.CRITICAL for event in events)


def test_xss_is_high():
    events = ThreatMatcher().detect(build_snapshot(body={"comment": "<script>alert(1)</script>"}))
    assert _types(events) == {ThreatType.XSS}
    assert events[0].severity == Severity.HIGH


def test_path_traversal_is_high():
    events = ThreatMatcher().detect(build_snapshot(params={"file": "../../etc/passwd"}))
    assert _types(events) == {ThreatType.PATH_TRAVERSAL}
    assert events[0].severity == Severity.HIGH


def test_benign_request_has_no_threats():
    snapshot = build_snapshot(body={"username": "admin", "password": "hunter2"}, query={"q": "hello world"})
    assert ThreatMatcher().detect(snapshot) == []


def test_self_referential_payload_degrades_to_empty():
    body = {}
    body["self"] = body
    snapshot = build_snapshot(body=body)
    assert snapshot == ""
    assert ThreatMatcher().detect(snapshot) == []


def test_unserializable_values_fall_back_to_str():
    snapshot = build_snapshot(body={"blob": object()})
    assert snapshot.startswith("{")


def test_broken_signature_only_disables_itself():
    class Exploding:
        pattern = "boom"

        def search(self, text):
            raise RuntimeError("bad pattern")

    matcher = ThreatMatcher(
        signatures=[
            (ThreatType.XSS, Exploding()),
            (ThreatType.PATH_TRAVERSAL, re.compile(r"\.\.[/\\]")),
        ]
    )
    events = matcher.detect(build_snapshot(query={"f": "../secret"}))
    assert _types(events) == {ThreatType.PATH_TRAVERSAL}


def test_detect_tolerates_non_string_input():
    assert ThreatMatcher().detect(None) == []


def test_severity_mapping():
    assert severity_for("sql_injection") == Severity.CRITICAL
    assert severity_for("command_injection") == Severity.CRITICAL
    assert severity_for("xss") == Severity.HIGH
    assert severity_for("path_traversal") == Severity.HIGH
    assert severity_for("something_else") == Severity.MEDIUM


def test_threat_event_to_dict():
    event = ThreatMatcher().detect(build_snapshot(query={"q": "UNION SELECT 1"}), RequestInfo("GET", "/s", "1.1.1.1"))[0]
    data = event.to_dict()
    assert data["type"] == "sql_injection"
    assert data["severity"] == "CRITICAL"
    assert data["request"] == {"method": "GET", "path": "/s", "ip": "1.1.1.1", "user_agent": None}
