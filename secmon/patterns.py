"""Signature matching against a serialized view of request fields."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from secmon.clock import SystemClock, isoformat_ms


class ThreatType(str, Enum):
    SQL_INJECTION = "sql_injection"
    XSS = "xss"
    PATH_TRAVERSAL = "path_traversal"
    COMMAND_INJECTION = "command_injection"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


SEVERITY_BY_TYPE: Dict[ThreatType, Severity] = {
    ThreatType.SQL_INJECTION: Severity.CRITICAL,
    ThreatType.COMMAND_INJECTION: Severity.CRITICAL,
    ThreatType.XSS: Severity.HIGH,
    ThreatType.PATH_TRAVERSAL: Severity.HIGH,
}

# Evaluated in this order; one event per matching signature.
DEFAULT_SIGNATURES: List[Tuple[ThreatType, re.Pattern]] = [
    (
        ThreatType.SQL_INJECTION,
        re.compile(r"(\bUNION\b|\bSELECT\b.*\bFROM\b|\bDROP\b|\bDELETE\b.*\bFROM\b)", re.IGNORECASE),
    ),
    (ThreatType.XSS, re.compile(r"<script|javascript:|on\w+\s*=", re.IGNORECASE)),
    (ThreatType.PATH_TRAVERSAL, re.compile(r"\.\.[/\\]")),
    (ThreatType.COMMAND_INJECTION, re.compile(r"[;&|`$]")),
]


def severity_for(threat_type: Any) -> Severity:
    try:
        return SEVERITY_BY_TYPE.get(ThreatType(threat_type), Severity.MEDIUM)
    except ValueError:
        return Severity.MEDIUM


@dataclass(frozen=True)
class RequestInfo:
    method: str = ""
    path: str = ""
    ip: str = "unknown"
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class ThreatEvent:
    type: ThreatType
    severity: Severity
    timestamp: str
    request: RequestInfo = field(default_factory=RequestInfo)
    pattern: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "pattern": self.pattern,
            "request": asdict(self.request),
        }


def build_snapshot(body: Any = None, query: Any = None, params: Any = None) -> str:
    """Serialize the structured request fields, or return "" if they can't be serialized."""
    try:
        return json.dumps({"body": body, "query": query, "params": params}, default=str)
    except (TypeError, ValueError, OverflowError, RecursionError):
        return ""


class ThreatMatcher:
    """Evaluate a request snapshot against a fixed list of named signatures.

    Usage: matcher = ThreatMatcher(); matcher.detect(snapshot, request_info) -> [ThreatEvent]
    """

    def __init__(
        self,
        signatures: Optional[List[Tuple[ThreatType, re.Pattern]]] = None,
        clock: Optional[SystemClock] = None,
    ) -> None:
        self.signatures = list(DEFAULT_SIGNATURES if signatures is None else signatures)
        self._clock = clock or SystemClock()

    def detect(self, snapshot: str, request: Optional[RequestInfo] = None) -> List[ThreatEvent]:
        if not snapshot or not isinstance(snapshot, str):
            return []
        info = request or RequestInfo()
        threats: List[ThreatEvent] = []
        for threat_type, pattern in self.signatures:
            try:
                if not pattern.search(snapshot):
                    continue
                threats.append(
                    ThreatEvent(
                        type=threat_type,
                        severity=severity_for(threat_type),
                        timestamp=isoformat_ms(self._clock.now_ms()),
                        request=info,
                        pattern=pattern.pattern,
                    )
                )
            except Exception:
                # a broken signature only disables itself
                continue
        return threats
