"""
Longitudinal privacy profile.

Counts which categories the user keeps and which they redact across exports
and turns the counters into a report once enough sessions exist.
"""

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .config import Detection
from .logger import LoggerMixin

STORE_KEY = "mirage_privacy_dna"
HISTORY_LIMIT = 50
MIN_SCANS = 3

TOLERANCE_GUARDIAN = "guardian"
TOLERANCE_BALANCED = "balanced"
TOLERANCE_CASUAL = "casual"


@dataclass(frozen=True)
class SessionSummary:
    timestamp: str
    audience: str
    redacted_count: int


@dataclass(frozen=True)
class PrivacyProfileRecord:
    """Accumulated counters; replaced, never mutated, on every update."""
    total_scans: int = 0
    type_accepted: Dict[str, int] = field(default_factory=dict)
    type_rejected: Dict[str, int] = field(default_factory=dict)
    audience_usage: Dict[str, int] = field(default_factory=dict)
    sessions: List[SessionSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PrivacyProfileRecord":
        return cls(
            total_scans=int(data.get("total_scans", 0)),
            type_accepted=dict(data.get("type_accepted", {})),
            type_rejected=dict(data.get("type_rejected", {})),
            audience_usage=dict(data.get("audience_usage", {})),
            sessions=[SessionSummary(**s) for s in data.get("sessions", [])],
        )


@dataclass
class PrivacyProfileReport:
    status: str  # "ready" or "insufficient_data"
    total_scans: int
    scans_needed: int = 0
    health_score: int = 0
    risk_tolerance: str = ""
    top_audience: str = ""
    most_common_leak: str = ""
    sensitivity_by_type: Dict[str, int] = field(default_factory=dict)
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def record_session(
    record: PrivacyProfileRecord,
    detections: Iterable[Detection],
    decisions: Mapping[str, bool],
    audience: str,
    timestamp: Optional[str] = None
) -> PrivacyProfileRecord:
    """
    Fold one export into the counters.

    A detection whose decision is True counts as rejected (redacted), anything
    else as accepted. Returns a new record; the input is left untouched.
    """
    accepted = dict(record.type_accepted)
    rejected = dict(record.type_rejected)
    usage = dict(record.audience_usage)
    usage[audience] = usage.get(audience, 0) + 1

    for d in detections:
        key = d.category.value
        if decisions.get(d.id, False):
            rejected[key] = rejected.get(key, 0) + 1
        else:
            accepted[key] = accepted.get(key, 0) + 1

    summary = SessionSummary(
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        audience=audience,
        redacted_count=sum(1 for v in decisions.values() if v),
    )
    sessions = (list(record.sessions) + [summary])[-HISTORY_LIMIT:]

    return replace(
        record,
        total_scans=record.total_scans + 1,
        type_accepted=accepted,
        type_rejected=rejected,
        audience_usage=usage,
        sessions=sessions,
    )


def risk_tolerance(health_score: int) -> str:
    if health_score > 80:
        return TOLERANCE_GUARDIAN
    if health_score < 40:
        return TOLERANCE_CASUAL
    return TOLERANCE_BALANCED


def build_report(record: PrivacyProfileRecord) -> PrivacyProfileReport:
    """Summarize the counters; needs at least three recorded scans."""
    if record.total_scans < MIN_SCANS:
        return PrivacyProfileReport(
            status="insufficient_data",
            total_scans=record.total_scans,
            scans_needed=MIN_SCANS - record.total_scans,
        )

    sensitivity: Dict[str, int] = {}
    most_leaked, max_leaked = "none", 0
    for category in sorted(set(record.type_accepted) | set(record.type_rejected)):
        accepted = record.type_accepted.get(category, 0)
        rejected = record.type_rejected.get(category, 0)
        total = accepted + rejected
        sensitivity[category] = round(100 * rejected / total) if total else 0
        if accepted > max_leaked:
            most_leaked, max_leaked = category, accepted

    total_rejected = sum(record.type_rejected.values())
    total_accepted = sum(record.type_accepted.values())
    total = total_rejected + total_accepted
    health = round(100 * total_rejected / total) if total else 0

    top_audience = "unknown"
    if record.audience_usage:
        top_audience = max(record.audience_usage.items(), key=lambda item: item[1])[0]

    insights = [
        "You have a strong preference for redacting PII."
        if health > 70 else "You tend to leave some personal data exposed."
    ]
    if "gps_location" in sensitivity:
        insights.append(
            "You often share location metadata."
            if sensitivity["gps_location"] < 50 else "You consistently strip location data."
        )

    recommendations = [
        "Enable auto-redaction for all PII types."
        if health < 50 else "Keep up the good work on privacy!",
        "Review your 'Social Media' sharing habits.",
    ]

    return PrivacyProfileReport(
        status="ready",
        total_scans=record.total_scans,
        health_score=health,
        risk_tolerance=risk_tolerance(health),
        top_audience=top_audience,
        most_common_leak=most_leaked,
        sensitivity_by_type=sensitivity,
        insights=insights,
        recommendations=recommendations,
    )


class JsonProfileStore:
    """Key-value store persisted as a single JSON document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._read_all().get(key)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        data = self._read_all()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)


class InMemoryProfileStore:
    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = value


class PrivacyProfileAggregator(LoggerMixin):
    """Loads, updates and saves the profile record through an injected store."""

    def __init__(self, store: Any, key: str = STORE_KEY):
        self.store = store
        self.key = key

    def load(self) -> PrivacyProfileRecord:
        data = self.store.get(self.key)
        if not data:
            return PrivacyProfileRecord()
        return PrivacyProfileRecord.from_dict(data)

    def record(
        self,
        detections: List[Detection],
        decisions: Mapping[str, bool],
        audience: str
    ) -> PrivacyProfileRecord:
        updated = record_session(self.load(), detections, decisions, audience)
        self.store.set(self.key, updated.to_dict())
        self.log_info(f"Privacy profile updated ({updated.total_scans} scans)")
        return updated

    def report(self) -> PrivacyProfileReport:
        return build_report(self.load())
