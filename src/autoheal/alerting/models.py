"""
Alert and incident data model.

Alert events are immutable records arriving from the feed. An incident is
the deduplicated, aggregated view of one or more related alert events and
carries the lifecycle state driven by the remediation engine.
"""
import copy
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "AlertSeverity":
        """Parse a severity label, mapping common synonyms."""
        if isinstance(value, AlertSeverity):
            return value
        text = str(value or "").strip().lower()
        return _SEVERITY_ALIASES.get(text, cls.WARNING)


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}

_SEVERITY_ALIASES = {
    "critical": AlertSeverity.CRITICAL,
    "page": AlertSeverity.CRITICAL,
    "high": AlertSeverity.CRITICAL,
    "error": AlertSeverity.CRITICAL,
    "warning": AlertSeverity.WARNING,
    "warn": AlertSeverity.WARNING,
    "medium": AlertSeverity.WARNING,
    "info": AlertSeverity.INFO,
    "low": AlertSeverity.INFO,
    "none": AlertSeverity.INFO,
}


def max_severity(severities: Iterable[AlertSeverity]) -> AlertSeverity:
    """Highest severity of a collection (INFO for an empty one)."""
    return max(severities, key=lambda s: s.rank, default=AlertSeverity.INFO)


class AlertState(str, Enum):
    """Firing state of an alert event."""
    FIRING = "firing"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class AlertEvent:
    """
    A single alert notification from the feed.

    Attributes:
        name: Alert name (e.g. "ApplicationDown")
        severity: Alert severity
        labels: Label set identifying the alert
        state: Firing or resolved
        timestamp: When the alert changed state
    """
    name: str
    severity: AlertSeverity
    labels: Mapping[str, str]
    state: AlertState
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def fingerprint(self) -> str:
        """Identity of this constituent alert (name plus the full label set)."""
        label_str = ",".join(f"{k}={v}" for k, v in sorted(self.labels.items()))
        return hashlib.sha256(f"{self.name}|{label_str}".encode()).hexdigest()[:16]

    @property
    def is_firing(self) -> bool:
        return self.state == AlertState.FIRING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "severity": self.severity.value,
            "labels": dict(self.labels),
            "state": self.state.value,
            "timestamp": self.timestamp.isoformat(),
            "fingerprint": self.fingerprint,
        }


class IncidentState(str, Enum):
    """Incident lifecycle state."""
    OPEN = "open"
    MITIGATING = "mitigating"
    RESOLVED = "resolved"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (IncidentState.RESOLVED, IncidentState.ESCALATED)


def incident_identity(name: str, labels: Mapping[str, str], identity_labels: Iterable[str]) -> str:
    """
    Deterministic incident id for an alert.

    Only resource-identifying labels take part, so volatile labels such as
    instance addresses do not split one incident into many.
    """
    parts = [name]
    for key in sorted(identity_labels):
        if key in labels:
            parts.append(f"{key}={labels[key]}")
    digest = hashlib.sha256("|".join(parts).encode()).hexdigest()[:12]
    return f"inc-{digest}"


@dataclass
class Incident:
    """
    Aggregated view of related alert events.

    Attributes:
        incident_id: Unique id (identity plus a per-identity sequence number)
        identity: Hash of the alert name and resource-identifying labels
        alert_name: Name shared by all constituent alerts
        resource: Target resource, None if the alerts carry no resource label
        severity: Max severity across constituent alerts
        state: Lifecycle state
        alerts: Constituent alert events, append-only
        created_at: When the first firing event arrived
        updated_at: Last time any constituent changed
        last_firing_at: Last firing event time (drives the grace period)
        closed_at: When the automated lifecycle ended
        escalation_reason: Why automation handed off, if escalated
    """
    incident_id: str
    identity: str
    alert_name: str
    resource: Optional[str]
    severity: AlertSeverity
    created_at: datetime
    updated_at: datetime
    last_firing_at: datetime
    identity_labels: Dict[str, str] = field(default_factory=dict)
    state: IncidentState = IncidentState.OPEN
    alerts: List[AlertEvent] = field(default_factory=list)
    firing: Dict[str, bool] = field(default_factory=dict)
    closed_at: Optional[datetime] = None
    escalation_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """True until the incident is closed."""
        return self.closed_at is None

    @property
    def all_resolved(self) -> bool:
        return not any(self.firing.values())

    @property
    def firing_count(self) -> int:
        return sum(1 for is_firing in self.firing.values() if is_firing)

    def snapshot(self) -> "Incident":
        """Detached copy safe to hand to readers outside the control loop."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "incident_id": self.incident_id,
            "identity": self.identity,
            "alert_name": self.alert_name,
            "resource": self.resource,
            "severity": self.severity.value,
            "state": self.state.value,
            "identity_labels": dict(self.identity_labels),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_firing_at": self.last_firing_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "escalation_reason": self.escalation_reason,
            "firing_alerts": self.firing_count,
            "alert_count": len(self.alerts),
            "alerts": [a.to_dict() for a in self.alerts],
        }
