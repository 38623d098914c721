"""
Remediation action model.

The action set is closed: restart, scale and cache-flush. Configuration
refers to kinds by name; everything past the config loader works with
ActionKind values.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ActionKind(str, Enum):
    """Supported remediation action kinds."""
    RESTART = "restart"
    SCALE = "scale"
    CACHE_FLUSH = "cache-flush"

    @property
    def destructive(self) -> bool:
        """Destructive actions drop in-flight work and get a single attempt by default."""
        return self in (ActionKind.RESTART, ActionKind.CACHE_FLUSH)

    @classmethod
    def parse(cls, value: Any) -> "ActionKind":
        """Parse a kind name, accepting the common aliases used in alert runbooks."""
        if isinstance(value, ActionKind):
            return value
        text = str(value).strip().lower().replace("_", "-")
        aliases = {
            "scale-up": cls.SCALE,
            "scale-out": cls.SCALE,
            "flush-cache": cls.CACHE_FLUSH,
            "cache-clear": cls.CACHE_FLUSH,
        }
        if text in aliases:
            return aliases[text]
        return cls(text)


class ActionStatus(str, Enum):
    """Lifecycle of a remediation action."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionSpec:
    """
    One entry of an alert's prioritized action list.

    Attributes:
        kind: Action kind
        parameters: Kind-specific parameters (e.g. {"delta": 2} for scale)
    """
    kind: ActionKind
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, entry: Any) -> "ActionSpec":
        """
        Parse a config entry.

        Accepts a bare kind name ("restart") or a mapping
        ({"kind": "scale", "delta": 2}).
        """
        if isinstance(entry, dict):
            params = {k: v for k, v in entry.items() if k != "kind"}
            return cls(kind=ActionKind.parse(entry.get("kind")), parameters=params)
        return cls(kind=ActionKind.parse(entry))


@dataclass(frozen=True)
class ActionOutcome:
    """Result reported by an executor."""
    success: bool
    detail: str
    duration_seconds: float = 0.0
    noop: bool = False


@dataclass
class RemediationAction:
    """
    A single remediation attempt.

    Attributes:
        action_id: Unique action id (idempotency key for executors)
        kind: Action kind
        resource: Target resource
        incident_id: Incident that issued the action
        parameters: Executor parameters (e.g. {"replicas": 4})
        status: Current status
        created_at: When the action was built
        started_at: When it was handed to the executor
        ended_at: When its outcome was recorded
        detail: Outcome detail ("timeout", surface error, ...)
    """
    kind: ActionKind
    resource: str
    incident_id: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    status: ActionStatus = ActionStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    detail: Optional[str] = None
    action_id: str = field(default_factory=lambda: f"act-{uuid.uuid4().hex[:12]}")

    @property
    def key(self) -> tuple:
        """Mutual-exclusion key: (resource, kind)."""
        return (self.resource, self.kind.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "action_id": self.action_id,
            "kind": self.kind.value,
            "resource": self.resource,
            "incident_id": self.incident_id,
            "parameters": dict(self.parameters),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "detail": self.detail,
        }
