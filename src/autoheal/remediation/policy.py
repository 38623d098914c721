"""
Remediation policy.

A static, data-driven description of what the engine may do: which
actions each alert maps to (in priority order), how long to wait between
repeated actions on a resource, and how many attempts of each kind an
incident may consume.

Example:
    >>> policy = RemediationPolicy.from_dict({
    ...     "cooldown_seconds": 300,
    ...     "actions": {
    ...         "ApplicationDown": ["restart"],
    ...         "HighCPU": [{"kind": "scale", "delta": 1}],
    ...         "HighMemory": ["cache-flush", "restart"],
    ...     },
    ... })
    >>> [spec.kind.value for spec in policy.candidates("HighMemory")]
    ['cache-flush', 'restart']
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List

from ..alerting.models import AlertSeverity
from .actions import ActionKind, ActionSpec

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 300
DEFAULT_MAX_TOTAL_ATTEMPTS = 5

DEFAULT_MAX_ATTEMPTS: Dict[ActionKind, int] = {
    ActionKind.RESTART: 1,
    ActionKind.CACHE_FLUSH: 1,
    ActionKind.SCALE: 3,
}


@dataclass
class ResourceLimits:
    """Replica bounds for a scalable resource."""
    replicas: int = 1
    min_replicas: int = 1
    max_replicas: int = 10

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceLimits":
        return cls(
            replicas=int(data.get("replicas", 1)),
            min_replicas=int(data.get("min_replicas", 1)),
            max_replicas=int(data.get("max_replicas", 10)),
        )

    def clamp(self, count: int) -> int:
        return max(self.min_replicas, min(self.max_replicas, count))


@dataclass
class RemediationPolicy:
    """
    Static remediation policy.

    Attributes:
        action_map: Alert name -> prioritized action list
        cooldown: Minimum interval between actions of one kind on one resource
        max_attempts: Per-incident attempt limit per action kind
        max_total_attempts: Per-incident limit across all kinds
        min_severity: Incidents below this severity are not remediated
        resources: Replica bounds per resource
    """
    action_map: Dict[str, List[ActionSpec]] = field(default_factory=dict)
    cooldown: timedelta = timedelta(seconds=DEFAULT_COOLDOWN_SECONDS)
    max_attempts: Dict[ActionKind, int] = field(default_factory=lambda: dict(DEFAULT_MAX_ATTEMPTS))
    max_total_attempts: int = DEFAULT_MAX_TOTAL_ATTEMPTS
    min_severity: AlertSeverity = AlertSeverity.WARNING
    resources: Dict[str, ResourceLimits] = field(default_factory=dict)

    def candidates(self, alert_name: str) -> List[ActionSpec]:
        """Prioritized actions for an alert (empty if unmapped)."""
        return list(self.action_map.get(alert_name, []))

    def attempt_limit(self, kind: ActionKind) -> int:
        return self.max_attempts.get(kind, DEFAULT_MAX_ATTEMPTS[kind])

    def limits_for(self, resource: str) -> ResourceLimits:
        return self.resources.get(resource) or ResourceLimits()

    def qualifies(self, severity: AlertSeverity) -> bool:
        return severity.rank >= self.min_severity.rank

    def validate(self) -> List[str]:
        """Return a list of policy problems (empty if valid)."""
        errors = []

        if not self.action_map:
            errors.append("remediation.actions must map at least one alert to an action list")
        for alert_name, specs in self.action_map.items():
            if not specs:
                errors.append(f"remediation.actions['{alert_name}'] is empty")
            for spec in specs:
                if spec.kind == ActionKind.SCALE:
                    delta = spec.parameters.get("delta", 1)
                    if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
                        errors.append(
                            f"remediation.actions['{alert_name}']: scale delta must be a non-zero integer"
                        )

        if self.cooldown.total_seconds() < 0:
            errors.append("remediation.cooldown_seconds must not be negative")
        for kind, limit in self.max_attempts.items():
            if limit <= 0:
                errors.append(f"remediation.max_attempts['{kind.value}'] must be positive, got {limit}")
        if self.max_total_attempts <= 0:
            errors.append(f"remediation.max_total_attempts must be positive, got {self.max_total_attempts}")

        for name, limits in self.resources.items():
            if not (0 <= limits.min_replicas <= limits.replicas <= limits.max_replicas):
                errors.append(
                    f"resources['{name}']: need 0 <= min_replicas <= replicas <= max_replicas"
                )

        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any], resources: Dict[str, Any] = None) -> "RemediationPolicy":
        """
        Build a policy from the ``remediation`` config section.

        Raises:
            ValueError: If an action kind or severity name is unknown
        """
        action_map = {
            str(alert_name): [ActionSpec.from_config(entry) for entry in (entries or [])]
            for alert_name, entries in (data.get("actions") or {}).items()
        }

        max_attempts = dict(DEFAULT_MAX_ATTEMPTS)
        for kind_name, limit in (data.get("max_attempts") or {}).items():
            max_attempts[ActionKind.parse(kind_name)] = int(limit)

        severity = str(data.get("min_severity", "warning")).lower()

        return cls(
            action_map=action_map,
            cooldown=timedelta(seconds=float(data.get("cooldown_seconds", DEFAULT_COOLDOWN_SECONDS))),
            max_attempts=max_attempts,
            max_total_attempts=int(data.get("max_total_attempts", DEFAULT_MAX_TOTAL_ATTEMPTS)),
            min_severity=AlertSeverity(severity),
            resources={
                str(name): ResourceLimits.from_dict(limits or {})
                for name, limits in (resources or {}).items()
            },
        )
