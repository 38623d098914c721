"""
Alert classifier.

Deduplicates alert events by identity and groups them into incidents.
The identity of an incident is the alert name plus the resource-identifying
labels only, so volatile labels (instance address, pod hash) never split an
outage into several incidents.

Resolution absorbs flapping: an incident resolves only when every
constituent alert has resolved and a grace period has passed without a new
firing event of the same identity.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..metrics import track_incident_transition
from .models import (
    AlertEvent,
    Incident,
    IncidentState,
    incident_identity,
    max_severity,
)

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY_LABELS = ("resource", "namespace")


class AlertClassifier:
    """
    Classifies alert events into incidents and owns the incident table.

    Example:
        >>> classifier = AlertClassifier(grace_period=timedelta(seconds=30))
        >>> incident_id = classifier.classify(event)
        >>> resolved = classifier.sweep()
    """

    def __init__(
        self,
        identity_labels: Iterable[str] = DEFAULT_IDENTITY_LABELS,
        resource_label: str = "resource",
        grace_period: timedelta = timedelta(seconds=30),
        max_history_size: int = 1000,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize classifier.

        Args:
            identity_labels: Labels that identify the affected resource
            resource_label: Label holding the remediation target
            grace_period: Quiet time required before an incident resolves
            max_history_size: Closed incidents kept for inspection
            clock: Time source
        """
        self.identity_labels = tuple(identity_labels)
        self.resource_label = resource_label
        self.grace_period = grace_period
        self.max_history_size = max_history_size
        self.clock = clock

        self._incidents: Dict[str, Incident] = {}
        self._active: Dict[str, str] = {}  # identity -> incident_id
        self._sequence: Dict[str, int] = defaultdict(int)
        self._seen: Dict[str, Set[Tuple[str, str, datetime]]] = defaultdict(set)

    def classify(self, event: AlertEvent, now: Optional[datetime] = None) -> Optional[str]:
        """
        Attach an alert event to its incident.

        Args:
            event: Incoming alert event
            now: Arrival time (defaults to the clock)

        Returns:
            Incident id, or None for a resolved event with no active incident
        """
        now = now or self.clock()
        identity = incident_identity(event.name, event.labels, self.identity_labels)
        incident_id = self._active.get(identity)
        incident = self._incidents.get(incident_id) if incident_id else None

        if event.is_firing:
            if incident is None:
                return self._open(identity, event, now).incident_id
            self._append(incident, event, now)
            return incident.incident_id

        if incident is None:
            logger.debug(
                f"Ignoring resolved '{event.name}' with no active incident "
                f"(labels={dict(event.labels)})"
            )
            return None

        if event.fingerprint not in incident.firing:
            logger.debug(
                f"Resolved '{event.name}' does not match a constituent of {incident.incident_id}"
            )
            return incident.incident_id

        self._append(incident, event, now)
        return incident.incident_id

    def _open(self, identity: str, event: AlertEvent, now: datetime) -> Incident:
        self._sequence[identity] += 1
        incident = Incident(
            incident_id=f"{identity}-{self._sequence[identity]}",
            identity=identity,
            alert_name=event.name,
            resource=event.labels.get(self.resource_label),
            severity=event.severity,
            created_at=now,
            updated_at=now,
            last_firing_at=now,
            identity_labels={
                k: event.labels[k] for k in self.identity_labels if k in event.labels
            },
        )
        incident.alerts.append(event)
        incident.firing[event.fingerprint] = True
        self._seen[incident.incident_id].add(self._delivery_key(event))

        self._incidents[incident.incident_id] = incident
        self._active[identity] = incident.incident_id
        track_incident_transition(IncidentState.OPEN.value)

        logger.info(
            f"Opened incident {incident.incident_id} for '{event.name}' "
            f"(resource={incident.resource}, severity={event.severity.value})"
        )
        return incident

    def _append(self, incident: Incident, event: AlertEvent, now: datetime) -> None:
        key = self._delivery_key(event)
        seen = self._seen[incident.incident_id]
        if key in seen:
            # At-least-once feed: redelivery of an event already recorded
            logger.debug(f"Duplicate delivery of '{event.name}' for {incident.incident_id}")
            return
        seen.add(key)

        incident.alerts.append(event)
        incident.firing[event.fingerprint] = event.is_firing
        incident.updated_at = now
        if event.is_firing:
            incident.last_firing_at = now
            incident.severity = max_severity(a.severity for a in incident.alerts)

        logger.debug(
            f"Incident {incident.incident_id}: {event.state.value} '{event.name}' "
            f"({incident.firing_count} firing)"
        )

    @staticmethod
    def _delivery_key(event: AlertEvent) -> Tuple[str, str, datetime]:
        return (event.fingerprint, event.state.value, event.timestamp)

    def sweep(self, now: Optional[datetime] = None) -> List[Incident]:
        """
        Close incidents whose alerts all resolved and stayed quiet for the grace period.

        An escalated incident is closed but keeps its escalated state.

        Returns:
            Incidents closed by this sweep
        """
        now = now or self.clock()
        closed = []

        for incident_id in list(self._active.values()):
            incident = self._incidents[incident_id]
            if not incident.all_resolved:
                continue
            if now - incident.updated_at < self.grace_period:
                continue

            if incident.state == IncidentState.ESCALATED:
                self.close(incident, now)
                logger.info(f"Escalated incident {incident_id} closed: all alerts resolved")
            else:
                self.close(incident, now, IncidentState.RESOLVED)
                logger.info(f"Incident {incident_id} resolved: all alerts cleared")
            closed.append(incident)

        return closed

    def close(
        self,
        incident: Incident,
        now: Optional[datetime] = None,
        state: Optional[IncidentState] = None
    ) -> None:
        """
        End the automated lifecycle of an incident.

        Args:
            incident: Incident to close
            now: Close time
            state: Final state to record (keeps the current state if None)
        """
        now = now or self.clock()
        if state is not None and incident.state != state:
            incident.state = state
            track_incident_transition(state.value)
        incident.closed_at = now
        incident.updated_at = now

        if self._active.get(incident.identity) == incident.incident_id:
            del self._active[incident.identity]
        self._seen.pop(incident.incident_id, None)
        self._trim_history()

    def _trim_history(self) -> None:
        """Forget the oldest closed incidents beyond the history limit."""
        closed = [i for i in self._incidents.values() if not i.is_active]
        excess = len(closed) - self.max_history_size
        if excess <= 0:
            return
        closed.sort(key=lambda i: i.closed_at)
        for incident in closed[:excess]:
            del self._incidents[incident.incident_id]

    def get(self, incident_id: str) -> Optional[Incident]:
        """Live incident by id (control loop use only)."""
        return self._incidents.get(incident_id)

    def active_incidents(self) -> List[Incident]:
        """Live incidents that are not closed, oldest first."""
        incidents = [self._incidents[i] for i in self._active.values()]
        return sorted(incidents, key=lambda i: i.created_at)

    def snapshot(self) -> List[Incident]:
        """Detached copies of every known incident, newest first."""
        incidents = sorted(self._incidents.values(), key=lambda i: i.created_at, reverse=True)
        return [i.snapshot() for i in incidents]
