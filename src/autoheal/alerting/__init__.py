"""
Alert intake, incident classification and escalation for AUTOHEAL.

Classes:
    AlertEvent: Immutable alert notification
    Incident: Deduplicated group of related alerts
    AlertQueue: Bounded, drop-oldest ingestion queue
    AlertClassifier: Groups alert events into incidents
    EscalationDispatcher: Fans escalations out to notifiers
"""

from .models import (
    AlertEvent,
    AlertSeverity,
    AlertState,
    Incident,
    IncidentState,
    incident_identity,
)
from .queue import AlertQueue
from .classifier import AlertClassifier
from .notifiers import (
    Notifier,
    ConsoleNotifier,
    WebhookNotifier,
    SlackNotifier,
    EscalationDispatcher,
)

__all__ = [
    "AlertEvent",
    "AlertSeverity",
    "AlertState",
    "Incident",
    "IncidentState",
    "incident_identity",
    "AlertQueue",
    "AlertClassifier",
    "Notifier",
    "ConsoleNotifier",
    "WebhookNotifier",
    "SlackNotifier",
    "EscalationDispatcher",
]
