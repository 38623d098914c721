"""
Escalation sinks.

When automation gives up on an incident, a notifier hands it to a human.
Each notifier receives a detached incident snapshot and the escalation
reason; delivery problems are logged and reported as False, never raised
into the control loop.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from ..retry import retry_sync
from .models import Incident

logger = logging.getLogger(__name__)


def build_payload(incident: Incident, reason: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """JSON payload describing an escalation."""
    payload = {
        "event": "incident_escalated",
        "reason": reason,
        "incident": incident.to_dict(),
    }
    if context:
        payload["context"] = context
    return payload


class Notifier(ABC):
    """Abstract base class for escalation sinks."""

    @abstractmethod
    def notify(self, incident: Incident, reason: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send an escalation notification.

        Args:
            incident: Snapshot of the escalated incident
            reason: Why automation handed off
            context: Extra detail (actions tried, budget states)

        Returns:
            True if notification sent successfully
        """
        pass


class ConsoleNotifier(Notifier):
    """Console/stdout notifier for development and testing."""

    COLORS = {
        "critical": "\033[91m",  # Red
        "warning": "\033[93m",  # Yellow
        "info": "\033[96m",  # Cyan
        "reset": "\033[0m"
    }

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors

    def notify(self, incident: Incident, reason: str, context: Optional[Dict[str, Any]] = None) -> bool:
        try:
            severity = incident.severity.value
            color = self.COLORS.get(severity, "") if self.use_colors else ""
            reset = self.COLORS["reset"] if self.use_colors else ""

            print(f"\n{color}{'='*60}{reset}")
            print(f"{color}[ESCALATED/{severity.upper()}] {incident.alert_name}{reset}")
            print(f"{color}{'='*60}{reset}")
            print(f"Incident: {incident.incident_id}")
            print(f"Resource: {incident.resource or 'unknown'}")
            print(f"Opened: {incident.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
            print(f"Firing alerts: {incident.firing_count}")
            print(f"\nReason: {reason}\n")

            for action in (context or {}).get("actions", []):
                print(f"  - {action.get('kind')} -> {action.get('status')}: {action.get('detail')}")

            print(f"{color}{'='*60}{reset}\n")
            return True

        except Exception as e:
            logger.error(f"Console notifier error: {e}")
            return False


class WebhookNotifier(Notifier):
    """
    Generic webhook notifier.

    POSTs the escalation as JSON. Suitable for paging integrations and
    custom incident tooling.
    """

    def __init__(
        self,
        webhook_url: str,
        headers: Optional[Dict[str, str]] = None,
        auth_token: Optional[str] = None,
        timeout: float = 10.0,
        max_attempts: int = 3
    ):
        """
        Initialize webhook notifier.

        Args:
            webhook_url: URL to POST escalations to
            headers: Optional custom headers
            auth_token: Optional bearer token
            timeout: HTTP timeout in seconds
            max_attempts: Delivery attempts before giving up
        """
        self.webhook_url = webhook_url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.max_attempts = max_attempts

        if auth_token:
            self.headers['Authorization'] = f'Bearer {auth_token}'
        self.headers['Content-Type'] = 'application/json'

    def _post(self, payload: Dict[str, Any]) -> None:
        @retry_sync(
            max_attempts=self.max_attempts,
            min_wait=0.5,
            max_wait=5.0,
            retryable_exceptions=(requests.RequestException,)
        )
        def post():
            response = requests.post(
                self.webhook_url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()

        post()

    def notify(self, incident: Incident, reason: str, context: Optional[Dict[str, Any]] = None) -> bool:
        try:
            self._post(build_payload(incident, reason, context))
            logger.debug(f"Webhook escalation sent for {incident.incident_id}")
            return True
        except requests.RequestException as e:
            logger.error(f"Webhook notifier error for {incident.incident_id}: {e}")
            return False


class SlackNotifier(WebhookNotifier):
    """Slack incoming-webhook notifier."""

    COLOR_MAP = {
        "critical": "#FF0000",
        "warning": "#FFA500",
        "info": "#0000FF",
    }

    def __init__(self, webhook_url: str, channel: Optional[str] = None, **kwargs: Any):
        super().__init__(webhook_url, **kwargs)
        self.channel = channel

    def notify(self, incident: Incident, reason: str, context: Optional[Dict[str, Any]] = None) -> bool:
        fields = [
            {"title": "Incident", "value": incident.incident_id, "short": True},
            {"title": "Resource", "value": incident.resource or "unknown", "short": True},
            {"title": "Firing alerts", "value": str(incident.firing_count), "short": True},
            {"title": "Opened", "value": incident.created_at.strftime("%Y-%m-%d %H:%M:%S"), "short": True},
        ]
        actions = (context or {}).get("actions", [])
        if actions:
            fields.append({
                "title": "Automated actions",
                "value": "\n".join(f"{a.get('kind')}: {a.get('status')}" for a in actions),
                "short": False
            })

        payload: Dict[str, Any] = {
            "attachments": [
                {
                    "color": self.COLOR_MAP.get(incident.severity.value, "#808080"),
                    "title": f"[ESCALATED] {incident.alert_name}",
                    "text": reason,
                    "fields": fields,
                    "footer": "AUTOHEAL remediation controller",
                    "ts": int(incident.updated_at.timestamp())
                }
            ]
        }
        if self.channel:
            payload["channel"] = self.channel

        try:
            self._post(payload)
            logger.debug(f"Slack escalation sent for {incident.incident_id}")
            return True
        except requests.RequestException as e:
            logger.error(f"Slack notifier error for {incident.incident_id}: {e}")
            return False


class EscalationDispatcher:
    """Fans an escalation out to every configured notifier."""

    def __init__(self, notifiers: Optional[Dict[str, Notifier]] = None):
        self._notifiers: Dict[str, Notifier] = dict(notifiers or {})

    def add_notifier(self, name: str, notifier: Notifier) -> None:
        self._notifiers[name] = notifier
        logger.info(f"Added escalation notifier: {name}")

    @property
    def names(self) -> List[str]:
        return list(self._notifiers)

    def escalate(self, incident: Incident, reason: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Deliver to all notifiers.

        Returns:
            True if at least one notifier succeeded
        """
        if not self._notifiers:
            logger.warning(f"No escalation notifiers configured; {incident.incident_id} not delivered")
            return False

        delivered = False
        for name, notifier in self._notifiers.items():
            try:
                delivered = notifier.notify(incident, reason, context) or delivered
            except Exception as e:
                logger.error(f"Escalation via {name} failed for {incident.incident_id}: {e}")
        return delivered
