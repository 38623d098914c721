"""
Prometheus Alertmanager webhook integration.

Translates the Alertmanager webhook payload (version 4) into AlertEvents::

    {
      "version": "4",
      "status": "firing",
      "alerts": [
        {
          "status": "firing",
          "labels": {"alertname": "HighMemory", "severity": "critical", "resource": "r2"},
          "startsAt": "2024-05-01T10:00:00.000Z",
          "endsAt": "0001-01-01T00:00:00Z"
        }
      ]
    }

Alertmanager redelivers the same alert (same labels, same startsAt) on
every group interval; the classifier treats those as duplicates.
"""
import hashlib
import hmac
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..alerting.models import AlertEvent, AlertSeverity, AlertState
from ..exceptions import AlertFeedError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Autoheal-Signature"

# Labels that describe the alert itself rather than the affected resource
_RESERVED_LABELS = ("alertname", "severity")

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp into naive local time.

    Returns:
        Datetime, or None for missing values and Alertmanager's zero time
    """
    if not value or value.startswith("0001-01-01"):
        return None

    text = value.strip().replace("Z", "+00:00")
    # Alertmanager emits nanoseconds; datetime supports microseconds
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise AlertFeedError(f"Invalid timestamp: {value!r}") from e

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_alert(alert: Dict[str, Any], received_at: Optional[datetime] = None) -> AlertEvent:
    """
    Convert one Alertmanager alert into an AlertEvent.

    Raises:
        AlertFeedError: If the alert is malformed
    """
    if not isinstance(alert, dict):
        raise AlertFeedError("Alert entry must be an object")

    labels = alert.get("labels") or {}
    if not isinstance(labels, dict):
        raise AlertFeedError("Alert labels must be an object")

    name = labels.get("alertname")
    if not name:
        raise AlertFeedError("Alert is missing the 'alertname' label")

    status = str(alert.get("status", "firing")).lower()
    try:
        state = AlertState(status)
    except ValueError:
        raise AlertFeedError(f"Unknown alert status: {status!r}")

    if state == AlertState.FIRING:
        timestamp = parse_timestamp(alert.get("startsAt"))
    else:
        timestamp = parse_timestamp(alert.get("endsAt")) or parse_timestamp(alert.get("startsAt"))

    return AlertEvent(
        name=str(name),
        severity=AlertSeverity.parse(labels.get("severity")),
        labels={str(k): str(v) for k, v in labels.items() if k not in _RESERVED_LABELS},
        state=state,
        timestamp=timestamp or received_at or datetime.now(),
    )


def parse_alertmanager_payload(
    payload: Dict[str, Any],
    received_at: Optional[datetime] = None
) -> List[AlertEvent]:
    """
    Convert an Alertmanager webhook payload into alert events.

    Malformed entries are logged and skipped; a payload without an
    ``alerts`` list is rejected.

    Raises:
        AlertFeedError: If the payload is not an Alertmanager notification
    """
    if not isinstance(payload, dict):
        raise AlertFeedError("Payload must be a JSON object")

    alerts = payload.get("alerts")
    if not isinstance(alerts, list):
        raise AlertFeedError("Payload has no 'alerts' list")

    events = []
    for entry in alerts:
        try:
            events.append(parse_alert(entry, received_at))
        except AlertFeedError as e:
            logger.warning(f"Skipping malformed alert: {e}")

    return events


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature of a raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """
    Verify a webhook signature.

    Accepts both bare hex digests and the ``sha256=<digest>`` form.
    """
    if not signature:
        return False

    if signature.startswith("sha256="):
        signature = signature[7:]

    # Constant-time comparison
    return hmac.compare_digest(sign_payload(secret, body), signature)
