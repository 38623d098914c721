"""
Audit log for AUTOHEAL.

Every decision the controller takes (incident lifecycle changes, actions
started, refused, succeeded or failed, internal alerts) is appended to the
audit log. It is the source of truth for post-incident review, and the
last recorded attempt per (resource, action kind) is used to restore
cooldowns after a restart so duplicate actions stay suppressed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events."""
    INCIDENT_OPENED = "incident_opened"
    INCIDENT_RESOLVED = "incident_resolved"
    INCIDENT_ESCALATED = "incident_escalated"
    INCIDENT_CLOSED = "incident_closed"
    ACTION_STARTED = "action_started"
    ACTION_SUCCEEDED = "action_succeeded"
    ACTION_FAILED = "action_failed"
    ACTION_REFUSED = "action_refused"
    INTERNAL_ALERT = "internal_alert"
    INVARIANT_VIOLATION = "invariant_violation"


@dataclass
class AuditEvent:
    """
    Audit event data class.

    Attributes:
        id: Unique event identifier
        timestamp: Event timestamp (ISO 8601)
        event_type: Type of event
        incident_id: Incident the event belongs to (optional)
        resource: Target resource (optional)
        action_kind: Remediation action kind (optional)
        action_id: Remediation action id (optional)
        result: Outcome or decision summary
        details: Additional event details
    """
    id: str
    timestamp: str
    event_type: AuditEventType
    incident_id: Optional[str] = None
    resource: Optional[str] = None
    action_kind: Optional[str] = None
    action_id: Optional[str] = None
    result: str = "success"
    details: Optional[Dict[str, Any]] = None

    @property
    def time(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        data = dict(data)
        data["event_type"] = AuditEventType(data["event_type"])
        return cls(**data)


def _matches(
    event: AuditEvent,
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    event_type: Optional[AuditEventType],
    incident_id: Optional[str],
    resource: Optional[str]
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if incident_id and event.incident_id != incident_id:
        return False
    if resource and event.resource != resource:
        return False
    if start_time and event.time < start_time:
        return False
    if end_time and event.time > end_time:
        return False
    return True


class AuditBackend(ABC):
    """Abstract base class for audit backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend."""
        pass

    @abstractmethod
    async def write_event(self, event: AuditEvent) -> None:
        """Append an audit event."""
        pass

    @abstractmethod
    async def query_events(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        event_type: Optional[AuditEventType] = None,
        incident_id: Optional[str] = None,
        resource: Optional[str] = None,
        limit: int = 100
    ) -> List[AuditEvent]:
        """Query audit events in append order."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close backend connections."""
        pass


class MemoryAuditBackend(AuditBackend):
    """In-memory backend, used in tests and dry runs."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def initialize(self) -> None:
        pass

    async def write_event(self, event: AuditEvent) -> None:
        self.events.append(event)

    async def query_events(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        event_type: Optional[AuditEventType] = None,
        incident_id: Optional[str] = None,
        resource: Optional[str] = None,
        limit: int = 100
    ) -> List[AuditEvent]:
        matched = [
            e for e in self.events
            if _matches(e, start_time, end_time, event_type, incident_id, resource)
        ]
        return matched[:limit]

    async def close(self) -> None:
        pass


class FileAuditBackend(AuditBackend):
    """
    File-based audit backend.

    Stores audit events in JSONL format, one event per line, append only.
    """

    def __init__(self, file_path: str = "autoheal-audit.jsonl"):
        """
        Initialize file backend.

        Args:
            file_path: Path to audit log file
        """
        self.file_path = Path(file_path)

    async def initialize(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.file_path.exists():
            self.file_path.touch()

        logger.info(f"File audit backend initialized: {self.file_path}")

    async def write_event(self, event: AuditEvent) -> None:
        try:
            with self.file_path.open("a") as f:
                f.write(event.to_json() + "\n")
        except IOError as e:
            logger.error(f"Failed to write audit event: {e}")
            raise

    async def query_events(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        event_type: Optional[AuditEventType] = None,
        incident_id: Optional[str] = None,
        resource: Optional[str] = None,
        limit: int = 100
    ) -> List[AuditEvent]:
        events = []

        if not self.file_path.exists():
            return events

        try:
            with self.file_path.open("r") as f:
                for line in f:
                    if not line.strip():
                        continue

                    try:
                        event = AuditEvent.from_dict(json.loads(line))
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                        logger.warning(f"Skipping invalid audit event: {e}")
                        continue

                    if not _matches(event, start_time, end_time, event_type, incident_id, resource):
                        continue

                    events.append(event)
                    if len(events) >= limit:
                        break

        except IOError as e:
            logger.error(f"Failed to query audit events: {e}")
            raise

        return events

    async def close(self) -> None:
        pass


class AuditLog:
    """
    Append-only audit log over a pluggable backend.

    Example:
        >>> audit = AuditLog(FileAuditBackend("audit.jsonl"))
        >>> await audit.initialize()
        >>> await audit.record(
        ...     AuditEventType.ACTION_REFUSED,
        ...     incident_id="inc-1a2b-1",
        ...     resource="r2",
        ...     action_kind="cache-flush",
        ...     result="cooldown",
        ... )
    """

    def __init__(
        self,
        backend: Optional[AuditBackend] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.backend = backend or MemoryAuditBackend()
        self.clock = clock

    async def initialize(self) -> None:
        await self.backend.initialize()

    async def record(
        self,
        event_type: AuditEventType,
        incident_id: Optional[str] = None,
        resource: Optional[str] = None,
        action_kind: Optional[str] = None,
        action_id: Optional[str] = None,
        result: str = "success",
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Build and append an audit event."""
        event = AuditEvent(
            id=str(uuid.uuid4()),
            timestamp=(timestamp or self.clock()).isoformat(),
            event_type=event_type,
            incident_id=incident_id,
            resource=resource,
            action_kind=action_kind,
            action_id=action_id,
            result=result,
            details=details,
        )
        await self.backend.write_event(event)
        return event

    async def query_events(self, **kwargs) -> List[AuditEvent]:
        """
        Query audit events.

        Args:
            **kwargs: start_time, end_time, event_type, incident_id, resource, limit
        """
        return await self.backend.query_events(**kwargs)

    async def last_attempts(self, limit: int = 100000) -> Dict[Tuple[str, str], datetime]:
        """
        Newest action start per (resource, action kind).

        Used to rebuild cooldown records after a controller restart.
        """
        started = await self.backend.query_events(
            event_type=AuditEventType.ACTION_STARTED,
            limit=limit
        )
        attempts: Dict[Tuple[str, str], datetime] = {}
        for event in started:
            if not event.resource or not event.action_kind:
                continue
            key = (event.resource, event.action_kind)
            if key not in attempts or event.time > attempts[key]:
                attempts[key] = event.time
        return attempts

    async def close(self) -> None:
        await self.backend.close()
