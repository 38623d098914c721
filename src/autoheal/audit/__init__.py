"""
Append-only audit log of remediation decisions and outcomes.
"""

from .audit_log import (
    AuditEvent,
    AuditEventType,
    AuditBackend,
    FileAuditBackend,
    MemoryAuditBackend,
    AuditLog,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditBackend",
    "FileAuditBackend",
    "MemoryAuditBackend",
    "AuditLog",
]
