"""
Alert feed integrations.
"""

from .alertmanager import parse_alertmanager_payload, verify_signature

__all__ = [
    "parse_alertmanager_payload",
    "verify_signature",
]
