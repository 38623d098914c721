"""
Inspection and alert webhook HTTP API.
"""

from .app import create_app, serve_in_thread

__all__ = [
    "create_app",
    "serve_in_thread",
]
