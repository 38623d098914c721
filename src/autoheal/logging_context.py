"""
Structured logging with remediation context.

Every log line written while handling an incident carries the incident id,
target resource and action kind, so a single incident can be followed
through classification, remediation and escalation.
"""

import contextvars
import logging
import json
from typing import Any, Optional
from datetime import datetime, timezone

CONTEXT_KEYS = ('incident_id', 'resource', 'action_kind', 'objective_id')

remediation_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    'remediation_context', default={}
)


class ContextualLogger(logging.LoggerAdapter):
    """
    Logger adapter that injects the current remediation context into records.

    Usage:
        logger = get_logger(__name__)
        with LoggingContext(incident_id='inc-1a2b', resource='api'):
            logger.info("Selecting action")
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        ctx = remediation_context.get({})
        extra = kwargs.get('extra', {})

        extra.update({key: ctx.get(key) for key in CONTEXT_KEYS})
        extra = {k: v for k, v in extra.items() if v is not None}

        kwargs['extra'] = extra
        return msg, kwargs


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in CONTEXT_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def get_logger(name: str) -> ContextualLogger:
    """
    Get a contextual logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLogger instance
    """
    return ContextualLogger(logging.getLogger(name), {})


def set_context(**kwargs: Any) -> contextvars.Token:
    """
    Set remediation context for the current task.

    Returns:
        Token to reset context later
    """
    current = remediation_context.get({}).copy()
    current.update(kwargs)
    return remediation_context.set(current)


def get_context() -> dict:
    """Get current remediation context."""
    return remediation_context.get({}).copy()


def clear_context() -> None:
    """Clear remediation context."""
    remediation_context.set({})


class LoggingContext:
    """
    Context manager for setting logging context.

    Usage:
        with LoggingContext(incident_id='inc-1a2b'):
            logger.info("Escalating")  # Includes incident_id
    """

    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs
        self.token: Optional[contextvars.Token] = None

    def __enter__(self):
        self.token = set_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            remediation_context.reset(self.token)
        return False
