"""
Custom exception types for AUTOHEAL.

The hierarchy mirrors the controller's error taxonomy:

- transient collection errors (metrics or alert feed unavailable),
  retried on the next tick;
- executor errors, recorded and turned into the next candidate action
  or an escalation;
- configuration errors, fatal at startup only;
- internal invariant violations, logged as critical and refused.
"""


class AutohealError(Exception):
    """Base exception for all AUTOHEAL errors."""
    pass


# Collection errors
class CollectionError(AutohealError):
    """Base exception for transient collection errors."""
    pass


class MetricsFetchError(CollectionError):
    """The metrics source could not produce samples for an objective.

    Distinct from an empty window: zero samples is a valid answer.
    """

    def __init__(self, objective_id: str, message: str):
        self.objective_id = objective_id
        super().__init__(f"{objective_id}: {message}")


class AlertFeedError(CollectionError):
    """Alert feed payload could not be read."""
    pass


# Execution errors
class ExecutorError(AutohealError):
    """A control surface call failed in a way the executor could not report."""
    pass


class UnsupportedActionError(ExecutorError):
    """No executor is registered for an action kind."""
    pass


# Configuration errors
class ConfigurationError(AutohealError):
    """Base exception for configuration errors."""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration."""
    pass


class MissingConfigError(ConfigurationError):
    """Required configuration missing."""
    pass


# Internal errors
class InvariantViolationError(AutohealError):
    """An internal invariant was found broken, e.g. two running actions on one pair."""
    pass


class IncidentNotFoundError(AutohealError):
    """Incident not found."""
    pass


__all__ = [
    "AutohealError",
    "CollectionError",
    "MetricsFetchError",
    "AlertFeedError",
    "ExecutorError",
    "UnsupportedActionError",
    "ConfigurationError",
    "InvalidConfigError",
    "MissingConfigError",
    "InvariantViolationError",
    "IncidentNotFoundError",
]
