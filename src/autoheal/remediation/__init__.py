"""
Automated remediation for AUTOHEAL.

This module provides:
- A closed set of actions (restart, scale, cache-flush)
- Executors that run them against an orchestration control surface
- A static policy mapping alerts to prioritized actions
- The engine driving each incident through its state machine

Classes:
    RemediationEngine: Guards, issues and tracks actions per incident
    RemediationPolicy: Action map, cooldown and attempt limits
    ActionExecutor: Base class for executors
    OrchestrationSurface: restart / set_replicas / flush_cache interface
"""

from .actions import ActionKind, ActionStatus, ActionSpec, ActionOutcome, RemediationAction
from .surfaces import OrchestrationSurface, KubectlSurface, HttpControlSurface
from .executors import (
    ActionExecutor,
    RestartExecutor,
    ScaleExecutor,
    CacheFlushExecutor,
    build_executors,
)
from .policy import RemediationPolicy, ResourceLimits
from .engine import RemediationEngine, RemediationPlan, INVARIANT_VIOLATION_ALERT

__all__ = [
    "ActionKind",
    "ActionStatus",
    "ActionSpec",
    "ActionOutcome",
    "RemediationAction",
    "OrchestrationSurface",
    "KubectlSurface",
    "HttpControlSurface",
    "ActionExecutor",
    "RestartExecutor",
    "ScaleExecutor",
    "CacheFlushExecutor",
    "build_executors",
    "RemediationPolicy",
    "ResourceLimits",
    "RemediationEngine",
    "RemediationPlan",
    "INVARIANT_VIOLATION_ALERT",
]
