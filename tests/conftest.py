"""
Shared fixtures: a controllable clock, a recording control surface and a
recording escalation sink.
"""

import threading
from datetime import datetime, timedelta

import pytest

from autoheal.alerting.classifier import AlertClassifier
from autoheal.alerting.models import AlertEvent, AlertSeverity, AlertState
from autoheal.alerting.notifiers import EscalationDispatcher, Notifier
from autoheal.audit import AuditLog, MemoryAuditBackend
from autoheal.metrics import metrics
from autoheal.remediation.actions import ActionSpec
from autoheal.remediation.engine import RemediationEngine
from autoheal.remediation.executors import build_executors
from autoheal.remediation.policy import RemediationPolicy, ResourceLimits
from autoheal.remediation.surfaces import OrchestrationSurface

T0 = datetime(2024, 5, 1, 10, 0, 0)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeSurface(OrchestrationSurface):
    """
    Records control surface calls.

    Set ``gate`` to a threading.Event to hold calls until it is set, and add
    operation names to ``failing`` to make them report failure.
    """

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.gate = None
        self._lock = threading.Lock()

    def _call(self, operation, *args):
        if self.gate is not None:
            self.gate.wait(5)
        with self._lock:
            self.calls.append((operation,) + args)
        return operation not in self.failing

    def restart(self, resource):
        return self._call("restart", resource)

    def set_replicas(self, resource, count):
        return self._call("set_replicas", resource, count)

    def flush_cache(self, resource):
        return self._call("flush_cache", resource)


class RecordingNotifier(Notifier):
    """Escalation sink that keeps what it was sent."""

    def __init__(self):
        self.sent = []

    def notify(self, incident, reason, context=None):
        self.sent.append((incident, reason, context))
        return True


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_alert():
    """Factory for alert events."""
    def _make(
        name,
        resource="r1",
        state=AlertState.FIRING,
        severity=AlertSeverity.CRITICAL,
        timestamp=T0,
        **labels
    ):
        if resource is not None:
            labels["resource"] = resource
        return AlertEvent(name=name, severity=severity, labels=labels, state=state, timestamp=timestamp)
    return _make


@pytest.fixture
def build_engine(clock, surface, notifier):
    """Factory for an engine over the fake surface, clock and notifier."""
    def _build(action_map, cooldown=300, grace=30, resources=None, executor_timeout=2.0, **policy_kwargs):
        classifier = AlertClassifier(grace_period=timedelta(seconds=grace), clock=clock)
        policy = RemediationPolicy(
            action_map={
                name: [ActionSpec.from_config(entry) for entry in entries]
                for name, entries in action_map.items()
            },
            cooldown=timedelta(seconds=cooldown),
            resources={name: ResourceLimits(**limits) for name, limits in (resources or {}).items()},
            **policy_kwargs
        )
        return RemediationEngine(
            policy=policy,
            executors=build_executors(surface, timeout=executor_timeout),
            classifier=classifier,
            audit=AuditLog(MemoryAuditBackend(), clock=clock),
            dispatcher=EscalationDispatcher({"recorder": notifier}),
            grace_period=timedelta(seconds=grace),
            clock=clock,
        )
    return _build
