"""
Tests for the remediation controller tick pipeline.
"""

import asyncio
from datetime import timedelta

import pytest

from autoheal.alerting.models import AlertState, IncidentState
from autoheal.audit import AuditEventType
from autoheal.controller import RemediationController
from autoheal.remediation.actions import ActionKind
from autoheal.slo import (
    EVALUATOR_DEGRADED_ALERT,
    ErrorBudgetEvaluator,
    MetricsSource,
    Objective,
    RatioSample,
    StaticMetricsSource,
)

from conftest import T0


def availability():
    return Objective(
        id="api-availability",
        target=0.999,
        window=timedelta(minutes=30),
        resource="api",
        success_query="good",
        total_query="all",
    )


class BrokenSource(MetricsSource):
    """Source failing with an unexpected error type."""

    def fetch(self, objective, window):
        raise RuntimeError("driver bug")


@pytest.fixture
def make_controller(build_engine, clock):
    def _make(action_map=None, source=None, **engine_kwargs):
        engine = build_engine(action_map or {"ApplicationDown": ["restart"]}, **engine_kwargs)
        evaluator = None
        if source is not None:
            evaluator = ErrorBudgetEvaluator([availability()], source, tick_seconds=30, clock=clock)
        return RemediationController(
            classifier=engine.classifier,
            engine=engine,
            evaluator=evaluator,
            tick_interval=timedelta(seconds=30),
            clock=clock,
        )
    return _make


@pytest.mark.asyncio
async def test_tick_classifies_and_remediates(make_controller, clock, surface, make_alert):
    controller = make_controller()
    await controller.start()

    assert controller.ingest(make_alert("ApplicationDown", "r1"))
    snapshot = await controller.tick(clock())

    assert snapshot.tick_count == 1
    assert len(snapshot.incidents) == 1
    assert snapshot.incidents[0]["state"] == "mitigating"
    assert [a["kind"] for a in snapshot.running] == ["restart"]
    assert snapshot.queue_depth == 0

    await controller.engine.wait_idle()
    snapshot = await controller.tick(clock.advance(30))

    assert surface.calls == [("restart", "r1")]
    assert snapshot.running == []
    assert snapshot.actions[0]["status"] == "succeeded"
    assert snapshot.cooldowns[0]["resource"] == "r1"
    assert snapshot.incidents[0]["state"] == "mitigating"

    # Quiet for the grace period after the restart
    snapshot = await controller.tick(clock.advance(30))
    assert snapshot.incidents[0]["state"] == "resolved"
    assert controller.snapshot() is snapshot


@pytest.mark.asyncio
async def test_snapshot_only_changes_at_tick_end(make_controller, clock, make_alert):
    controller = make_controller()
    before = controller.snapshot()

    controller.ingest(make_alert("ApplicationDown", "r1"))

    assert controller.snapshot() is before
    assert before.incidents == []


@pytest.mark.asyncio
async def test_budget_exhaustion_is_visible_in_snapshot(make_controller, clock):
    source = StaticMetricsSource()
    source.set_sample("api-availability", RatioSample(success=998, total=1000))
    controller = make_controller(source=source)

    snapshot = await controller.tick(clock())

    budget = snapshot.budgets["api-availability"]
    assert budget["remaining_budget"] == 0.0
    assert budget["exhausted"] is True
    # The exhaustion alert is classified in the same tick and escalated (unmapped)
    assert [i["alert_name"] for i in snapshot.incidents] == ["ErrorBudgetExhausted"]
    assert snapshot.incidents[0]["state"] == "escalated"
    await controller.engine.wait_idle()

@pytest.mark.asyncio
async def test_degraded_evaluator_is_escalated(make_controller, clock, notifier):
    source = StaticMetricsSource()
    source.set_failure("api-availability", "prometheus unreachable")
    controller = make_controller(source=source)

    for _ in range(3):
        snapshot = await controller.tick(clock())
        clock.advance(30)
    await controller.engine.wait_idle()

    assert snapshot.degraded_objectives == ["api-availability"]
    assert len(snapshot.incidents) == 1
    incident = snapshot.incidents[0]
    assert incident["alert_name"] == EVALUATOR_DEGRADED_ALERT
    assert incident["state"] == "escalated"
    assert incident["escalation_reason"] == (
        f"no applicable action: no remediation mapped for '{EVALUATOR_DEGRADED_ALERT}'"
    )
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_phase_failure_does_not_stop_tick(make_controller, clock, make_alert):
    controller = make_controller(source=BrokenSource())

    controller.ingest(make_alert("ApplicationDown", "r1"))
    snapshot = await controller.tick(clock())

    assert snapshot.budgets == {}
    assert snapshot.incidents[0]["state"] == "mitigating"
    await controller.engine.wait_idle()

@pytest.mark.asyncio
async def test_start_restores_cooldowns_from_audit(make_controller, clock):
    controller = make_controller()
    await controller.audit.record(
        AuditEventType.ACTION_STARTED,
        resource="r1",
        action_kind="restart",
        timestamp=T0 - timedelta(minutes=1),
    )

    await controller.start()

    assert controller.engine.cooldown_until("r1", ActionKind.RESTART) == T0 + timedelta(minutes=4)


@pytest.mark.asyncio
async def test_run_until_stopped_waits_for_running_actions(make_controller, clock, surface, make_alert):
    controller = make_controller()
    controller.tick_interval = timedelta(seconds=0.01)
    controller.ingest(make_alert("ApplicationDown", "r1"))

    stop = asyncio.Event()
    asyncio.get_running_loop().call_later(0.1, stop.set)
    await controller.run(stop)

    assert controller.snapshot().tick_count >= 1
    assert surface.calls == [("restart", "r1")]
    assert controller.engine.running_actions() == []
    history = controller.engine.snapshot()["actions"]
    assert history[0]["status"] == "succeeded"


@pytest.mark.asyncio
async def test_escalated_incident_closes_after_alerts_clear(make_controller, clock, make_alert):
    controller = make_controller({"ApplicationDown": []})
    controller.ingest(make_alert("HighLatency", "r1"))
    await controller.tick(clock())

    controller.ingest(make_alert("HighLatency", "r1", state=AlertState.RESOLVED, timestamp=clock.advance(5)))
    await controller.tick(clock())
    snapshot = await controller.tick(clock.advance(30))

    incident = snapshot.incidents[0]
    assert incident["state"] == IncidentState.ESCALATED.value
    assert incident["closed_at"] is not None
    assert AuditEventType.INCIDENT_CLOSED in [e.event_type for e in controller.audit.backend.events]
    await controller.engine.wait_idle()
