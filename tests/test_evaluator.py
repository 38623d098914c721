"""
Tests for error-budget evaluation.

Verifies SLI and budget arithmetic, staleness handling, the degraded
internal alert and monotonic ordering of budget states.
"""

from datetime import timedelta

import pytest

from autoheal.alerting.models import AlertSeverity, AlertState
from autoheal.metrics import metrics
from autoheal.slo import (
    BUDGET_EXHAUSTED_ALERT,
    EVALUATOR_DEGRADED_ALERT,
    ErrorBudgetEvaluator,
    LatencyHistogram,
    Objective,
    ObjectiveKind,
    RatioSample,
    StaticMetricsSource,
    compute_remaining_budget,
)

from conftest import T0


def ratio_objective(target=0.999, resource="api", tick_seconds=None):
    return Objective(
        id="api-availability",
        target=target,
        window=timedelta(minutes=30),
        resource=resource,
        success_query="good",
        total_query="all",
        tick_seconds=tick_seconds,
    )


@pytest.fixture
def source():
    return StaticMetricsSource()


class TestBudgetArithmetic:
    """Tests for remaining budget computation."""

    def test_budget_in_unit_interval(self):
        for target in (0.5, 0.9, 0.99, 0.999):
            for sli in (0.0, 0.1, 0.5, 0.9, 0.98, 0.998, 0.9995, 1.0):
                remaining, _ = compute_remaining_budget(sli, target)
                assert 0.0 <= remaining <= 1.0

    def test_meeting_target_leaves_full_budget(self):
        assert compute_remaining_budget(0.999, 0.999) == (1.0, 1.0)
        assert compute_remaining_budget(1.0, 0.99) == (1.0, 1.0)

    def test_any_shortfall_exhausts(self):
        remaining, raw = compute_remaining_budget(0.9985, 0.999)
        assert remaining == 0.0
        assert raw == pytest.approx(-0.5)

        remaining, raw = compute_remaining_budget(0.75, 0.8)
        assert remaining == 0.0
        assert raw == pytest.approx(-0.25)


def test_scenario_998_of_1000_exhausts_budget(source):
    """Target 99.9%, 998/1000 successes: budget -1 clamped to 0 and flagged."""
    objective = ratio_objective(0.999)
    source.set_sample(objective.id, RatioSample(success=998, total=1000))
    evaluator = ErrorBudgetEvaluator([objective], source)

    state = evaluator.evaluate(objective, T0)

    assert state.sli == pytest.approx(0.998)
    assert state.raw_budget == pytest.approx(-1.0)
    assert state.remaining_budget == 0.0
    assert state.exhausted


def test_exhaustion_raises_and_clears_internal_alert(source):
    objective = ratio_objective(0.999)
    evaluator = ErrorBudgetEvaluator([objective], source, tick_seconds=30)

    source.set_sample(objective.id, RatioSample(success=998, total=1000))
    alerts = evaluator.evaluate_all(T0)
    assert [(a.name, a.state) for a in alerts] == [(BUDGET_EXHAUSTED_ALERT, AlertState.FIRING)]
    assert alerts[0].severity == AlertSeverity.CRITICAL
    assert alerts[0].labels == {"objective": objective.id, "resource": "api"}

    # Still exhausted: no repeat
    assert evaluator.evaluate_all(T0 + timedelta(seconds=30)) == []

    source.set_sample(objective.id, RatioSample(success=1000, total=1000))
    alerts = evaluator.evaluate_all(T0 + timedelta(seconds=60))
    assert [(a.name, a.state) for a in alerts] == [(BUDGET_EXHAUSTED_ALERT, AlertState.RESOLVED)]


def test_zero_samples_is_not_an_error(source):
    objective = ratio_objective()
    source.set_sample(objective.id, RatioSample(success=0, total=0))
    evaluator = ErrorBudgetEvaluator([objective], source)

    state = evaluator.evaluate(objective, T0)

    assert state.no_data
    assert state.sli == 1.0
    assert state.remaining_budget == 1.0
    assert evaluator.stale_count(objective.id) == 0


def test_fetch_failure_keeps_previous_state(source):
    objective = ratio_objective(0.99)
    evaluator = ErrorBudgetEvaluator([objective], source)
    source.set_sample(objective.id, RatioSample(success=995, total=1000))
    good = evaluator.evaluate(objective, T0)

    source.set_failure(objective.id, "prometheus unreachable")
    kept = evaluator.evaluate(objective, T0 + timedelta(seconds=30))

    assert kept.remaining_budget == good.remaining_budget
    assert kept.evaluated_at == good.evaluated_at
    assert kept.stale_count == 1
    assert evaluator.stale_count(objective.id) == 1
    assert metrics.get_gauge("autoheal_evaluator_stale_count", {"objective": objective.id}) == 1
    assert metrics.get_gauge("autoheal_error_budget_remaining", {"objective": objective.id}) == good.remaining_budget


def test_three_failures_raise_degraded_once(source):
    objective = ratio_objective()
    evaluator = ErrorBudgetEvaluator([objective], source, tick_seconds=30)
    source.set_failure(objective.id)

    emitted = []
    for tick in range(5):
        emitted.append(evaluator.evaluate_all(T0 + timedelta(seconds=30 * tick)))

    assert [len(alerts) for alerts in emitted] == [0, 0, 1, 0, 0]
    assert emitted[2][0].name == EVALUATOR_DEGRADED_ALERT
    assert emitted[2][0].is_firing
    assert evaluator.is_degraded(objective.id)
    assert evaluator.get_state(objective.id) is None

    source.set_sample(objective.id, RatioSample(success=1000, total=1000))
    alerts = evaluator.evaluate_all(T0 + timedelta(seconds=150))

    assert [(a.name, a.state) for a in alerts] == [(EVALUATOR_DEGRADED_ALERT, AlertState.RESOLVED)]
    assert not evaluator.is_degraded(objective.id)
    assert evaluator.stale_count(objective.id) == 0


def test_budget_state_never_goes_back_in_time(source):
    objective = ratio_objective(0.99)
    evaluator = ErrorBudgetEvaluator([objective], source)
    source.set_sample(objective.id, RatioSample(success=1000, total=1000))
    later = evaluator.evaluate(objective, T0 + timedelta(minutes=1))

    source.set_sample(objective.id, RatioSample(success=900, total=1000))
    result = evaluator.evaluate(objective, T0)

    assert result is later
    assert evaluator.get_state(objective.id).evaluated_at == T0 + timedelta(minutes=1)


def test_latency_objective_uses_threshold_bucket(source):
    objective = Objective(
        id="api-latency",
        target=0.95,
        window=timedelta(minutes=30),
        kind=ObjectiveKind.LATENCY,
        latency_query="buckets",
        latency_threshold_seconds=0.25,
    )
    source.set_sample(objective.id, LatencyHistogram(
        buckets=((0.1, 900.0), (0.25, 990.0), (0.5, 995.0)),
        total=1000.0,
    ))
    evaluator = ErrorBudgetEvaluator([objective], source)

    state = evaluator.evaluate(objective, T0)

    assert state.sli == pytest.approx(0.99)
    assert state.remaining_budget == 1.0


def test_evaluate_all_respects_tick_interval(source):
    fast = ratio_objective(tick_seconds=10)
    slow = Objective(
        id="slow", target=0.9, window=timedelta(hours=1),
        success_query="good", total_query="all", tick_seconds=60,
    )
    for objective in (fast, slow):
        source.set_sample(objective.id, RatioSample(success=100, total=100))
    evaluator = ErrorBudgetEvaluator([fast, slow], source, tick_seconds=30)

    evaluator.evaluate_all(T0)
    evaluator.evaluate_all(T0 + timedelta(seconds=5))
    evaluator.evaluate_all(T0 + timedelta(seconds=10))

    assert source.fetch_count == 3
    assert evaluator.get_state("api-availability").evaluated_at == T0 + timedelta(seconds=10)
    assert evaluator.get_state("slow").evaluated_at == T0


class ExplodingSource(StaticMetricsSource):
    """Raises a plain ConnectionError for one objective."""

    def __init__(self, broken_id):
        super().__init__()
        self.broken_id = broken_id

    def fetch(self, objective, window):
        if objective.id == self.broken_id:
            self.fetch_count += 1
            raise ConnectionError("connection reset by peer")
        return super().fetch(objective, window)


def test_untyped_source_error_counts_as_stale():
    broken = ratio_objective()
    healthy = Objective(
        id="checkout", target=0.99, window=timedelta(minutes=30),
        success_query="good", total_query="all",
    )
    source = ExplodingSource(broken.id)
    source.set_sample(healthy.id, RatioSample(success=1000, total=1000))
    evaluator = ErrorBudgetEvaluator([broken, healthy], source, tick_seconds=30)

    emitted = []
    for tick in range(4):
        emitted.extend(evaluator.evaluate_all(T0 + timedelta(seconds=30 * tick)))

    assert evaluator.stale_count(broken.id) == 4
    assert evaluator.is_degraded(broken.id)
    assert [a.name for a in emitted] == [EVALUATOR_DEGRADED_ALERT]
    assert evaluator.get_state(healthy.id).evaluated_at == T0 + timedelta(seconds=90)


class TestObjectiveValidation:
    """Tests for objective definitions."""

    def test_valid(self):
        assert ratio_objective().validate() == []

    def test_target_bounds(self):
        assert ratio_objective(target=1.0).validate()
        assert ratio_objective(target=0.0).validate()

    def test_from_dict(self):
        objective = Objective.from_dict({
            "id": "checkout",
            "target": 0.995,
            "window_minutes": 60,
            "success_query": "a",
            "total_query": "b",
        })
        assert objective.window == timedelta(hours=1)
        assert objective.kind == ObjectiveKind.RATIO
        assert objective.validate() == []

    def test_latency_needs_threshold(self):
        objective = Objective.from_dict({
            "id": "lat", "target": 0.9, "kind": "latency", "latency_query": "q",
        })
        assert any("latency_threshold_seconds" in e for e in objective.validate())
