"""
Service level objectives and error-budget evaluation.

Classes:
    Objective: SLO definition loaded from configuration
    BudgetState: Result of one evaluation tick
    ErrorBudgetEvaluator: Periodic evaluator with staleness tracking
    MetricsSource: Pull interface for SLI samples
"""

from .models import (
    Objective,
    ObjectiveKind,
    BudgetState,
    RatioSample,
    LatencyHistogram,
    compute_sli,
    compute_remaining_budget,
)
from .evaluator import ErrorBudgetEvaluator, EVALUATOR_DEGRADED_ALERT, BUDGET_EXHAUSTED_ALERT
from .sources import MetricsSource, StaticMetricsSource, PrometheusMetricsSource

__all__ = [
    "Objective",
    "ObjectiveKind",
    "BudgetState",
    "RatioSample",
    "LatencyHistogram",
    "compute_sli",
    "compute_remaining_budget",
    "ErrorBudgetEvaluator",
    "EVALUATOR_DEGRADED_ALERT",
    "BUDGET_EXHAUSTED_ALERT",
    "MetricsSource",
    "StaticMetricsSource",
    "PrometheusMetricsSource",
]
