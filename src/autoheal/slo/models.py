"""
SLO data model.

An objective is immutable once loaded; every evaluation produces a new
BudgetState rather than mutating the previous one.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class ObjectiveKind(str, Enum):
    """How the SLI of an objective is measured."""
    RATIO = "ratio"  # successes / total
    LATENCY = "latency"  # fraction of requests under a threshold


@dataclass(frozen=True)
class Objective:
    """
    Service level objective.

    Attributes:
        id: Unique identifier. Redefinition requires a new id.
        target: Target SLI ratio, strictly between 0 and 1
        window: Trailing measurement window
        kind: Ratio or latency objective
        resource: Resource protected by this objective (optional)
        success_query: Query counting good events (ratio objectives)
        total_query: Query counting all events
        latency_query: Histogram bucket query (latency objectives)
        latency_threshold_seconds: Upper bound for a "good" request
        tick_seconds: Evaluation interval; None uses the controller tick
    """
    id: str
    target: float
    window: timedelta
    kind: ObjectiveKind = ObjectiveKind.RATIO
    resource: Optional[str] = None
    success_query: Optional[str] = None
    total_query: Optional[str] = None
    latency_query: Optional[str] = None
    latency_threshold_seconds: Optional[float] = None
    tick_seconds: Optional[float] = None

    def validate(self) -> list:
        """Return a list of problems with this definition (empty if valid)."""
        errors = []
        if not self.id:
            errors.append("objective id is required")
        if not (0.0 < self.target < 1.0):
            errors.append(f"objective '{self.id}': target must be between 0 and 1 (exclusive), got {self.target}")
        if self.window.total_seconds() <= 0:
            errors.append(f"objective '{self.id}': window must be positive")
        if self.tick_seconds is not None and self.tick_seconds <= 0:
            errors.append(f"objective '{self.id}': tick_seconds must be positive")
        if self.kind == ObjectiveKind.RATIO:
            if not self.success_query or not self.total_query:
                errors.append(f"objective '{self.id}': ratio objectives need success_query and total_query")
        elif self.kind == ObjectiveKind.LATENCY:
            if not self.latency_query:
                errors.append(f"objective '{self.id}': latency objectives need latency_query")
            if self.latency_threshold_seconds is None or self.latency_threshold_seconds <= 0:
                errors.append(f"objective '{self.id}': latency_threshold_seconds must be positive")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Objective":
        """Build an objective from a configuration mapping."""
        window = data.get("window_minutes", 30)
        return cls(
            id=str(data.get("id", "")),
            target=float(data.get("target", 0.0)),
            window=timedelta(minutes=float(window)),
            kind=ObjectiveKind(data.get("kind", "ratio")),
            resource=data.get("resource"),
            success_query=data.get("success_query"),
            total_query=data.get("total_query"),
            latency_query=data.get("latency_query"),
            latency_threshold_seconds=data.get("latency_threshold_seconds"),
            tick_seconds=data.get("tick_seconds"),
        )


@dataclass(frozen=True)
class RatioSample:
    """Aggregate good/total counts over a window."""
    success: float
    total: float


@dataclass(frozen=True)
class LatencyHistogram:
    """
    Cumulative latency histogram over a window.

    Attributes:
        buckets: (upper bound seconds, cumulative count) pairs
        total: Total request count
    """
    buckets: Tuple[Tuple[float, float], ...]
    total: float


Sample = Union[RatioSample, LatencyHistogram]


@dataclass(frozen=True)
class BudgetState:
    """
    Error-budget state of one objective at one evaluation.

    Attributes:
        objective_id: Objective this state belongs to
        sli: Measured SLI for the window
        remaining_budget: Remaining budget fraction, clamped to [0, 1]
        exhausted: True when the raw budget was at or below zero
        evaluated_at: Time of the evaluation that produced this state
        stale_count: Consecutive failed fetches since this state was produced
        no_data: True when the window contained zero requests
    """
    objective_id: str
    sli: float
    remaining_budget: float
    evaluated_at: datetime
    exhausted: bool = False
    stale_count: int = 0
    no_data: bool = False
    raw_budget: float = field(default=1.0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "objective_id": self.objective_id,
            "sli": self.sli,
            "remaining_budget": self.remaining_budget,
            "exhausted": self.exhausted,
            "evaluated_at": self.evaluated_at.isoformat(),
            "stale_count": self.stale_count,
            "no_data": self.no_data,
        }


def compute_sli(objective: Objective, sample: Sample) -> Optional[float]:
    """
    Compute the SLI of a sample.

    Returns:
        SLI in [0, 1], or None when the window holds no requests
    """
    if sample.total <= 0:
        return None

    if isinstance(sample, RatioSample):
        good = sample.success
    else:
        threshold = objective.latency_threshold_seconds or 0.0
        # Cumulative buckets: the largest bound under the threshold holds the good count
        good = 0.0
        for upper_bound, count in sorted(sample.buckets):
            if upper_bound <= threshold:
                good = count
            else:
                break

    return max(0.0, min(1.0, good / sample.total))


def compute_remaining_budget(sli: float, target: float) -> Tuple[float, float]:
    """
    Remaining error budget for an SLI against a target.

    remaining = 1 - (1 - sli) / (1 - target), clamped to [0, 1]. An SLI
    that meets the target leaves the whole budget available.

    Returns:
        (clamped remaining budget, raw unclamped value)
    """
    if sli >= target:
        return 1.0, 1.0

    raw = 1.0 - (1.0 - sli) / (1.0 - target)
    return max(0.0, min(1.0, raw)), raw
