"""
Error-budget evaluator.

Turns SLI samples into BudgetState on a fixed tick per objective. A failed
fetch never produces a fresh-looking state: the previous state is kept,
a staleness counter grows, and after a configured number of consecutive
failures an internal "evaluator degraded" alert is raised.

Example:
    >>> evaluator = ErrorBudgetEvaluator([objective], source)
    >>> state = evaluator.evaluate(objective)
    >>> internal_alerts = evaluator.evaluate_all()
"""
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from ..alerting.models import AlertEvent, AlertSeverity, AlertState
from ..exceptions import MetricsFetchError
from ..logging_context import LoggingContext, get_logger
from ..metrics import track_budget_remaining, track_evaluator_staleness
from .models import BudgetState, Objective, compute_remaining_budget, compute_sli
from .sources import MetricsSource

logger = get_logger(__name__)

EVALUATOR_DEGRADED_ALERT = "EvaluatorDegraded"
BUDGET_EXHAUSTED_ALERT = "ErrorBudgetExhausted"

DEFAULT_DEGRADED_THRESHOLD = 3


class ErrorBudgetEvaluator:
    """
    Evaluates objectives against a metrics source.

    The evaluator is the only writer of BudgetState. Internal alerts it
    raises (degraded evaluation, exhausted budget) are queued and handed to
    the caller by evaluate_all() so they travel through the normal alert
    classification path.
    """

    def __init__(
        self,
        objectives: Iterable[Objective],
        source: MetricsSource,
        tick_seconds: float = 30.0,
        degraded_threshold: int = DEFAULT_DEGRADED_THRESHOLD,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize evaluator.

        Args:
            objectives: Objectives to track
            source: Metrics source to pull samples from
            tick_seconds: Default evaluation interval
            degraded_threshold: Consecutive failures before raising a degraded alert
            clock: Time source
        """
        self.objectives: Dict[str, Objective] = {o.id: o for o in objectives}
        self.source = source
        self.tick_seconds = tick_seconds
        self.degraded_threshold = degraded_threshold
        self.clock = clock

        self._states: Dict[str, BudgetState] = {}
        self._stale: Dict[str, int] = {}
        self._next_due: Dict[str, datetime] = {}
        self._degraded: set = set()
        self._exhausted: set = set()
        self._internal_alerts: List[AlertEvent] = []

    def evaluate(self, objective: Objective, now: Optional[datetime] = None) -> Optional[BudgetState]:
        """
        Evaluate one objective over its trailing window.

        Args:
            objective: Objective to evaluate
            now: Evaluation time (defaults to the clock)

        Returns:
            The new BudgetState, or on a failed fetch the previous state
            with its staleness counter raised (None if there never was one)
        """
        now = now or self.clock()
        previous = self._states.get(objective.id)

        try:
            sample = self.source.fetch(objective, objective.window)
        except MetricsFetchError as e:
            return self._record_failure(objective, previous, now, str(e))
        except Exception as e:
            return self._record_failure(objective, previous, now, f"{type(e).__name__}: {e}")

        sli = compute_sli(objective, sample)
        if sli is None:
            state = BudgetState(
                objective_id=objective.id,
                sli=1.0,
                remaining_budget=1.0,
                evaluated_at=now,
                no_data=True,
            )
        else:
            remaining, raw = compute_remaining_budget(sli, objective.target)
            state = BudgetState(
                objective_id=objective.id,
                sli=sli,
                remaining_budget=remaining,
                evaluated_at=now,
                exhausted=raw <= 0.0,
                raw_budget=raw,
            )

        if previous is not None and state.evaluated_at < previous.evaluated_at:
            logger.warning(
                f"Discarding out-of-order evaluation for '{objective.id}' "
                f"({state.evaluated_at.isoformat()} < {previous.evaluated_at.isoformat()})"
            )
            return previous

        self._states[objective.id] = state
        self._stale[objective.id] = 0
        track_budget_remaining(objective.id, state.remaining_budget)
        track_evaluator_staleness(objective.id, 0)

        if objective.id in self._degraded:
            self._degraded.discard(objective.id)
            logger.info(f"Evaluator for '{objective.id}' recovered")
            self._emit(EVALUATOR_DEGRADED_ALERT, objective, AlertState.RESOLVED, now)

        self._track_exhaustion(objective, state, now)

        logger.debug(
            f"Objective '{objective.id}': sli={state.sli:.5f} "
            f"remaining={state.remaining_budget:.3f} exhausted={state.exhausted}"
        )
        return state

    def _record_failure(
        self,
        objective: Objective,
        previous: Optional[BudgetState],
        now: datetime,
        reason: str
    ) -> Optional[BudgetState]:
        """Keep the previous state and count the missed evaluation."""
        stale_count = self._stale.get(objective.id, 0) + 1
        self._stale[objective.id] = stale_count
        track_evaluator_staleness(objective.id, stale_count)

        logger.warning(
            f"Metrics fetch failed for '{objective.id}' "
            f"({stale_count} consecutive): {reason}"
        )

        if stale_count >= self.degraded_threshold and objective.id not in self._degraded:
            self._degraded.add(objective.id)
            logger.error(
                f"Evaluator degraded for '{objective.id}' after {stale_count} failed fetches"
            )
            self._emit(EVALUATOR_DEGRADED_ALERT, objective, AlertState.FIRING, now)

        if previous is None:
            return None

        kept = replace(previous, stale_count=stale_count)
        self._states[objective.id] = kept
        return kept

    def _track_exhaustion(self, objective: Objective, state: BudgetState, now: datetime) -> None:
        """Raise or clear the budget-exhausted alert on transitions."""
        if state.exhausted and objective.id not in self._exhausted:
            self._exhausted.add(objective.id)
            logger.warning(f"Error budget exhausted for '{objective.id}' (sli={state.sli:.5f})")
            self._emit(BUDGET_EXHAUSTED_ALERT, objective, AlertState.FIRING, now)
        elif not state.exhausted and objective.id in self._exhausted:
            self._exhausted.discard(objective.id)
            logger.info(f"Error budget for '{objective.id}' recovered")
            self._emit(BUDGET_EXHAUSTED_ALERT, objective, AlertState.RESOLVED, now)

    def _emit(self, name: str, objective: Objective, state: AlertState, now: datetime) -> None:
        labels = {"objective": objective.id}
        if objective.resource:
            labels["resource"] = objective.resource
        self._internal_alerts.append(AlertEvent(
            name=name,
            severity=AlertSeverity.CRITICAL,
            labels=labels,
            state=state,
            timestamp=now,
        ))

    def evaluate_all(self, now: Optional[datetime] = None) -> List[AlertEvent]:
        """
        Evaluate every objective whose tick is due.

        Returns:
            Internal alert events raised since the last call
        """
        now = now or self.clock()

        for objective in self.objectives.values():
            due = self._next_due.get(objective.id)
            if due is not None and now < due:
                continue

            interval = objective.tick_seconds or self.tick_seconds
            self._next_due[objective.id] = now + timedelta(seconds=interval)
            with LoggingContext(objective_id=objective.id):
                try:
                    self.evaluate(objective, now)
                except Exception as e:
                    logger.error(f"Evaluation of '{objective.id}' failed: {e}", exc_info=True)
                    self._record_failure(objective, self._states.get(objective.id), now, str(e))

        alerts, self._internal_alerts = self._internal_alerts, []
        return alerts

    def get_state(self, objective_id: str) -> Optional[BudgetState]:
        """Current BudgetState of an objective."""
        return self._states.get(objective_id)

    def get_states(self) -> Dict[str, BudgetState]:
        """Copy of all current budget states (states themselves are frozen)."""
        return dict(self._states)

    def stale_count(self, objective_id: str) -> int:
        """Consecutive failed fetches for an objective."""
        return self._stale.get(objective_id, 0)

    def is_degraded(self, objective_id: str) -> bool:
        return objective_id in self._degraded
