"""
Remediation engine.

Drives every active incident through its remediation state machine::

    open -> mitigating -> resolved
    open/mitigating -> escalated   (terminal, one human notification)

Each call to step() is one remediation cycle. The engine is the single
writer of cooldown records, running-action slots and incident lifecycle
state: executor calls run as asyncio tasks, but their outcomes are only
applied when the next step() harvests them.

Example:
    >>> engine = RemediationEngine(policy, executors, classifier, audit, dispatcher)
    >>> await engine.step(now)
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from ..alerting.classifier import AlertClassifier
from ..alerting.models import AlertEvent, AlertSeverity, AlertState, Incident, IncidentState
from ..alerting.notifiers import EscalationDispatcher
from ..audit import AuditEventType, AuditLog
from ..exceptions import InvariantViolationError
from ..logging_context import LoggingContext, get_logger
from ..metrics import track_action, track_action_duration, track_action_refused, track_incident_transition
from ..slo.models import BudgetState
from .actions import ActionKind, ActionOutcome, ActionSpec, ActionStatus, RemediationAction
from .executors import ActionExecutor, require_executor
from .policy import RemediationPolicy

logger = get_logger(__name__)

INVARIANT_VIOLATION_ALERT = "RemediationInvariantViolation"

CooldownKey = Tuple[str, str]


@dataclass
class RemediationPlan:
    """
    Per-incident remediation bookkeeping.

    Attributes:
        incident_id: Incident this plan belongs to
        attempts: Attempts issued per action kind
        total_attempts: Attempts issued across all kinds
        actions: Every action issued for the incident
        current: Action in flight, if any
        verify_since: Completion time of the last successful action
        verify_until: End of the observation window after a success
        refused: (kind, reason) refusals already audited
        waiting_on: Running action of another incident this plan waits for
    """
    incident_id: str
    attempts: Dict[ActionKind, int] = field(default_factory=dict)
    total_attempts: int = 0
    actions: List[RemediationAction] = field(default_factory=list)
    current: Optional[RemediationAction] = None
    verify_since: Optional[datetime] = None
    verify_until: Optional[datetime] = None
    refused: Set[Tuple[str, str]] = field(default_factory=set)
    waiting_on: Optional[str] = None

    def attempts_for(self, kind: ActionKind) -> int:
        return self.attempts.get(kind, 0)


class RemediationEngine:
    """
    Selects, guards and tracks remediation actions for incidents.

    Guards checked before any action is issued:

    - no action of the same kind is running on the same resource
    - the cooldown for (resource, kind) has elapsed
    - the incident has attempts of that kind left

    A failing guard moves on to the next candidate. When no candidate is
    left the incident escalates, unless the only obstacle is an action
    already running on the same resource, in which case it waits.
    """

    def __init__(
        self,
        policy: RemediationPolicy,
        executors: Dict[ActionKind, ActionExecutor],
        classifier: AlertClassifier,
        audit: AuditLog,
        dispatcher: Optional[EscalationDispatcher] = None,
        grace_period: timedelta = timedelta(seconds=30),
        max_history_size: int = 1000,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize engine.

        Args:
            policy: Static remediation policy
            executors: Executor per action kind
            classifier: Owner of the incident table
            audit: Audit log for every decision and outcome
            dispatcher: Escalation notifiers
            grace_period: Observation window after a successful action
            max_history_size: Finished actions kept for inspection
            clock: Time source
        """
        self.policy = policy
        self.executors = executors
        self.classifier = classifier
        self.audit = audit
        self.dispatcher = dispatcher or EscalationDispatcher()
        self.grace_period = grace_period
        self.clock = clock

        self._plans: Dict[str, RemediationPlan] = {}
        self._cooldowns: Dict[CooldownKey, datetime] = {}
        self._running: Dict[CooldownKey, RemediationAction] = {}
        self._tasks: Dict[str, Tuple[RemediationAction, asyncio.Task]] = {}
        self._notifications: Set[asyncio.Task] = set()
        self._replicas: Dict[str, int] = {}
        self._violations: Set[CooldownKey] = set()
        self._history: Deque[RemediationAction] = deque(maxlen=max_history_size)
        self._internal_alerts: List[AlertEvent] = []

    async def step(
        self,
        now: Optional[datetime] = None,
        budgets: Optional[Dict[str, BudgetState]] = None
    ) -> None:
        """
        Run one remediation cycle.

        Harvests finished actions first, then advances every active
        incident, critical incidents first and oldest first within a
        severity.

        Args:
            now: Cycle time (defaults to the clock)
            budgets: Current budget states, attached to escalations
        """
        now = now or self.clock()
        await self.harvest(now)

        incidents = sorted(
            self.classifier.active_incidents(),
            key=lambda i: (-i.severity.rank, i.created_at)
        )
        for incident in incidents:
            with LoggingContext(incident_id=incident.incident_id, resource=incident.resource):
                try:
                    await self._advance(incident, now, budgets or {})
                except Exception as e:
                    logger.error(f"Remediation cycle failed for {incident.incident_id}: {e}", exc_info=True)

    async def _advance(self, incident: Incident, now: datetime, budgets: Dict[str, BudgetState]) -> None:
        if incident.state.is_terminal:
            return

        plan = self._plans.get(incident.incident_id)
        if plan is None:
            plan = self._plans[incident.incident_id] = RemediationPlan(incident.incident_id)
            await self._audit(
                AuditEventType.INCIDENT_OPENED,
                incident_id=incident.incident_id,
                resource=incident.resource,
                result=incident.severity.value,
                details={"alert": incident.alert_name, "labels": incident.identity_labels},
                timestamp=incident.created_at,
            )

        if plan.current is not None:
            return

        if plan.verify_until is not None:
            if incident.last_firing_at > plan.verify_since:
                logger.info(
                    f"'{incident.alert_name}' fired again after remediation of "
                    f"{incident.incident_id}, trying next action"
                )
                plan.verify_since = plan.verify_until = None
            elif now >= plan.verify_until:
                await self._resolve(incident, plan, now)
                return
            else:
                return

        if not self.policy.qualifies(incident.severity):
            logger.debug(
                f"{incident.incident_id} severity {incident.severity.value} below "
                f"{self.policy.min_severity.value}, not remediating"
            )
            return

        if not incident.resource:
            await self._escalate(incident, plan, "no applicable action: alert has no resource label", now, budgets)
            return

        specs = self.policy.candidates(incident.alert_name)
        if not specs:
            await self._escalate(
                incident, plan, f"no applicable action: no remediation mapped for '{incident.alert_name}'",
                now, budgets
            )
            return

        if plan.total_attempts >= self.policy.max_total_attempts:
            await self._escalate(
                incident, plan, f"remediation attempts exhausted ({plan.total_attempts} issued)",
                now, budgets
            )
            return

        action, waiting = await self._select(incident, plan, specs, now)
        if action is not None:
            await self.issue(action, now)
            return
        if waiting:
            return

        if plan.total_attempts:
            reason = f"remediation attempts exhausted ({plan.total_attempts} issued)"
        else:
            reason = "all candidate actions refused"
        await self._escalate(incident, plan, reason, now, budgets)

    async def _select(
        self,
        incident: Incident,
        plan: RemediationPlan,
        specs: List[ActionSpec],
        now: datetime
    ) -> Tuple[Optional[RemediationAction], bool]:
        """
        Pick the first candidate that passes every guard.

        Returns:
            (action to issue or None, True if a candidate waits on a running action)
        """
        waiting = False

        for spec in specs:
            kind = spec.kind
            if plan.attempts_for(kind) >= self.policy.attempt_limit(kind):
                continue

            key = (incident.resource, kind.value)
            running = self._running.get(key)
            if running is not None:
                waiting = True
                if plan.waiting_on != running.action_id:
                    plan.waiting_on = running.action_id
                    logger.info(f"{kind.value} of {incident.resource} already running ({running.action_id}), waiting")
                    await self._refuse(incident, kind, "running", now, {"running_action": running.action_id})
                continue

            last = self._cooldowns.get(key)
            if last is not None and now - last < self.policy.cooldown:
                remaining = (self.policy.cooldown - (now - last)).total_seconds()
                if ("cooldown", kind.value) not in plan.refused:
                    plan.refused.add(("cooldown", kind.value))
                    logger.warning(
                        f"Refusing {kind.value} of {incident.resource}: cooldown active "
                        f"for another {remaining:.0f}s"
                    )
                    await self._refuse(
                        incident, kind, "cooldown", now,
                        {"last_attempt": last.isoformat(), "remaining_seconds": remaining}
                    )
                continue

            parameters = self._parameters(incident.resource, spec)
            if parameters is None:
                if ("capacity", kind.value) not in plan.refused:
                    plan.refused.add(("capacity", kind.value))
                    logger.warning(f"Refusing {kind.value} of {incident.resource}: replica limit reached")
                    await self._refuse(
                        incident, kind, "capacity", now,
                        {"replicas": self._current_replicas(incident.resource)}
                    )
                continue

            plan.waiting_on = None
            return RemediationAction(
                kind=kind,
                resource=incident.resource,
                incident_id=incident.incident_id,
                parameters=parameters,
                created_at=now,
            ), False

        return None, waiting

    def _current_replicas(self, resource: str) -> int:
        return self._replicas.get(resource, self.policy.limits_for(resource).replicas)

    def _parameters(self, resource: str, spec: ActionSpec) -> Optional[Dict[str, Any]]:
        """Executor parameters for a spec, None if a scale cannot move."""
        if spec.kind != ActionKind.SCALE:
            return dict(spec.parameters)

        limits = self.policy.limits_for(resource)
        current = self._current_replicas(resource)
        if "replicas" in spec.parameters:
            target = limits.clamp(int(spec.parameters["replicas"]))
        else:
            target = limits.clamp(current + int(spec.parameters.get("delta", 1)))
        if target == current:
            return None
        return {"replicas": target, "delta": target - current}

    async def _audit(self, event_type: AuditEventType, **fields: Any) -> None:
        """Append to the audit log; a failed write is logged, never fatal to the cycle."""
        try:
            await self.audit.record(event_type, **fields)
        except Exception as e:
            logger.error(f"Audit write of {event_type.value} failed: {e}", exc_info=True)

    async def _refuse(
        self,
        incident: Incident,
        kind: ActionKind,
        reason: str,
        now: datetime,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        track_action_refused(kind.value, reason)
        await self._audit(
            AuditEventType.ACTION_REFUSED,
            incident_id=incident.incident_id,
            resource=incident.resource,
            action_kind=kind.value,
            result=reason,
            details=details,
            timestamp=now,
        )

    async def issue(self, action: RemediationAction, now: Optional[datetime] = None) -> bool:
        """
        Start an action.

        A second running action for the same (resource, kind) is an
        invariant violation: it is logged at critical level, audited,
        raised as an internal alert and the newer action is refused.

        Returns:
            True if the action was started
        """
        now = now or self.clock()
        key = action.key

        try:
            self._claim(action)
        except InvariantViolationError as e:
            running = self._running[key]
            action.status = ActionStatus.FAILED
            action.ended_at = now
            action.detail = f"refused: {running.action_id} already running"
            self._history.append(action)

            logger.critical(f"Invariant violation: {e}; refused")
            await self._audit(
                AuditEventType.INVARIANT_VIOLATION,
                incident_id=action.incident_id,
                resource=action.resource,
                action_kind=action.kind.value,
                action_id=action.action_id,
                result="refused",
                details={"running_action": running.action_id, "running_incident": running.incident_id},
                timestamp=now,
            )
            track_action_refused(action.kind.value, "invariant")
            if key not in self._violations:
                self._violations.add(key)
                self._internal_alerts.append(self._violation_alert(action, AlertState.FIRING, now))
            return False

        action.status = ActionStatus.RUNNING
        action.started_at = now
        self._cooldowns[key] = now
        self._history.append(action)

        plan = self._plans.setdefault(action.incident_id, RemediationPlan(action.incident_id))
        plan.attempts[action.kind] = plan.attempts_for(action.kind) + 1
        plan.total_attempts += 1
        plan.actions.append(action)
        plan.current = action

        incident = self.classifier.get(action.incident_id)
        if incident is not None and incident.state == IncidentState.OPEN:
            incident.state = IncidentState.MITIGATING
            track_incident_transition(IncidentState.MITIGATING.value)

        logger.info(
            f"Issuing {action.kind.value} of {action.resource} ({action.action_id}, "
            f"attempt {plan.attempts[action.kind]}/{self.policy.attempt_limit(action.kind)})"
        )
        with LoggingContext(action_kind=action.kind.value):
            task = asyncio.create_task(self._run(action))
        self._tasks[action.action_id] = (action, task)

        await self._audit(
            AuditEventType.ACTION_STARTED,
            incident_id=action.incident_id,
            resource=action.resource,
            action_kind=action.kind.value,
            action_id=action.action_id,
            result="started",
            details={"parameters": dict(action.parameters), "attempt": plan.attempts[action.kind]},
            timestamp=now,
        )
        return True

    def _claim(self, action: RemediationAction) -> None:
        """Take the running slot of (resource, kind) for an action."""
        running = self._running.get(action.key)
        if running is not None:
            raise InvariantViolationError(
                f"{action.action_id} would run {action.kind.value} on {action.resource} "
                f"while {running.action_id} is running"
            )
        self._running[action.key] = action

    @staticmethod
    def _violation_alert(action: RemediationAction, state: AlertState, now: datetime) -> AlertEvent:
        return AlertEvent(
            name=INVARIANT_VIOLATION_ALERT,
            severity=AlertSeverity.CRITICAL,
            labels={"resource": action.resource, "action_kind": action.kind.value},
            state=state,
            timestamp=now,
        )

    async def _run(self, action: RemediationAction) -> ActionOutcome:
        try:
            executor = require_executor(self.executors, action.kind)
            return await executor.execute(action)
        except Exception as e:
            logger.error(f"Executor error for {action.action_id}: {e}")
            return ActionOutcome(success=False, detail=str(e))

    async def harvest(self, now: Optional[datetime] = None) -> None:
        """Apply the outcome of every finished action."""
        now = now or self.clock()
        for action_id, (action, task) in list(self._tasks.items()):
            if not task.done():
                continue
            del self._tasks[action_id]

            if task.cancelled():
                outcome = ActionOutcome(success=False, detail="cancelled")
            else:
                outcome = task.result()
            try:
                await self._record_outcome(action, outcome, now)
            except Exception as e:
                logger.error(f"Recording outcome of {action.action_id} failed: {e}", exc_info=True)

    async def _record_outcome(self, action: RemediationAction, outcome: ActionOutcome, now: datetime) -> None:
        key = action.key
        action.status = ActionStatus.SUCCEEDED if outcome.success else ActionStatus.FAILED
        action.ended_at = now
        action.detail = outcome.detail

        if self._running.get(key) is action:
            del self._running[key]
        if key in self._violations:
            self._violations.discard(key)
            self._internal_alerts.append(self._violation_alert(action, AlertState.RESOLVED, now))

        track_action(action.kind.value, action.status.value)
        track_action_duration(action.kind.value, outcome.duration_seconds)

        if outcome.success:
            self._cooldowns[key] = now
            if action.kind == ActionKind.SCALE:
                self._replicas[action.resource] = action.parameters["replicas"]

        plan = self._plans.get(action.incident_id)
        if plan is not None and plan.current is action:
            plan.current = None

        await self._audit(
            AuditEventType.ACTION_SUCCEEDED if outcome.success else AuditEventType.ACTION_FAILED,
            incident_id=action.incident_id,
            resource=action.resource,
            action_kind=action.kind.value,
            action_id=action.action_id,
            result=action.status.value,
            details={
                "detail": outcome.detail,
                "duration_seconds": outcome.duration_seconds,
                "noop": outcome.noop,
            },
            timestamp=now,
        )

        incident = self.classifier.get(action.incident_id)
        if plan is None or incident is None or not incident.is_active or incident.state.is_terminal:
            logger.info(
                f"{action.action_id} finished ({action.status.value}) after {action.incident_id} "
                f"closed; no further action"
            )
            return

        if outcome.success:
            plan.verify_since = now
            plan.verify_until = now + self.grace_period
            logger.info(
                f"{action.kind.value} of {action.resource} succeeded, observing "
                f"{action.incident_id} until {plan.verify_until.isoformat()}"
            )
        else:
            logger.warning(f"{action.kind.value} of {action.resource} failed: {outcome.detail}")

    async def _resolve(self, incident: Incident, plan: RemediationPlan, now: datetime) -> None:
        self.classifier.close(incident, now, IncidentState.RESOLVED)
        self._plans.pop(incident.incident_id, None)
        logger.info(f"Incident {incident.incident_id} resolved by remediation")
        await self._audit(
            AuditEventType.INCIDENT_RESOLVED,
            incident_id=incident.incident_id,
            resource=incident.resource,
            result="remediated",
            details={"actions": [a.action_id for a in plan.actions]},
            timestamp=now,
        )

    async def _escalate(
        self,
        incident: Incident,
        plan: RemediationPlan,
        reason: str,
        now: datetime,
        budgets: Dict[str, BudgetState]
    ) -> None:
        if incident.state == IncidentState.ESCALATED:
            return

        incident.state = IncidentState.ESCALATED
        incident.escalation_reason = reason
        track_incident_transition(IncidentState.ESCALATED.value)
        logger.warning(f"Escalating {incident.incident_id}: {reason}")

        context = {
            "actions": [a.to_dict() for a in plan.actions],
            "budgets": {objective_id: state.to_dict() for objective_id, state in budgets.items()},
        }
        await self._audit(
            AuditEventType.INCIDENT_ESCALATED,
            incident_id=incident.incident_id,
            resource=incident.resource,
            result=reason,
            details={"actions": [a.action_id for a in plan.actions], "notifiers": self.dispatcher.names},
            timestamp=now,
        )

        task = asyncio.create_task(self._notify(incident.snapshot(), reason, context))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, incident: Incident, reason: str, context: Dict[str, Any]) -> None:
        delivered = await asyncio.to_thread(self.dispatcher.escalate, incident, reason, context)
        if not delivered:
            logger.error(f"Escalation of {incident.incident_id} was not delivered to any notifier")

    async def record_closed(self, incidents: Iterable[Incident], now: Optional[datetime] = None) -> None:
        """Audit incidents closed by the classifier sweep and drop their plans."""
        now = now or self.clock()
        for incident in incidents:
            self._plans.pop(incident.incident_id, None)
            if incident.state == IncidentState.ESCALATED:
                event_type, result = AuditEventType.INCIDENT_CLOSED, "alerts cleared after escalation"
            else:
                event_type, result = AuditEventType.INCIDENT_RESOLVED, "alerts cleared"
            await self._audit(
                event_type,
                incident_id=incident.incident_id,
                resource=incident.resource,
                result=result,
                timestamp=now,
            )

    async def wait_idle(self) -> None:
        """Wait for in-flight actions and notifications (outcomes apply on the next step)."""
        pending = [task for _, task in self._tasks.values()] + list(self._notifications)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def restore_cooldowns(self, attempts: Dict[CooldownKey, datetime]) -> int:
        """
        Seed cooldown records, e.g. from AuditLog.last_attempts().

        Returns:
            Number of records restored
        """
        restored = 0
        for key, when in attempts.items():
            current = self._cooldowns.get(key)
            if current is None or when > current:
                self._cooldowns[key] = when
                restored += 1
        if restored:
            logger.info(f"Restored {restored} cooldown records")
        return restored

    def cooldown_until(self, resource: str, kind: ActionKind) -> Optional[datetime]:
        last = self._cooldowns.get((resource, kind.value))
        return last + self.policy.cooldown if last is not None else None

    def running_actions(self) -> List[RemediationAction]:
        return list(self._running.values())

    def drain_internal_alerts(self) -> List[AlertEvent]:
        """Internal alerts raised since the last call."""
        alerts, self._internal_alerts = self._internal_alerts, []
        return alerts

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of actions and cooldowns."""
        return {
            "actions": [a.to_dict() for a in reversed(self._history)],
            "running": [a.to_dict() for a in self._running.values()],
            "cooldowns": [
                {
                    "resource": resource,
                    "kind": kind,
                    "last_attempt": when.isoformat(),
                    "until": (when + self.policy.cooldown).isoformat(),
                }
                for (resource, kind), when in sorted(self._cooldowns.items())
            ],
        }
