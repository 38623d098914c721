"""
Remediation controller.

A single asyncio scheduler drives three phases per tick:

1. budget evaluation (ErrorBudgetEvaluator)
2. alert classification (AlertQueue -> AlertClassifier)
3. remediation stepping (RemediationEngine)

Alert ingestion is independent of the tick: ingest() only enqueues and is
safe to call from any thread. At the end of every tick an immutable
ControllerSnapshot is published for the inspection API; readers never
touch the live incident table.

Example:
    >>> controller = RemediationController.from_config(ControllerConfig.load())
    >>> stop = asyncio.Event()
    >>> await controller.run(stop)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .alerting.classifier import AlertClassifier
from .alerting.models import AlertEvent
from .alerting.queue import AlertQueue
from .audit import AuditLog
from .config import ControllerConfig
from .exceptions import IncidentNotFoundError
from .factory import get_audit_backend, get_dispatcher, get_metrics_source, get_surface
from .metrics import metrics
from .remediation.engine import RemediationEngine
from .remediation.executors import build_executors
from .slo.evaluator import ErrorBudgetEvaluator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerSnapshot:
    """Read-only view of controller state at the end of a tick."""
    taken_at: datetime
    tick_count: int = 0
    incidents: List[Dict[str, Any]] = field(default_factory=list)
    budgets: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    running: List[Dict[str, Any]] = field(default_factory=list)
    cooldowns: List[Dict[str, Any]] = field(default_factory=list)
    degraded_objectives: List[str] = field(default_factory=list)
    queue_depth: int = 0
    alerts_dropped: int = 0

    def incident(self, incident_id: str) -> Dict[str, Any]:
        """
        Look up one incident.

        Raises:
            IncidentNotFoundError: If the snapshot holds no such incident
        """
        for incident in self.incidents:
            if incident["incident_id"] == incident_id:
                return incident
        raise IncidentNotFoundError(f"Incident not found: {incident_id}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "taken_at": self.taken_at.isoformat(),
            "tick_count": self.tick_count,
            "incidents": self.incidents,
            "budgets": self.budgets,
            "actions": self.actions,
            "running": self.running,
            "cooldowns": self.cooldowns,
            "degraded_objectives": self.degraded_objectives,
            "queue_depth": self.queue_depth,
            "alerts_dropped": self.alerts_dropped,
        }


class RemediationController:
    """
    Scheduler owning the evaluator, classifier and engine.

    Nothing raised inside a phase stops the loop: the failure is logged
    with its traceback and the next phase runs.
    """

    def __init__(
        self,
        classifier: AlertClassifier,
        engine: RemediationEngine,
        evaluator: Optional[ErrorBudgetEvaluator] = None,
        queue: Optional[AlertQueue] = None,
        tick_interval: timedelta = timedelta(seconds=30),
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize controller.

        Args:
            classifier: Alert classifier (owner of the incident table)
            engine: Remediation engine
            evaluator: Error-budget evaluator, None if no objectives are tracked
            queue: Alert ingestion queue
            tick_interval: Time between ticks
            clock: Time source
        """
        self.classifier = classifier
        self.engine = engine
        self.evaluator = evaluator
        self.queue = queue or AlertQueue()
        self.tick_interval = tick_interval
        self.clock = clock

        self._tick_count = 0
        self._internal_alerts: List[AlertEvent] = []
        self._snapshot = ControllerSnapshot(taken_at=clock())
        self._started = False

    @classmethod
    def from_config(cls, config: ControllerConfig) -> "RemediationController":
        """
        Wire a controller from validated configuration.

        Raises:
            ConfigurationError: If a section cannot be turned into a collaborator
        """
        clock = datetime.now
        grace = config.grace_period

        classifier = AlertClassifier(
            identity_labels=config.identity_labels,
            resource_label=config.resource_label,
            grace_period=grace,
            max_history_size=config.max_history_size,
            clock=clock,
        )

        executors = build_executors(
            get_surface(config.orchestration),
            timeout=config.executor_timeout_seconds,
            dry_run=config.dry_run,
        )
        if config.dry_run:
            logger.warning("Dry run: remediation actions will be logged, not executed")

        engine = RemediationEngine(
            policy=config.build_policy(),
            executors=executors,
            classifier=classifier,
            audit=AuditLog(get_audit_backend(config.audit_file), clock=clock),
            dispatcher=get_dispatcher(config.escalation),
            grace_period=grace,
            max_history_size=config.max_history_size,
            clock=clock,
        )

        evaluator = None
        objectives = config.build_objectives()
        if objectives:
            evaluator = ErrorBudgetEvaluator(
                objectives,
                get_metrics_source(config.metrics_source),
                tick_seconds=config.tick_interval_seconds,
                degraded_threshold=config.degraded_threshold,
                clock=clock,
            )

        return cls(
            classifier=classifier,
            engine=engine,
            evaluator=evaluator,
            queue=AlertQueue(maxsize=config.queue_size),
            tick_interval=config.tick_interval,
            clock=clock,
        )

    @property
    def audit(self) -> AuditLog:
        return self.engine.audit

    def ingest(self, event: AlertEvent) -> bool:
        """
        Accept an alert event from the feed (thread-safe, never blocks).

        Returns:
            False if an older event had to be dropped to make room
        """
        return self.queue.put(event)

    async def start(self) -> None:
        """Initialize the audit log and restore cooldowns recorded by a previous run."""
        if self._started:
            return
        await self.audit.initialize()
        try:
            attempts = await self.audit.last_attempts()
            self.engine.restore_cooldowns(attempts)
        except Exception as e:
            logger.error(f"Failed to restore cooldowns from audit log: {e}", exc_info=True)
        self._started = True
        logger.info("Remediation controller started")

    async def tick(self, now: Optional[datetime] = None) -> ControllerSnapshot:
        """
        Run one scheduler tick.

        Args:
            now: Tick time (defaults to the clock)

        Returns:
            Snapshot published at the end of the tick
        """
        now = now or self.clock()
        self._tick_count += 1

        if self.evaluator is not None:
            try:
                alerts = await asyncio.to_thread(self.evaluator.evaluate_all, now)
                self._internal_alerts.extend(alerts)
            except Exception as e:
                logger.error(f"Budget evaluation failed: {e}", exc_info=True)

        try:
            await self._classify(now)
        except Exception as e:
            logger.error(f"Alert classification failed: {e}", exc_info=True)

        try:
            budgets = self.evaluator.get_states() if self.evaluator is not None else {}
            await self.engine.step(now, budgets=budgets)
            self._internal_alerts.extend(self.engine.drain_internal_alerts())
        except Exception as e:
            logger.error(f"Remediation step failed: {e}", exc_info=True)

        self._snapshot = self._build_snapshot(now)
        return self._snapshot

    async def _classify(self, now: datetime) -> None:
        internal, self._internal_alerts = self._internal_alerts, []
        events = internal + self.queue.drain()

        for event in events:
            try:
                self.classifier.classify(event, now)
            except Exception as e:
                logger.error(f"Failed to classify '{event.name}': {e}", exc_info=True)

        closed = self.classifier.sweep(now)
        if closed:
            await self.engine.record_closed(closed, now)

    def _build_snapshot(self, now: datetime) -> ControllerSnapshot:
        engine_view = self.engine.snapshot()
        budgets = {}
        degraded = []
        if self.evaluator is not None:
            budgets = {oid: state.to_dict() for oid, state in self.evaluator.get_states().items()}
            degraded = [oid for oid in self.evaluator.objectives if self.evaluator.is_degraded(oid)]

        metrics.set_gauge("autoheal_alert_queue_depth", len(self.queue))

        return ControllerSnapshot(
            taken_at=now,
            tick_count=self._tick_count,
            incidents=[i.to_dict() for i in self.classifier.snapshot()],
            budgets=budgets,
            actions=engine_view["actions"],
            running=engine_view["running"],
            cooldowns=engine_view["cooldowns"],
            degraded_objectives=degraded,
            queue_depth=len(self.queue),
            alerts_dropped=self.queue.dropped,
        )

    def snapshot(self) -> ControllerSnapshot:
        """Latest published snapshot (safe from any thread)."""
        return self._snapshot

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Tick until stop_event is set.

        In-flight actions are awaited on shutdown, never cancelled.
        """
        await self.start()
        interval = self.tick_interval.total_seconds()
        loop = asyncio.get_running_loop()
        logger.info(f"Control loop running every {interval}s")

        try:
            while not stop_event.is_set():
                started = loop.time()
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Tick failed: {e}", exc_info=True)

                delay = max(0.0, interval - (loop.time() - started))
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Wait for in-flight actions, record their outcomes and close the audit log."""
        logger.info("Stopping remediation controller")
        await self.engine.wait_idle()
        try:
            await self.engine.harvest(self.clock())
        except Exception as e:
            logger.error(f"Recording final action outcomes failed: {e}", exc_info=True)
        await self.audit.close()
        self._started = False
