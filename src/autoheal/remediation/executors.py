"""
Action executors.

Each executor performs exactly one kind of action against the
orchestration surface and reports an ActionOutcome. The contract:

- idempotent: executing an action id that already succeeded is a no-op
  success;
- bounded: every call runs under a timeout, and a timeout is reported as
  a failure with detail "timeout";
- no internal retries: retrying is the engine's decision, under cooldown.

Example:
    >>> executor = RestartExecutor(KubectlSurface(namespace="prod"))
    >>> outcome = await executor.execute(action)
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, Optional

from ..exceptions import UnsupportedActionError
from .actions import ActionKind, ActionOutcome, RemediationAction
from .surfaces import OrchestrationSurface

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_REMEMBERED = 1000


class ActionExecutor(ABC):
    """
    Base class for action executors.

    Subclasses implement _perform(), a blocking call into the control
    surface; the base class runs it in a worker thread under the timeout.
    """

    kind: ActionKind

    def __init__(
        self,
        surface: OrchestrationSurface,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        dry_run: bool = False,
        max_remembered: int = DEFAULT_MAX_REMEMBERED
    ):
        """
        Initialize executor.

        Args:
            surface: Orchestration control surface
            timeout: Seconds before a call is reported as timed out
            dry_run: If True, log the action without touching the surface
            max_remembered: Succeeded action ids kept for idempotent replays
        """
        self.surface = surface
        self.timeout = timeout
        self.dry_run = dry_run
        self.max_remembered = max_remembered
        self._succeeded: "OrderedDict[str, ActionOutcome]" = OrderedDict()

    async def execute(self, action: RemediationAction) -> ActionOutcome:
        """
        Execute a remediation action.

        Args:
            action: Action to perform

        Returns:
            ActionOutcome (never raises)
        """
        if action.action_id in self._succeeded:
            logger.info(f"{action.action_id} already applied, nothing to do")
            return ActionOutcome(success=True, detail="already applied", noop=True)

        error = self.validate(action)
        if error:
            return ActionOutcome(success=False, detail=error)

        if self.dry_run:
            message = f"[DRY RUN] Would {self.describe(action)}"
            logger.info(message)
            outcome = ActionOutcome(success=True, detail=message)
            self._remember(action.action_id, outcome)
            return outcome

        start = time.monotonic()
        try:
            ok = await asyncio.wait_for(
                asyncio.to_thread(self._perform, action),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"{self.describe(action)} timed out after {self.timeout}s")
            return ActionOutcome(
                success=False,
                detail="timeout",
                duration_seconds=time.monotonic() - start
            )
        except Exception as e:
            logger.error(f"Error during {self.describe(action)}: {e}")
            return ActionOutcome(
                success=False,
                detail=str(e),
                duration_seconds=time.monotonic() - start
            )

        duration = time.monotonic() - start
        if not ok:
            return ActionOutcome(
                success=False,
                detail=f"control surface rejected {self.kind.value} of {action.resource}",
                duration_seconds=duration
            )

        outcome = ActionOutcome(
            success=True,
            detail=f"{self.describe(action)} succeeded",
            duration_seconds=duration
        )
        self._remember(action.action_id, outcome)
        return outcome

    def _remember(self, action_id: str, outcome: ActionOutcome) -> None:
        self._succeeded[action_id] = outcome
        while len(self._succeeded) > self.max_remembered:
            self._succeeded.popitem(last=False)

    @abstractmethod
    def _perform(self, action: RemediationAction) -> bool:
        """Blocking control surface call. Returns True on success."""
        pass

    def validate(self, action: RemediationAction) -> Optional[str]:
        """
        Validate an action before execution.

        Returns:
            Error message if invalid, None if valid
        """
        if action.kind != self.kind:
            return f"{self.__class__.__name__} cannot execute {action.kind.value}"
        if not action.resource:
            return "Target resource is required"
        return None

    def describe(self, action: RemediationAction) -> str:
        return f"{self.kind.value} {action.resource}"

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(dry_run={self.dry_run}, timeout={self.timeout})"


class RestartExecutor(ActionExecutor):
    """Restarts a workload."""

    kind = ActionKind.RESTART

    def _perform(self, action: RemediationAction) -> bool:
        return self.surface.restart(action.resource)


class ScaleExecutor(ActionExecutor):
    """Sets a workload to an absolute replica count."""

    kind = ActionKind.SCALE

    def validate(self, action: RemediationAction) -> Optional[str]:
        error = super().validate(action)
        if error:
            return error
        replicas = action.parameters.get("replicas")
        if not isinstance(replicas, int) or isinstance(replicas, bool) or replicas < 0:
            return f"Scale needs a non-negative integer 'replicas', got {replicas!r}"
        return None

    def describe(self, action: RemediationAction) -> str:
        return f"scale {action.resource} to {action.parameters.get('replicas')} replicas"

    def _perform(self, action: RemediationAction) -> bool:
        return self.surface.set_replicas(action.resource, action.parameters["replicas"])


class CacheFlushExecutor(ActionExecutor):
    """Flushes the cache of a workload."""

    kind = ActionKind.CACHE_FLUSH

    def _perform(self, action: RemediationAction) -> bool:
        return self.surface.flush_cache(action.resource)


def build_executors(
    surface: OrchestrationSurface,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    dry_run: bool = False
) -> Dict[ActionKind, ActionExecutor]:
    """One executor per action kind, sharing a control surface."""
    executors = {}
    for executor_cls in (RestartExecutor, ScaleExecutor, CacheFlushExecutor):
        executors[executor_cls.kind] = executor_cls(surface, timeout=timeout, dry_run=dry_run)
    return executors


def require_executor(
    executors: Dict[ActionKind, ActionExecutor],
    kind: ActionKind
) -> ActionExecutor:
    """Look up the executor for a kind."""
    try:
        return executors[kind]
    except KeyError:
        raise UnsupportedActionError(f"No executor registered for '{kind.value}'")
