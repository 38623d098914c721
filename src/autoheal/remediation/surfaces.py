"""
Orchestration control surfaces.

The controller changes the world through exactly three calls: restart a
workload, set its replica count, flush its cache. Each returns True on
success. Nothing else about the orchestrator is inspected.

Classes:
    OrchestrationSurface: Abstract control surface
    KubectlSurface: Kubernetes via the kubectl CLI
    HttpControlSurface: Generic HTTP control API
"""
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class OrchestrationSurface(ABC):
    """Abstract orchestration control surface."""

    @abstractmethod
    def restart(self, resource: str) -> bool:
        """Restart a workload."""
        pass

    @abstractmethod
    def set_replicas(self, resource: str, count: int) -> bool:
        """Set the replica count of a workload (absolute, so repeat calls are no-ops)."""
        pass

    @abstractmethod
    def flush_cache(self, resource: str) -> bool:
        """Flush the cache backing a workload."""
        pass


class KubectlSurface(OrchestrationSurface):
    """
    Kubernetes control surface using kubectl.

    Example:
        >>> surface = KubectlSurface(namespace="prod")
        >>> surface.set_replicas("api-gateway", 4)
    """

    def __init__(
        self,
        namespace: Optional[str] = None,
        workload_kind: str = "deployment",
        flush_command: str = "redis-cli FLUSHALL",
        kubectl: str = "kubectl",
        context: Optional[str] = None,
        timeout: float = 60.0
    ):
        """
        Initialize kubectl surface.

        Args:
            namespace: Kubernetes namespace (kubectl default if None)
            workload_kind: Workload resource type (deployment, statefulset)
            flush_command: Command run inside the workload to flush its cache
            kubectl: kubectl binary
            context: Optional kubeconfig context
            timeout: Subprocess timeout in seconds
        """
        self.namespace = namespace
        self.workload_kind = workload_kind
        self.flush_command = flush_command
        self.kubectl = kubectl
        self.context = context
        self.timeout = timeout

    def _base(self) -> List[str]:
        command = [self.kubectl]
        if self.context:
            command += ["--context", self.context]
        if self.namespace:
            command += ["-n", self.namespace]
        return command

    def _run(self, args: List[str]) -> bool:
        command = self._base() + args
        logger.info(f"Executing: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.error(f"kubectl timed out after {self.timeout}s: {' '.join(args)}")
            return False
        except OSError as e:
            logger.error(f"Failed to run kubectl: {e}")
            return False

        if result.returncode != 0:
            logger.error(f"kubectl failed ({result.returncode}): {result.stderr.strip()}")
            return False
        return True

    def restart(self, resource: str) -> bool:
        return self._run(["rollout", "restart", f"{self.workload_kind}/{resource}"])

    def set_replicas(self, resource: str, count: int) -> bool:
        return self._run(["scale", f"{self.workload_kind}/{resource}", f"--replicas={count}"])

    def flush_cache(self, resource: str) -> bool:
        return self._run(
            ["exec", f"{self.workload_kind}/{resource}", "--"] + shlex.split(self.flush_command)
        )


class HttpControlSurface(OrchestrationSurface):
    """
    Control surface backed by an HTTP API.

    Endpoints (relative to base_url):
        POST /resources/{resource}/restart
        PUT  /resources/{resource}/replicas   {"replicas": n}
        POST /resources/{resource}/cache/flush
    """

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers: Dict[str, str] = {"Content-Type": "application/json"}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"

    def _call(self, method: str, path: str, payload: Optional[Dict] = None) -> bool:
        url = f"{self.base_url}{path}"
        logger.info(f"Calling control API: {method} {url}")
        try:
            response = self.session.request(
                method=method,
                url=url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Control API call failed: {e}")
            return False

        if 200 <= response.status_code < 300:
            return True

        logger.error(f"Control API returned {response.status_code}: {response.text[:200]}")
        return False

    def restart(self, resource: str) -> bool:
        return self._call("POST", f"/resources/{resource}/restart")

    def set_replicas(self, resource: str, count: int) -> bool:
        return self._call("PUT", f"/resources/{resource}/replicas", {"replicas": count})

    def flush_cache(self, resource: str) -> bool:
        return self._call("POST", f"/resources/{resource}/cache/flush")
