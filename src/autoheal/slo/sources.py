"""
Metrics sources for SLI samples.

A metrics source answers one question: for an objective and a trailing
window, how many requests were good and how many were there in total.
Failures raise MetricsFetchError so the evaluator can tell a broken
source apart from a quiet service.

Classes:
    MetricsSource: Abstract pull interface
    StaticMetricsSource: In-memory source for tests and demos
    PrometheusMetricsSource: Prometheus HTTP API source
"""
import logging
import math
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

import requests

from ..exceptions import MetricsFetchError
from .models import LatencyHistogram, Objective, ObjectiveKind, RatioSample, Sample

logger = logging.getLogger(__name__)


class MetricsSource(ABC):
    """Abstract pull interface for SLI samples."""

    @abstractmethod
    def fetch(self, objective: Objective, window: timedelta) -> Sample:
        """
        Fetch aggregate samples for the trailing window.

        Args:
            objective: Objective whose SLI query to run
            window: Trailing window

        Returns:
            RatioSample or LatencyHistogram

        Raises:
            MetricsFetchError: If the source could not answer
        """
        pass


class StaticMetricsSource(MetricsSource):
    """
    In-memory metrics source.

    Example:
        >>> source = StaticMetricsSource()
        >>> source.set_sample("api-availability", RatioSample(success=998, total=1000))
        >>> source.set_failure("api-latency", "prometheus unreachable")
    """

    def __init__(self, samples: Optional[Dict[str, Sample]] = None):
        self._samples: Dict[str, Union[Sample, str]] = dict(samples or {})
        self.fetch_count = 0

    def set_sample(self, objective_id: str, sample: Sample) -> None:
        self._samples[objective_id] = sample

    def set_failure(self, objective_id: str, reason: str = "source unavailable") -> None:
        self._samples[objective_id] = reason

    def fetch(self, objective: Objective, window: timedelta) -> Sample:
        self.fetch_count += 1
        value = self._samples.get(objective.id)
        if value is None:
            raise MetricsFetchError(objective.id, "no samples registered")
        if isinstance(value, str):
            raise MetricsFetchError(objective.id, value)
        return value


def format_window(window: timedelta) -> str:
    """Render a window as a PromQL range duration (e.g. 30m, 90s)."""
    seconds = int(window.total_seconds())
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


class PrometheusMetricsSource(MetricsSource):
    """
    Prometheus HTTP API metrics source.

    Queries are PromQL templates; ``{window}`` is replaced with the
    objective window, e.g.::

        success_query: sum(increase(http_requests_total{code!~"5.."}[{window}]))
        total_query: sum(increase(http_requests_total[{window}]))
        latency_query: sum by (le) (increase(http_request_duration_seconds_bucket[{window}]))
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize Prometheus source.

        Args:
            base_url: Prometheus server URL (e.g. http://prometheus:9090)
            timeout: HTTP timeout in seconds
            headers: Extra request headers (auth)
            session: Optional requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self.session = session or requests.Session()

    def fetch(self, objective: Objective, window: timedelta) -> Sample:
        if objective.kind == ObjectiveKind.LATENCY:
            result = self._query(objective, objective.latency_query, window)
            return self._to_histogram(objective, result)

        success = self._scalar(objective, self._query(objective, objective.success_query, window))
        total = self._scalar(objective, self._query(objective, objective.total_query, window))
        return RatioSample(success=success, total=total)

    def _query(self, objective: Objective, template: Optional[str], window: timedelta) -> List[Dict[str, Any]]:
        if not template:
            raise MetricsFetchError(objective.id, "query not configured")

        query = template.replace("{window}", format_window(window))

        try:
            response = self.session.get(
                f"{self.base_url}/api/v1/query",
                params={"query": query},
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise MetricsFetchError(objective.id, f"prometheus request failed: {e}") from e
        except ValueError as e:
            raise MetricsFetchError(objective.id, f"invalid prometheus response: {e}") from e

        if body.get("status") != "success":
            raise MetricsFetchError(
                objective.id,
                f"prometheus query error: {body.get('error', 'unknown error')}"
            )

        data = body.get("data", {})
        if data.get("resultType") != "vector":
            raise MetricsFetchError(objective.id, f"unexpected result type: {data.get('resultType')}")

        return data.get("result", [])

    def _scalar(self, objective: Objective, result: List[Dict[str, Any]]) -> float:
        """Sum of a vector result. An empty vector means no requests."""
        total = 0.0
        for series in result:
            total += self._value(objective, series)
        return total

    def _to_histogram(self, objective: Objective, result: List[Dict[str, Any]]) -> LatencyHistogram:
        buckets = []
        total = 0.0
        for series in result:
            le = series.get("metric", {}).get("le")
            if le is None:
                continue
            count = self._value(objective, series)
            try:
                bound = float(le)
            except ValueError as e:
                raise MetricsFetchError(objective.id, f"malformed bucket bound: {le}") from e
            if math.isinf(bound):
                total = count
            else:
                buckets.append((bound, count))
        return LatencyHistogram(buckets=tuple(sorted(buckets)), total=total)

    @staticmethod
    def _value(objective: Objective, series: Dict[str, Any]) -> float:
        try:
            value = float(series["value"][1])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise MetricsFetchError(objective.id, f"malformed sample: {e}") from e
        return 0.0 if math.isnan(value) else value
