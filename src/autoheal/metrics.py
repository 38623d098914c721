"""
Prometheus metrics for AUTOHEAL observability.

Counters and gauges describing the control loop itself: ingested and
dropped alerts, incident transitions, remediation actions and error-budget
levels. Metrics are exposed in Prometheus text format at ``/metrics``.
"""

from typing import Dict, Optional
import threading


class MetricsCollector:
    """
    Singleton metrics collector for AUTOHEAL.

    Written from the controller loop, read from the inspection API thread.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize metrics storage."""
        self._data_lock = threading.Lock()
        self._gauges: Dict[str, Dict[str, float]] = {}
        self._counters: Dict[str, Dict[str, int]] = {}
        self._histograms: Dict[str, Dict[str, list]] = {}

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Set a gauge metric value."""
        label_key = self._make_label_key(labels or {})
        with self._data_lock:
            self._gauges.setdefault(name, {})[label_key] = value

    def increment_counter(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None):
        """Increment a counter metric."""
        label_key = self._make_label_key(labels or {})
        with self._data_lock:
            series = self._counters.setdefault(name, {})
            series[label_key] = series.get(label_key, 0) + value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Record a histogram observation."""
        label_key = self._make_label_key(labels or {})
        with self._data_lock:
            self._histograms.setdefault(name, {}).setdefault(label_key, []).append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Read back a counter value (0 if never incremented)."""
        label_key = self._make_label_key(labels or {})
        with self._data_lock:
            return self._counters.get(name, {}).get(label_key, 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read back a gauge value."""
        label_key = self._make_label_key(labels or {})
        with self._data_lock:
            return self._gauges.get(name, {}).get(label_key)

    def reset(self) -> None:
        """Drop every series. Used by tests."""
        with self._data_lock:
            self._gauges.clear()
            self._counters.clear()
            self._histograms.clear()

    def get_metrics(self) -> str:
        """
        Get all metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        with self._data_lock:
            for name, labels_dict in self._gauges.items():
                lines.append(f"# TYPE {name} gauge")
                for label_key, value in labels_dict.items():
                    lines.append(f"{name}{{{label_key}}} {value}")

            for name, labels_dict in self._counters.items():
                lines.append(f"# TYPE {name} counter")
                for label_key, value in labels_dict.items():
                    lines.append(f"{name}{{{label_key}}} {value}")

            # Histograms (simplified - just count and sum)
            for name, labels_dict in self._histograms.items():
                lines.append(f"# TYPE {name} histogram")
                for label_key, values in labels_dict.items():
                    lines.append(f"{name}_count{{{label_key}}} {len(values)}")
                    lines.append(f"{name}_sum{{{label_key}}} {sum(values)}")

        return "\n".join(lines)

    def _make_label_key(self, labels: Dict[str, str]) -> str:
        """Convert label dict to string key."""
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


# Singleton instance
metrics = MetricsCollector()


def track_alert_ingested(name: str):
    """Count an alert event accepted into the ingestion queue."""
    metrics.increment_counter("autoheal_alerts_ingested_total", 1, {"alert": name})


def track_alert_dropped():
    """Count an alert event dropped because the ingestion queue overflowed."""
    metrics.increment_counter("autoheal_alerts_dropped_total", 1)


def track_incident_transition(state: str):
    """Count incidents entering a lifecycle state."""
    metrics.increment_counter("autoheal_incidents_total", 1, {"state": state})


def track_action(kind: str, status: str):
    """Count remediation actions by kind and final status."""
    metrics.increment_counter(
        "autoheal_actions_total",
        1,
        {"kind": kind, "status": status}
    )


def track_action_refused(kind: str, reason: str):
    """Count candidate actions refused by a guard."""
    metrics.increment_counter(
        "autoheal_actions_refused_total",
        1,
        {"kind": kind, "reason": reason}
    )


def track_action_duration(kind: str, duration_seconds: float):
    """Track remediation action duration."""
    metrics.record_histogram(
        "autoheal_action_duration_seconds",
        duration_seconds,
        {"kind": kind}
    )


def track_budget_remaining(objective_id: str, remaining: float):
    """Track remaining error budget for an objective."""
    metrics.set_gauge(
        "autoheal_error_budget_remaining",
        remaining,
        {"objective": objective_id}
    )


def track_evaluator_staleness(objective_id: str, stale_count: int):
    """Track consecutive failed evaluations for an objective."""
    metrics.set_gauge(
        "autoheal_evaluator_stale_count",
        stale_count,
        {"objective": objective_id}
    )


def get_metrics_text() -> str:
    """
    Get all metrics in Prometheus text format.

    Returns:
        Prometheus-formatted metrics
    """
    return metrics.get_metrics()
