"""
Factories turning configuration sections into collaborators.
"""
import logging
from typing import Any, Dict, Optional

from .alerting.notifiers import ConsoleNotifier, EscalationDispatcher, SlackNotifier, WebhookNotifier
from .audit import AuditBackend, FileAuditBackend, MemoryAuditBackend
from .exceptions import InvalidConfigError
from .remediation.surfaces import HttpControlSurface, KubectlSurface, OrchestrationSurface
from .slo.sources import MetricsSource, PrometheusMetricsSource, StaticMetricsSource

logger = logging.getLogger(__name__)


def get_metrics_source(section: Dict[str, Any]) -> Optional[MetricsSource]:
    """
    Build the metrics source.

    Args:
        section: ``metrics_source`` config section

    Returns:
        MetricsSource, or None if no source is configured

    Raises:
        InvalidConfigError: If the source type is not recognized
    """
    source_type = str(section.get("type", "")).lower()

    if not source_type:
        logger.info("No metrics source configured, error budgets disabled")
        return None

    if source_type == "prometheus":
        logger.info(f"Using Prometheus metrics source at {section.get('url')}")
        return PrometheusMetricsSource(
            base_url=section["url"],
            timeout=float(section.get("timeout", 10.0)),
            headers=section.get("headers"),
        )

    elif source_type == "static":
        logger.warning("Using static metrics source; budgets will not reflect live traffic")
        return StaticMetricsSource()

    else:
        raise InvalidConfigError(
            f"Unknown metrics source: {source_type}. Supported sources: prometheus, static"
        )


def get_surface(section: Dict[str, Any]) -> OrchestrationSurface:
    """
    Build the orchestration control surface.

    Raises:
        InvalidConfigError: If the surface type is not recognized
    """
    surface_type = str(section.get("type", "kubectl")).lower()

    if surface_type == "kubectl":
        logger.info(f"Using kubectl control surface (namespace={section.get('namespace')})")
        return KubectlSurface(
            namespace=section.get("namespace"),
            workload_kind=section.get("workload_kind", "deployment"),
            flush_command=section.get("flush_command", "redis-cli FLUSHALL"),
            kubectl=section.get("kubectl", "kubectl"),
            context=section.get("context"),
        )

    elif surface_type == "http":
        logger.info(f"Using HTTP control surface at {section.get('base_url')}")
        return HttpControlSurface(
            base_url=section["base_url"],
            auth_token=section.get("auth_token"),
            timeout=float(section.get("timeout", 20.0)),
        )

    else:
        raise InvalidConfigError(
            f"Unknown orchestration surface: {surface_type}. Supported surfaces: kubectl, http"
        )


def get_dispatcher(section: Dict[str, Any]) -> EscalationDispatcher:
    """Build the escalation dispatcher from the ``escalation`` section."""
    dispatcher = EscalationDispatcher()

    if section.get("console", False):
        dispatcher.add_notifier("console", ConsoleNotifier(use_colors=section.get("colors", True)))

    if section.get("webhook_url"):
        dispatcher.add_notifier("webhook", WebhookNotifier(
            webhook_url=section["webhook_url"],
            headers=section.get("webhook_headers"),
            auth_token=section.get("webhook_token"),
        ))

    if section.get("slack_webhook_url"):
        dispatcher.add_notifier("slack", SlackNotifier(
            webhook_url=section["slack_webhook_url"],
            channel=section.get("slack_channel"),
        ))

    if not dispatcher.names:
        logger.warning("No escalation notifiers configured; escalations will only be audited")

    return dispatcher


def get_audit_backend(audit_file: Optional[str]) -> AuditBackend:
    """JSONL file backend if a path is configured, in-memory otherwise."""
    if audit_file:
        return FileAuditBackend(audit_file)
    logger.warning("No audit file configured; audit log is kept in memory only")
    return MemoryAuditBackend()
