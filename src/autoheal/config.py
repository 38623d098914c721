"""Configuration management for AUTOHEAL.

Configuration is loaded once at startup from a YAML or TOML file with
environment variable overrides. A configuration that fails validation is
fatal: nothing is started on a partially valid configuration.

Classes:
    ControllerConfig: Main configuration dataclass with validation.

Example:
    >>> from autoheal.config import ControllerConfig
    >>>
    >>> config = ControllerConfig.load("autoheal.yaml")
    >>> config.validate()
    >>> policy = config.build_policy()
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .exceptions import InvalidConfigError
from .remediation.policy import RemediationPolicy
from .slo.models import Objective

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
VALID_ORCHESTRATION_TYPES = {"kubectl", "http"}
VALID_METRICS_SOURCES = {"prometheus", "static"}


@dataclass
class ControllerConfig:
    """
    Configuration for the remediation controller.

    Environment variables (override file settings):
        AUTOHEAL_TICK_INTERVAL: Controller tick in seconds (default: 30)
        AUTOHEAL_COOLDOWN: Remediation cooldown in seconds (default: 300)
        AUTOHEAL_EXECUTOR_TIMEOUT: Executor timeout in seconds (default: 30)
        AUTOHEAL_DRY_RUN: Log actions without executing them
        AUTOHEAL_LOG_LEVEL: Logging level (default: "INFO")
        AUTOHEAL_LOG_FILE: Log file path (optional)
        AUTOHEAL_AUDIT_FILE: JSONL audit log path (optional, in-memory if unset)
        AUTOHEAL_PROMETHEUS_URL: Prometheus server URL
        AUTOHEAL_ESCALATION_WEBHOOK: Escalation webhook URL

    Config file locations (searched in order):
        ./autoheal.yaml, ./autoheal.toml
        ~/.autoheal.yaml, ~/.autoheal.toml
        /etc/autoheal.yaml, /etc/autoheal.toml
    """
    # Scheduler
    tick_interval_seconds: float = 30.0
    grace_period_seconds: Optional[float] = None  # defaults to one tick
    queue_size: int = 1000
    identity_labels: List[str] = field(default_factory=lambda: ["resource", "namespace"])
    resource_label: str = "resource"
    degraded_threshold: int = 3
    max_history_size: int = 1000

    # Execution
    executor_timeout_seconds: float = 30.0
    dry_run: bool = False

    # Structured sections
    remediation: Dict[str, Any] = field(default_factory=dict)
    objectives: List[Dict[str, Any]] = field(default_factory=list)
    resources: Dict[str, Any] = field(default_factory=dict)
    orchestration: Dict[str, Any] = field(default_factory=lambda: {"type": "kubectl"})
    metrics_source: Dict[str, Any] = field(default_factory=dict)
    escalation: Dict[str, Any] = field(default_factory=lambda: {"console": True})

    # Audit
    audit_file: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = False

    # Inspection API
    api_enabled: bool = True
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    api_webhook_secret: Optional[str] = None

    @property
    def tick_interval(self) -> timedelta:
        return timedelta(seconds=self.tick_interval_seconds)

    @property
    def grace_period(self) -> timedelta:
        seconds = self.grace_period_seconds
        return timedelta(seconds=self.tick_interval_seconds if seconds is None else seconds)

    def build_objectives(self) -> List[Objective]:
        """Parse objective definitions."""
        try:
            return [Objective.from_dict(entry) for entry in self.objectives]
        except (TypeError, ValueError, AttributeError) as e:
            raise InvalidConfigError(f"Invalid objective definition: {e}") from e

    def build_policy(self) -> RemediationPolicy:
        """Parse the remediation section into a policy."""
        try:
            return RemediationPolicy.from_dict(self.remediation, self.resources)
        except (TypeError, ValueError, AttributeError) as e:
            raise InvalidConfigError(f"Invalid remediation policy: {e}") from e

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            InvalidConfigError: Listing every problem found
        """
        errors = []

        if self.tick_interval_seconds <= 0:
            errors.append(f"tick_interval_seconds must be positive, got {self.tick_interval_seconds}")
        if self.grace_period_seconds is not None and self.grace_period_seconds < 0:
            errors.append(f"grace_period_seconds must not be negative, got {self.grace_period_seconds}")
        if self.queue_size <= 0:
            errors.append(f"queue_size must be positive, got {self.queue_size}")
        if self.degraded_threshold <= 0:
            errors.append(f"degraded_threshold must be positive, got {self.degraded_threshold}")
        if self.executor_timeout_seconds <= 0:
            errors.append(f"executor_timeout_seconds must be positive, got {self.executor_timeout_seconds}")
        if not self.identity_labels:
            errors.append("identity_labels must name at least one label")
        if self.resource_label not in self.identity_labels:
            errors.append(f"resource_label '{self.resource_label}' must be one of identity_labels")

        # Objectives
        seen_ids = set()
        try:
            objectives = self.build_objectives()
        except InvalidConfigError as e:
            errors.append(str(e))
            objectives = []
        for objective in objectives:
            errors.extend(objective.validate())
            if objective.id in seen_ids:
                errors.append(f"duplicate objective id '{objective.id}'")
            seen_ids.add(objective.id)

        # Remediation policy
        try:
            errors.extend(self.build_policy().validate())
        except InvalidConfigError as e:
            errors.append(str(e))

        # Orchestration surface
        surface_type = str(self.orchestration.get("type", "kubectl")).lower()
        if surface_type not in VALID_ORCHESTRATION_TYPES:
            errors.append(
                f"orchestration.type must be one of {sorted(VALID_ORCHESTRATION_TYPES)}, got '{surface_type}'"
            )
        elif surface_type == "http" and not self.orchestration.get("base_url"):
            errors.append("orchestration.base_url is required for the http control surface")

        # Metrics source
        if objectives:
            source_type = str(self.metrics_source.get("type", "")).lower()
            if source_type not in VALID_METRICS_SOURCES:
                errors.append(
                    f"metrics_source.type must be one of {sorted(VALID_METRICS_SOURCES)} when objectives are defined"
                )
            elif source_type == "prometheus" and not self.metrics_source.get("url"):
                errors.append("metrics_source.url is required for the prometheus source")

        # Logging
        if str(self.log_level).upper() not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, got '{self.log_level}'")

        if not (0 < int(self.api_port) < 65536):
            errors.append(f"api.port must be a valid TCP port, got {self.api_port}")

        if errors:
            raise InvalidConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ControllerConfig':
        """Create configuration from a flattened mapping (see config_loader.flatten_config)."""
        try:
            return cls(**data)
        except TypeError as e:
            raise InvalidConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'ControllerConfig':
        """
        Load and validate configuration.

        Args:
            config_path: Explicit config file; searches standard locations if None

        Returns:
            Validated ControllerConfig

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        from .config_loader import load_config_with_overrides

        config = cls.from_dict(load_config_with_overrides(config_path))
        config.validate()
        return config
