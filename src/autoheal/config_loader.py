"""
Configuration file loader for AUTOHEAL.

Supports loading configuration from YAML and TOML files with environment
variable overrides and a standard search path. Unlike a best-effort
loader, every failure here raises a ConfigurationError: the controller
never starts on a partially applied configuration.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import InvalidConfigError, MissingConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("autoheal.yaml", "autoheal.toml")


def load_yaml_file(path: Path) -> dict:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Dictionary containing configuration data

    Raises:
        MissingConfigError: If file doesn't exist
        InvalidConfigError: If YAML parsing fails
    """
    import yaml

    if not path.exists():
        raise MissingConfigError(f"Config file not found: {path}")

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Failed to parse YAML config file {path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise InvalidConfigError(f"Config file {path} must contain a mapping at the top level")
    return config


def load_toml_file(path: Path) -> dict:
    """
    Load configuration from a TOML file.

    Args:
        path: Path to the TOML file

    Returns:
        Dictionary containing configuration data

    Raises:
        MissingConfigError: If file doesn't exist
        InvalidConfigError: If TOML parsing fails
    """
    try:
        # Python 3.11+ has tomllib built-in
        import tomllib
    except ImportError:
        import tomli as tomllib

    if not path.exists():
        raise MissingConfigError(f"Config file not found: {path}")

    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise InvalidConfigError(f"Failed to parse TOML config file {path}: {e}") from e


def load_config_file(path: str) -> dict:
    """
    Load configuration from a YAML or TOML file.

    The file format is determined by the file extension (.yaml, .yml, or .toml).

    Raises:
        InvalidConfigError: If the extension is not supported or parsing fails
        MissingConfigError: If file doesn't exist
    """
    file_path = Path(path).expanduser()
    suffix = file_path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        return load_yaml_file(file_path)
    elif suffix == '.toml':
        return load_toml_file(file_path)
    else:
        raise InvalidConfigError(
            f"Unsupported config file format: {suffix}. "
            "Supported formats: .yaml, .yml, .toml"
        )


def find_config_file() -> Optional[Path]:
    """
    Search for a configuration file in standard locations.

    Search order:
    1. ./autoheal.yaml
    2. ./autoheal.toml
    3. ~/.autoheal.yaml
    4. ~/.autoheal.toml
    5. /etc/autoheal.yaml
    6. /etc/autoheal.toml

    Returns:
        Path to the first configuration file found, or None if no file is found
    """
    search_paths = [Path.cwd() / name for name in CONFIG_FILE_NAMES]
    search_paths += [Path.home() / f".{name}" for name in CONFIG_FILE_NAMES]
    search_paths += [Path("/etc") / name for name in CONFIG_FILE_NAMES]

    for path in search_paths:
        if path.exists() and path.is_file():
            logger.info(f"Found configuration file: {path}")
            return path

    logger.debug("No configuration file found in standard locations")
    return None


def _env_number(key: str, cast=float) -> Optional[Any]:
    value = os.getenv(key)
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except ValueError:
        raise InvalidConfigError(f"Environment variable {key}={value!r} is not a valid number")


def _env_bool(key: str) -> Optional[bool]:
    value = os.getenv(key)
    if value is None or value == "":
        return None
    return value.lower() in ("true", "1", "yes", "on")


def get_env_config() -> dict:
    """
    Extract configuration from environment variables.

    Environment variables override file-based configuration.

    Returns:
        Nested dictionary shaped like the config file
    """
    config: Dict[str, Dict[str, Any]] = {}

    def put(section: str, key: str, value: Any) -> None:
        if value is not None:
            config.setdefault(section, {})[key] = value

    put("controller", "tick_interval_seconds", _env_number("AUTOHEAL_TICK_INTERVAL"))
    put("controller", "executor_timeout_seconds", _env_number("AUTOHEAL_EXECUTOR_TIMEOUT"))
    put("controller", "dry_run", _env_bool("AUTOHEAL_DRY_RUN"))
    put("remediation", "cooldown_seconds", _env_number("AUTOHEAL_COOLDOWN"))

    put("logging", "level", os.getenv("AUTOHEAL_LOG_LEVEL") or None)
    put("logging", "file", os.getenv("AUTOHEAL_LOG_FILE") or None)
    put("audit", "file", os.getenv("AUTOHEAL_AUDIT_FILE") or None)

    prometheus_url = os.getenv("AUTOHEAL_PROMETHEUS_URL")
    if prometheus_url:
        put("metrics_source", "type", "prometheus")
        put("metrics_source", "url", prometheus_url)

    put("escalation", "webhook_url", os.getenv("AUTOHEAL_ESCALATION_WEBHOOK") or None)

    return config


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries, with override values taking precedence.

    Args:
        base: Base dictionary
        override: Override dictionary (values take precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _section(config: dict, name: str) -> dict:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise InvalidConfigError(f"Config section '{name}' must be a mapping")
    return value


def flatten_config(config: dict) -> dict:
    """
    Flatten nested configuration to ControllerConfig fields.

    Scalar settings are lifted out of their sections; structured sections
    (remediation, objectives, resources, orchestration, metrics_source,
    escalation) are passed through as-is.
    """
    flat: Dict[str, Any] = {}

    controller = _section(config, "controller")
    for key in (
        "tick_interval_seconds",
        "grace_period_seconds",
        "queue_size",
        "identity_labels",
        "resource_label",
        "degraded_threshold",
        "executor_timeout_seconds",
        "dry_run",
        "max_history_size",
    ):
        if key in controller:
            flat[key] = controller[key]

    for name in ("remediation", "resources", "orchestration", "metrics_source", "escalation"):
        if name in config:
            flat[name] = _section(config, name)

    if "objectives" in config:
        objectives = config["objectives"] or []
        if not isinstance(objectives, list):
            raise InvalidConfigError("Config section 'objectives' must be a list")
        flat["objectives"] = objectives

    audit = _section(config, "audit")
    if "file" in audit:
        flat["audit_file"] = audit["file"]

    log = _section(config, "logging")
    if "level" in log:
        flat["log_level"] = log["level"]
    if "file" in log:
        flat["log_file"] = log["file"]
    if "json" in log:
        flat["log_json"] = log["json"]

    api = _section(config, "api")
    for key in ("enabled", "host", "port", "webhook_secret"):
        if key in api:
            flat[f"api_{key}"] = api[key]

    unknown = set(config) - {
        "controller", "remediation", "objectives", "resources", "orchestration",
        "metrics_source", "escalation", "audit", "logging", "api",
    }
    if unknown:
        logger.warning(f"Ignoring unknown config sections: {', '.join(sorted(unknown))}")

    return flat


def merge_config(file_config: dict, env_config: dict) -> dict:
    """
    Merge file-based and environment-based configuration.

    Environment variables take precedence over file-based configuration.

    Returns:
        Merged configuration dictionary (flattened)
    """
    merged = deep_merge(file_config, env_config)
    return flatten_config(merged)


def load_config_with_overrides(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Optional explicit path to config file.
                    If None, searches standard locations.

    Returns:
        Dictionary containing merged configuration

    Raises:
        MissingConfigError: If no configuration file can be found
        InvalidConfigError: If config parsing fails
    """
    if config_path:
        file_config = load_config_file(config_path)
        logger.info(f"Loaded configuration from: {config_path}")
    else:
        found_path = find_config_file()
        if found_path is None:
            raise MissingConfigError(
                "No configuration file found. Pass --config or create ./autoheal.yaml"
            )
        file_config = load_config_file(str(found_path))
        logger.info(f"Loaded configuration from: {found_path}")

    env_config = get_env_config()
    if env_config:
        logger.info("Applying environment variable overrides")

    return merge_config(file_config, env_config)
