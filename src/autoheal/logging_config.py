"""
Centralized logging configuration for AUTOHEAL.

This module provides a consistent logging setup across the controller,
preventing multiple basicConfig() calls and ensuring proper log formatting.

Functions:
    setup_logging: Configure logging with console and optional rotating file handlers.
    configure_cli_logging: Map CLI verbosity flags onto setup_logging().

Example:
    >>> from autoheal.logging_config import setup_logging
    >>> setup_logging(level='DEBUG', log_file='autoheal.log')
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from .logging_context import JSONFormatter


# Track if logging has been configured to avoid duplicate configuration
_LOGGING_CONFIGURED = False


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str | Path] = None,
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> None:
    """
    Configure logging for AUTOHEAL.

    Should be called once at controller startup. Later calls only adjust
    the root level.

    Args:
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        log_file: Optional path to log file. Enables file logging with rotation.
        log_format: Custom log format string. If None, uses default format.
        include_timestamp: Whether to include timestamps in log messages.
        use_json: Emit one JSON object per record (includes incident context).
        max_bytes: Maximum size of log file before rotation (default 10MB).
        backup_count: Number of backup log files to keep (default 5).
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED:
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, level.upper()))
        return

    if log_format is None:
        if include_timestamp:
            log_format = (
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        else:
            log_format = '%(name)s - %(levelname)s - %(message)s'

    formatter = JSONFormatter() if use_json else logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove any existing handlers to prevent duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {log_path}")

    _LOGGING_CONFIGURED = True

    root_logger.info(f"Logging configured at {level} level")


def reset_logging_config() -> None:
    """
    Reset logging configuration.

    Primarily useful for testing.
    """
    global _LOGGING_CONFIGURED

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    _LOGGING_CONFIGURED = False


def configure_cli_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    use_json: bool = False
) -> None:
    """
    Configure logging for CLI usage.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Only show WARNING and above
        level: Level from configuration, used when no flag is given
        log_file: Optional log file path from configuration
        use_json: Structured JSON output
    """
    if quiet:
        resolved = 'WARNING'
    elif verbose:
        resolved = 'DEBUG'
    else:
        resolved = level or 'INFO'

    setup_logging(level=resolved, log_file=log_file, use_json=use_json)
