"""
Command line interface for AUTOHEAL.
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from . import __version__
from .config import ControllerConfig
from .controller import RemediationController
from .exceptions import ConfigurationError
from .logging_config import configure_cli_logging

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def _load_config(args: argparse.Namespace) -> ControllerConfig:
    config = ControllerConfig.load(args.config)
    if getattr(args, "dry_run", False):
        config.dry_run = True
    return config


async def _run_controller(controller: RemediationController) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass
    await controller.run(stop)


def handle_run(args: argparse.Namespace) -> int:
    """
    Handle the run subcommand.

    Returns:
        Exit code (0 for clean shutdown, 2 for configuration errors)
    """
    try:
        config = _load_config(args)
        configure_cli_logging(
            verbose=args.verbose,
            quiet=args.quiet,
            level=config.log_level,
            log_file=config.log_file,
            use_json=config.log_json,
        )
        controller = RemediationController.from_config(config)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    server = None
    if config.api_enabled:
        from .api import create_app, serve_in_thread

        app = create_app(controller, webhook_secret=config.api_webhook_secret)
        server = serve_in_thread(app, host=config.api_host, port=int(config.api_port))

    try:
        asyncio.run(_run_controller(controller))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    finally:
        if server is not None:
            server.shutdown()

    return 0


def handle_check_config(args: argparse.Namespace) -> int:
    """
    Handle the check-config subcommand.

    Returns:
        Exit code (0 if valid, 2 otherwise)
    """
    try:
        config = _load_config(args)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    policy = config.build_policy()
    print("Configuration is valid")
    print(f"  Objectives: {len(config.objectives)}")
    print(f"  Mapped alerts: {', '.join(sorted(policy.action_map)) or 'none'}")
    print(f"  Cooldown: {int(policy.cooldown.total_seconds())}s")
    print(f"  Tick interval: {config.tick_interval_seconds}s")
    print(f"  Orchestration: {config.orchestration.get('type', 'kubectl')}")
    print(f"  Dry run: {config.dry_run}")
    return 0


def handle_version(args: argparse.Namespace) -> int:
    """Handle the version subcommand."""
    print(f"AUTOHEAL version {__version__}")
    print("Automated incident remediation controller")

    if args.verbose:
        print(f"\nPython: {sys.version}")

    return 0


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser with subcommands.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="autoheal",
        description="AUTOHEAL: error-budget aware automated incident remediation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run --config autoheal.yaml
  %(prog)s run --dry-run
  %(prog)s check-config --config autoheal.yaml
  %(prog)s version

Environment Variables:
  AUTOHEAL_TICK_INTERVAL       Controller tick in seconds (default: 30)
  AUTOHEAL_COOLDOWN            Remediation cooldown in seconds (default: 300)
  AUTOHEAL_DRY_RUN             Log actions without executing them
  AUTOHEAL_PROMETHEUS_URL      Prometheus server URL
  AUTOHEAL_ESCALATION_WEBHOOK  Escalation webhook URL
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors"
    )

    subparsers = parser.add_subparsers(
        dest="subcommand",
        help="Available subcommands"
    )

    run_parser = subparsers.add_parser("run", help="Run the remediation controller")
    run_parser.add_argument("--config", metavar="PATH", help="Path to configuration file")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log remediation actions without executing them"
    )
    run_parser.set_defaults(func=handle_run)

    check_parser = subparsers.add_parser("check-config", help="Validate configuration and exit")
    check_parser.add_argument("--config", metavar="PATH", help="Path to configuration file")
    check_parser.set_defaults(func=handle_check_config)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=handle_version)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
