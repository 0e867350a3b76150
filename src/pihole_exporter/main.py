from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import time
from typing import Any, Dict, List, Optional

from . import __version__
from .collector import PiholeCollector
from .config.config_schema import ExporterConfig, build_config
from .config.logging_config import init_logging
from .errors import InvalidEndpoint, MissingConfiguration
from .pihole.client import PiholeClient
from .servers.webserver import create_app, start_webserver

BANNER = "pihole_exporter - %s"


def build_parser() -> argparse.ArgumentParser:
    """Return the CLI parser; flag defaults are None so that unset flags fall
    through to the environment, the YAML file and then the model defaults."""

    parser = argparse.ArgumentParser(
        prog="pihole_exporter",
        description=BANNER % __version__,
    )
    parser.add_argument(
        "--version", action="store_true", help="print version and exit"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML config file (env: PIHOLE_EXPORTER_CONFIG)",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=None,
        help="Address to listen on for web interface and telemetry. (default :9311)",
    )
    parser.add_argument(
        "--web.telemetry-path",
        dest="metrics_path",
        default=None,
        help="Path under which to expose metrics. (default /metrics)",
    )
    parser.add_argument(
        "--web.include-process-metrics",
        dest="include_process_metrics",
        action="store_true",
        default=None,
        help="Also export process, platform and gc metrics of the exporter itself.",
    )
    parser.add_argument(
        "--pihole", dest="endpoint", default=None, help="Endpoint of Pihole"
    )
    parser.add_argument(
        "--pihole.auth",
        dest="auth",
        default=None,
        help="API token of Pihole, sent as the auth query parameter",
    )
    parser.add_argument(
        "--pihole.timeout",
        dest="timeout",
        type=float,
        default=None,
        help="Timeout in seconds for Pihole API requests (default: no timeout)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default=None,
        help=(
            "Only log messages with the given severity or above. "
            "Valid levels: [debug, info, warn, error, fatal] (default info)"
        ),
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default=None,
        help=(
            'Set the log target and format. Example: "logger:syslog?appname=bob&local=7" '
            'or "logger:stdout?json=true" (default logger:stderr)'
        ),
    )
    return parser


def _cli_values(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        field: getattr(args, field)
        for field in ExporterConfig.model_fields
        if getattr(args, field, None) is not None
    }


def _usage_and_exit(parser: argparse.ArgumentParser, message: str, exit_code: int) -> int:
    if message:
        print(message, file=sys.stderr)
    parser.print_help(sys.stderr)
    return exit_code


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the exporter.
    Parses arguments, builds the configuration, sets up logging and serves
    metrics until interrupted.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 after --version or a signal-driven shutdown, 1 on
        configuration, logging, exporter construction or bind failures.

    Example use:
        CLI:
            pihole_exporter --pihole http://192.168.1.2 --pihole.auth <token>

        Programmatic (for testing):
        >>> main(["--version"])
        0
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    config_path: Optional[str] = args.config or os.environ.get("PIHOLE_EXPORTER_CONFIG")
    try:
        config = build_config(_cli_values(args), os.environ, config_path)
    except MissingConfiguration as exc:
        return _usage_and_exit(parser, str(exc), 1)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    try:
        init_logging(config.logging_config())
    except (OSError, ValueError) as exc:
        print(f"Failed to set up logging: {exc}", file=sys.stderr)
        return 1
    logger = logging.getLogger("pihole_exporter.main")
    if config_path:
        logger.info("Loaded config from %s", config_path)

    logger.info("Setup Pihole exporter using URL: %s", config.endpoint)
    try:
        client = PiholeClient(config.endpoint, auth=config.auth, timeout=config.timeout)
    except InvalidEndpoint as exc:
        logger.error("Can't create exporter : %s", exc)
        return 1

    logger.info("Register exporter")
    app = create_app(config, collector=PiholeCollector(client))

    try:
        web_handle = start_webserver(config, app=app)
    except Exception as e:
        logger.error("Failed to start webserver: %s", e)
        client.close()
        return 1

    shutdown_event = threading.Event()
    exit_code = 0

    def _request_shutdown(signum, _frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        shutdown_event.set()

    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGTERM, signal.SIGINT):
            previous_handlers[sig] = signal.signal(sig, _request_shutdown)

    try:
        while not shutdown_event.is_set():
            if not web_handle.is_running():
                logger.error("Webserver thread exited unexpectedly")
                exit_code = 1
                break
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)
        logger.info("Stopping webserver")
        web_handle.stop()
        client.close()

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
