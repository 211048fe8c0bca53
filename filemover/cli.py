"""
File mover command line entry point.

Usage:
    filemover --source ./uploads --destination ./library
    filemover --config filemover.json
    filemover --config filemover.json --once
    filemover --config filemover.json --status-port 9877

Environment variables UPLOAD_FOLDER, DESTINATION_FOLDER and REJECTED_LOG
are honoured; command line options win over both environment and config file.

Exit codes:
    0  stopped cleanly (signal, or --once finished)
    1  fatal error while running
    2  invalid configuration or startup failure
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .errors import ConfigurationError, FileMoverError, MonitorStartupError, WatchError
from .monitor import UploadFolderMonitor
from .settings import load_settings
from .status_api import DEFAULT_HOST, start_status_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filemover",
        description="Watch an upload folder, validate arrivals and move accepted files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --source ./uploads --destination ./library
  %(prog)s --config filemover.json --once
  %(prog)s --config filemover.json --status-port 9877
        """,
    )
    parser.add_argument("--config", type=Path, metavar="FILE", help="JSON settings file")
    parser.add_argument("--source", type=Path, metavar="DIR", help="Upload folder to watch")
    parser.add_argument("--destination", type=Path, metavar="DIR", help="Destination root")
    parser.add_argument(
        "--debounce-ms", type=int, metavar="N", help="Quiet period before a batch runs"
    )
    parser.add_argument("--rejected-log", type=Path, metavar="FILE", help="Rejection log path")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process the files currently in the upload folder and exit (don't watch)",
    )
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    parser.add_argument(
        "--status-port", type=int, metavar="N", help="Serve the read-only status API on this port"
    )
    parser.add_argument(
        "--status-host",
        default=DEFAULT_HOST,
        metavar="HOST",
        help=f"Status API bind address (default: {DEFAULT_HOST})",
    )
    return parser


def configure_logging(verbose: bool, quiet: bool = False) -> None:
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    # watchdog logs every inotify event at debug
    logging.getLogger("watchdog").setLevel(max(level, logging.INFO))


def install_signal_handlers(stop_requested: threading.Event) -> None:
    def handler(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down gracefully...")
        stop_requested.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_monitor(monitor: UploadFolderMonitor, stop_requested: threading.Event) -> int:
    """Run until a signal arrives or the monitor fails. Returns the exit code."""
    monitor.start()
    logger.info("Press Ctrl+C to stop")

    while not stop_requested.is_set():
        if monitor.wait(timeout=0.5):
            break

    monitor.stop()
    if monitor.fatal_error is not None:
        logger.critical(f"Monitor failed: {monitor.fatal_error}")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            config_path=args.config,
            overrides={
                "upload_folder": args.source,
                "destination_folder": args.destination,
                "debounce_timeout_ms": args.debounce_ms,
                "rejected_log_path": args.rejected_log,
            },
        )
    except ConfigurationError as e:
        configure_logging(verbose=False, quiet=args.quiet)
        logger.error(f"Invalid configuration: {e}")
        return 2

    configure_logging(settings.verbose, args.quiet)
    monitor = UploadFolderMonitor(settings)

    if args.once:
        try:
            summary = monitor.run_once()
        except MonitorStartupError as e:
            logger.error(f"Failed to start monitor: {e}")
            return 2
        except FileMoverError as e:
            logger.critical(f"Monitor failed: {e}")
            return 1
        logger.info(
            f"Done: {summary.processed} processed, {summary.moved} moved, {summary.rejected} rejected"
        )
        return 0

    stop_requested = threading.Event()
    install_signal_handlers(stop_requested)

    if args.status_port:
        start_status_server(monitor, args.status_port, args.status_host)

    try:
        return run_monitor(monitor, stop_requested)
    except (MonitorStartupError, WatchError) as e:
        logger.error(f"Failed to start monitor: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
