"""
File Listener - command line entry point.

Watches a directory tree and reports normalized file events:
- Recursive, self-maintaining directory subscriptions
- Optional depth collapsing of deep changes
- Fan-out to pluggable listeners
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from loguru import logger

from domains.file_events.listeners import LoggingListener
from domains.file_events.watcher import FileWatcher, WatchState
from file_listener.utils.config import Settings, get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with the application sink."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level.upper())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Watch a directory tree and report normalized file events.",
    )
    parser.add_argument(
        "--path",
        type=Path,
        default=None,
        help="Directory to watch (default: FILE_LISTENER_LISTENING_PATH).",
    )
    parser.add_argument(
        "--depth",
        type=int,
        default=None,
        help="Collapse changes to this many segments below the root (0 disables).",
    )
    parser.add_argument("--host-name", default=None, help="Host name attached to events.")
    parser.add_argument("--tenant-id", default=None, help="Tenant id attached to events.")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO).")
    parser.add_argument(
        "--poll",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Use the polling observer with this interval instead of native notifications.",
    )

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Overlay CLI arguments on the environment settings."""
    overrides = {
        "listening_path": args.path,
        "depth": args.depth,
        "host_name": args.host_name,
        "tenant_id": args.tenant_id,
        "log_level": args.log_level,
    }
    if args.poll is not None:
        overrides.update(use_polling=True, polling_interval=args.poll)
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if not overrides:
        return get_settings()
    return Settings(**overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI."""

    args = parse_args(argv)
    settings = build_settings(args)
    configure_logging(settings.log_level)

    logger.info("File Listener - Recursive Directory Watcher")

    watcher = FileWatcher(settings).add_listener(LoggingListener())
    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: ARG001
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    watcher.start()
    try:
        while not stop_event.is_set() and watcher.is_alive:
            stop_event.wait(1.0)
    finally:
        watcher.stop(timeout=10.0)

    if watcher.failure is not None:
        logger.error(f"File watcher failed: {watcher.failure}")
        return 1

    logger.info("File watcher stopped.")
    return 0 if watcher.state is WatchState.STOPPED else 1


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
