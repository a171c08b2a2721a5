#!/usr/bin/env python3
"""
fimtrace - CLI entry point.

Exposed as the 'fimtrace' console command via pyproject.toml.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from fimtrace.core.errors import StartupError


def setup_logging(verbose: bool = False) -> None:
    """Configure diagnostic logging to stderr (the event log is separate)."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fimtrace",
        description=(
            "File integrity monitor for Linux: watches a directory, keeps a SHA256 "
            "baseline and attributes every change to a user/process via auditd."
        ),
    )
    parser.add_argument(
        "directory",
        nargs="?",
        default=None,
        help="Directory to monitor (default: current working directory)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: packaged config)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def cmd_monitor(config: dict, stop: threading.Event) -> None:
    """Run the monitor until SIGINT/SIGTERM."""
    from fimtrace.core.alerts import print_banner
    from fimtrace.core.monitor import FileMonitor

    def on_signal(_signum, _frame) -> None:
        stop.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    print_banner(
        "File Integrity Monitor Started",
        [f"Monitoring directory: {config['watch_dir']}", "Press Ctrl+C to stop."],
        style="green",
    )
    FileMonitor(config, stop_event=stop).run()
    print_banner(
        "File Integrity Monitor Stopped",
        ["All monitoring stopped and cleanup completed."],
        style="yellow",
    )


def main(argv: Optional[list[str]] = None) -> int:
    """CLI logic; returns the process exit status."""
    from fimtrace.core.alerts import error_line
    from fimtrace.core.config_loader import load_config
    from fimtrace.core.monitor import check_privileges, resolve_target

    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    log = logging.getLogger(__name__)

    try:
        check_privileges()
        watch_dir = resolve_target(args.directory)
        config = load_config(Path(args.config) if args.config else None, watch_dir)
        log.info("Monitoring directory: %s", watch_dir)
        cmd_monitor(config, threading.Event())
    except StartupError as e:
        error_line(str(e))
        return e.exit_code
    return 0


def cli() -> None:
    """Entry point for the fimtrace console command."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
