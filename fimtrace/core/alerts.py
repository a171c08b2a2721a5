"""
fimtrace - Event log and console alerts.

Uses colorama for colored console lines and rich for the start/stop
banners. The event log is a plain append-only text file:

    2026-10-16 12:00:00 [CREATE] File created: a.txt | Action by: alice
"""

import logging
import os
import sys
import time
from pathlib import Path
from typing import Callable, Optional

import colorama
from colorama import Fore, Style
from rich.console import Console
from rich.panel import Panel

logger = logging.getLogger(__name__)

LEVELS = frozenset({
    "INFO", "EVENT", "CREATE", "MODIFY", "DELETE", "MOVE", "INIT", "MONITOR", "WARNING",
})

_LEVEL_COLORS = {
    "CREATE": Fore.GREEN,
    "MODIFY": Fore.YELLOW,
    "DELETE": Fore.RED,
    "MOVE": Fore.MAGENTA,
    "EVENT": Fore.CYAN,
    "WARNING": Fore.YELLOW,
    "INIT": Fore.BLUE,
    "MONITOR": Fore.BLUE,
}

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Lazy init of colorama (once per process)
_colorama_init_done = False


def _ensure_colorama() -> None:
    global _colorama_init_done
    if not _colorama_init_done:
        colorama.init(autoreset=True)
        _colorama_init_done = True


def colored_line(message: str, level: str, stream=None) -> None:
    """Print message to stream (stdout by default) in the level's color."""
    _ensure_colorama()
    prefix = _LEVEL_COLORS.get(level.upper(), "")
    print(f"{prefix}{message}{Style.RESET_ALL}", file=stream or sys.stdout)


def error_line(message: str) -> None:
    """Red error message on stderr (fatal startup errors)."""
    _ensure_colorama()
    print(f"{Fore.RED}Error: {message}{Style.RESET_ALL}", file=sys.stderr)


def print_banner(title: str, lines: list[str], style: str = "green") -> None:
    """Boxed banner on stderr."""
    console = Console(stderr=True)
    console.print(Panel("\n".join(lines), title=title, border_style=style, expand=False))


class EventLog:
    """
    Append-only text log shared by the event loop and startup code.

    Each write opens, appends and closes the file, so nothing is pending
    when the process exits.
    """

    FILE_MODE = 0o600

    def __init__(
        self,
        log_path: Path,
        console: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.log_path = Path(log_path)
        self.console = console
        self._clock = clock
        self.lines_written = 0

    def ensure_created(self, watch_dir: Path) -> None:
        """Create the log with a header when absent; always restrict to 0600."""
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.log_path.exists():
                started = time.strftime(_TIME_FORMAT, time.localtime(self._clock()))
                with open(self.log_path, "w", encoding="utf-8") as f:
                    f.write("# File Integrity Monitor Log\n")
                    f.write("# Started: %s\n" % started)
                    f.write("# Directory: %s\n\n" % watch_dir)
            os.chmod(self.log_path, self.FILE_MODE)
        except OSError as e:
            logger.warning("Could not prepare log file %s: %s", self.log_path, e)

    def format_line(self, level: str, message: str) -> str:
        stamp = time.strftime(_TIME_FORMAT, time.localtime(self._clock()))
        # One event per line, whatever the file name holds.
        message = message.replace("\r", "\\r").replace("\n", "\\n")
        return "%s [%s] %s" % (stamp, level, message)

    def write(self, level: str, message: str) -> str:
        """Append one line; write failures are logged, never raised."""
        level = level.upper()
        if level not in LEVELS:
            raise ValueError("Unknown log level: %s" % level)
        line = self.format_line(level, message)
        try:
            with open(self.log_path, "a", encoding="utf-8", errors="backslashreplace") as f:
                f.write(line + "\n")
            self.lines_written += 1
        except OSError as e:
            logger.warning("Failed to write event log %s: %s", self.log_path, e)
        if self.console:
            colored_line(line, level)
        return line

    def read_lines(self) -> list[str]:
        """Log lines without header comments (empty if the file is missing)."""
        try:
            with open(self.log_path, encoding="utf-8") as f:
                return [
                    line.rstrip("\n") for line in f
                    if line.strip() and not line.startswith("#")
                ]
        except FileNotFoundError:
            return []


def describe_path(rel_path: str, attribution: Optional[str] = None) -> str:
    """'<rel_path> | <attribution>' used in CREATE/MODIFY/DELETE/MOVE lines."""
    if attribution:
        return "%s | %s" % (rel_path, attribution)
    return rel_path
