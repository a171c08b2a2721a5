"""
fimtrace - Desktop notification sink.

Sends alerts with notify-send on the desktop session of the first
logged-in user. The monitor runs as root, so the command is wrapped in
`sudo -u <user>` with that user's DISPLAY and D-Bus session address.
Best-effort: a missing notify-send, missing session or failing command is
logged and otherwise ignored.
"""

import logging
import os
import pwd
import shutil
import subprocess
from typing import Any, Callable, Optional

import psutil

from fimtrace.core.models import ChangeKind

logger = logging.getLogger(__name__)

_TITLES = {
    ChangeKind.CREATED: ("File Created", "dialog-information"),
    ChangeKind.MODIFIED: ("File Modified", "dialog-information"),
    ChangeKind.DELETED: ("File Deleted", "dialog-warning"),
    ChangeKind.MOVED: ("File Moved", "dialog-information"),
}


def _first_session_user() -> Optional[str]:
    try:
        for session in psutil.users():
            if session.name:
                return session.name
    except (OSError, RuntimeError):
        pass
    return None


class DesktopNotifier:
    """
    Fire-and-forget notify-send wrapper.

    - Resolves the desktop user once at construction.
    - Each send is bounded by `timeout` seconds.
    - Logs a single warning when notifications are unavailable.
    """

    def __init__(
        self,
        config: dict[str, Any],
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        user: Optional[str] = None,
    ) -> None:
        self._enabled: bool = bool(config.get("desktop_notifications", True))
        self._timeout: float = float(config.get("notification_timeout", 2.0))
        self._expire_ms: int = int(config.get("notification_expire_ms", 5000))
        self._display: str = str(config.get("notification_display", ":0"))
        self._run = runner
        self._binary = shutil.which("notify-send") if self._enabled else None
        self._user = user or _first_session_user()
        self._uid: Optional[int] = None
        if self._user:
            try:
                self._uid = pwd.getpwnam(self._user).pw_uid
            except KeyError:
                self._uid = None
        self.sent = 0
        self._warned = False

    @property
    def is_configured(self) -> bool:
        return bool(self._enabled and self._binary and self._user)

    def _command(self, title: str, message: str, icon: str) -> list[str]:
        cmd = [
            self._binary, "--icon=%s" % icon, "--urgency=normal",
            "--expire-time=%d" % self._expire_ms, title, message,
        ]
        if os.geteuid() == 0 and self._user:
            env = ["DISPLAY=%s" % self._display]
            if self._uid is not None:
                env.append("DBUS_SESSION_BUS_ADDRESS=unix:path=/run/user/%d/bus" % self._uid)
            cmd = ["sudo", "-u", self._user] + env + cmd
        return cmd

    def _warn_once(self, message: str, *args: Any) -> None:
        if not self._warned:
            logger.warning(message, *args)
            self._warned = True

    def notify(self, title: str, message: str, icon: str = "dialog-information") -> bool:
        """Returns True when notify-send reported success."""
        if not self.is_configured:
            self._warn_once("Desktop notifications unavailable (notify-send or desktop session missing)")
            return False
        try:
            proc = self._run(
                self._command(title, message, icon),
                capture_output=True, text=True, timeout=self._timeout, check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("notify-send timed out after %.1fs", self._timeout)
            return False
        except OSError as e:
            self._warn_once("notify-send failed: %s", e)
            return False
        if proc.returncode != 0:
            logger.debug("notify-send exited %d: %s", proc.returncode, (proc.stderr or "").strip())
            return False
        self.sent += 1
        return True

    def notify_change(self, kind: ChangeKind, rel_path: str, attribution: str) -> bool:
        title, icon = _TITLES[kind]
        return self.notify(title, "File: %s\n%s" % (rel_path, attribution), icon)
