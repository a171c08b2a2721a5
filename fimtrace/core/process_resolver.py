"""
fimtrace - Process and session inspection.

Coarse attribution signals used when the audit trail has nothing:

  1. file owner  : stat() of the target (user:group)
  2. sessions    : users with a login session (psutil.users)
  3. open handles: processes that currently hold the file open

The open-handle scan iterates the process table once per call. All
psutil errors (AccessDenied, NoSuchProcess, ZombieProcess) are caught
per-process so a single protected process never aborts the scan.
"""

import grp
import logging
import os
import pwd
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

# Max open-file descriptors before we skip the expensive open_files() call.
_MAX_FDS_FOR_OPEN_FILES = 500

_PSUTIL_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess, OSError)


@dataclass(frozen=True, slots=True)
class HandleHolder:
    """A process that has the target file open."""

    pid: int
    name: Optional[str] = None
    username: Optional[str] = None


def username_for_uid(uid: int) -> str:
    """Resolve a uid to a login name; 'uid:<n>' when unknown."""
    try:
        return pwd.getpwuid(uid).pw_name
    except (KeyError, OverflowError):
        return "uid:%d" % uid


def groupname_for_gid(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except (KeyError, OverflowError):
        return "gid:%d" % gid


class ProcessResolver:
    """psutil-backed session and open-handle inspection."""

    def __init__(self, self_pid: Optional[int] = None) -> None:
        self._self_pid = self_pid if self_pid is not None else os.getpid()

    def file_owner(self, file_path: str) -> Optional[tuple[str, str]]:
        """(user, group) owning file_path, or None when it is gone."""
        try:
            st = os.stat(file_path)
        except OSError:
            return None
        return username_for_uid(st.st_uid), groupname_for_gid(st.st_gid)

    def logged_in_users(self) -> list[str]:
        """Sorted unique names of users with a login session."""
        try:
            return sorted({u.name for u in psutil.users() if u.name})
        except (OSError, RuntimeError) as e:
            logger.warning("Could not list logged-in users: %s", e)
            return []

    def open_handle_holders(self, file_path: str, limit: int = 3) -> list[HandleHolder]:
        """Processes (up to limit) that currently have file_path open."""
        try:
            target = str(Path(file_path).resolve())
        except (OSError, RuntimeError):
            return []

        holders: list[HandleHolder] = []
        for proc in psutil.process_iter(["pid", "name", "username"]):
            if proc.info["pid"] == self._self_pid:
                continue
            if self._holds_file(proc, target):
                holders.append(
                    HandleHolder(
                        pid=proc.info["pid"],
                        name=proc.info.get("name"),
                        username=proc.info.get("username"),
                    )
                )
                if len(holders) >= limit:
                    break
        return holders

    @staticmethod
    def _holds_file(proc: "psutil.Process", target: str) -> bool:
        try:
            if hasattr(proc, "num_fds"):
                try:
                    if proc.num_fds() > _MAX_FDS_FOR_OPEN_FILES:
                        return False
                except _PSUTIL_ERRORS:
                    pass
            for f in proc.open_files():
                if f.path == target:
                    return True
        except _PSUTIL_ERRORS:
            pass
        return False
