"""
fimtrace - Linux audit subsystem integration.

AuditRuleManager : makes sure auditd runs and owns the watch rule
                   (-w <root> -p wa -k <key>) for the monitored root.
AusearchSource   : runs ausearch for a key and time window.
parse_ausearch() : structured parser for ausearch's raw output.
AuditCorrelator  : turns a (path, window) question into AuditRecords.

Audit records are flushed slightly after the filesystem event fires, so
correlation looks back over a fixed window that ends "now". That window
is a heuristic: a record flushed later than the query is simply missed
and attribution falls back to coarser signals.
"""

import logging
import os
import re
import shutil
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from fimtrace.core.errors import AuditSubsystemError
from fimtrace.core.models import AuditRecord

logger = logging.getLogger(__name__)

DEFAULT_RULE_KEY = "filewatch"
DEFAULT_AUDIT_LOG = Path("/var/log/audit/audit.log")
DEFAULT_LOOKBACK_SECONDS = 10.0
DEFAULT_QUERY_TIMEOUT = 3.0

# auid of processes that never logged in (daemons, early boot).
_UNSET_AUID = 4294967295

_FIELD_RE = re.compile(r'([A-Za-z_][\w-]*)=("[^"]*"|\S+)')
_MSG_RE = re.compile(r"audit\((\d+(?:\.\d+)?):(\d+)\)")
_HEX_RE = re.compile(r"^(?:[0-9A-F]{2})+$")

Runner = Callable[..., subprocess.CompletedProcess]


# ---------------------------------------------------------------------------
#  Parsing
# ---------------------------------------------------------------------------
def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _decode_name(value: str) -> str:
    """PATH names containing spaces or non-ASCII are logged hex-encoded."""
    if value.startswith('"'):
        return _unquote(value)
    if _HEX_RE.match(value):
        try:
            return bytes.fromhex(value).decode("utf-8", errors="replace")
        except ValueError:
            return value
    return value


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(_unquote(value))
    except ValueError:
        return None


def parse_fields(line: str) -> dict[str, str]:
    """Split one audit record line into raw key=value strings (first wins)."""
    fields: dict[str, str] = {}
    for key, value in _FIELD_RE.findall(line):
        fields.setdefault(key, value)
    return fields


def _parse_event(lines: list[str]) -> Optional[AuditRecord]:
    timestamp: Optional[float] = None
    serial: Optional[int] = None
    syscall: dict[str, str] = {}
    paths: list[str] = []

    for line in lines:
        fields = parse_fields(line)
        m = _MSG_RE.search(fields.get("msg", "")) or _MSG_RE.search(line)
        if m and timestamp is None:
            timestamp = float(m.group(1))
            serial = int(m.group(2))
        record_type = fields.get("type")
        if record_type == "SYSCALL" and not syscall:
            syscall = fields
        elif record_type == "PATH" and "name" in fields:
            paths.append(_decode_name(fields["name"]))

    if timestamp is None:
        return None

    auid = _to_int(syscall.get("auid"))
    if auid == _UNSET_AUID:
        auid = None
    comm = syscall.get("comm")
    exe = syscall.get("exe")
    return AuditRecord(
        timestamp=timestamp,
        serial=serial,
        uid=_to_int(syscall.get("uid")),
        auid=auid,
        pid=_to_int(syscall.get("pid")),
        comm=_decode_name(comm) if comm and comm != "(null)" else None,
        exe=_decode_name(exe) if exe and exe != "(null)" else None,
        paths=tuple(paths),
    )


def parse_ausearch(output: str) -> list[AuditRecord]:
    """
    Parse `ausearch` raw output into AuditRecords in output order.

    Events are separated by '----' lines. Events without a parsable
    msg=audit(...) stamp are dropped; any other missing field is None.
    """
    records: list[AuditRecord] = []
    block: list[str] = []
    for line in output.splitlines() + ["----"]:
        if line.startswith("----"):
            if block:
                rec = _parse_event(block)
                if rec is not None:
                    records.append(rec)
                block = []
            continue
        if line.strip() and not line.startswith("<no matches>"):
            block.append(line)
    return records


# ---------------------------------------------------------------------------
#  ausearch / auditctl wrappers
# ---------------------------------------------------------------------------
class AuditQueryError(RuntimeError):
    """ausearch failed or timed out."""


class AusearchSource:
    """Runs ausearch for records tagged with a rule key inside a window."""

    def __init__(
        self,
        audit_log: Path = DEFAULT_AUDIT_LOG,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
        runner: Runner = subprocess.run,
    ) -> None:
        self.audit_log = Path(audit_log)
        self.timeout = timeout
        self._run = runner

    def readable(self) -> bool:
        return os.access(self.audit_log, os.R_OK)

    @staticmethod
    def _ts_args(when: datetime) -> list[str]:
        return [when.strftime("%m/%d/%Y"), when.strftime("%H:%M:%S")]

    def search(self, key: str, start: float, end: float) -> str:
        """Return raw ausearch output ('' when nothing matched)."""
        # ausearch has one-second resolution; widen the end so the
        # current second is included.
        cmd = (
            ["ausearch", "-ts"] + self._ts_args(datetime.fromtimestamp(start))
            + ["-te"] + self._ts_args(datetime.fromtimestamp(end + 1))
            + ["-k", key]
        )
        try:
            proc = self._run(
                cmd, capture_output=True, text=True, timeout=self.timeout, check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise AuditQueryError("ausearch timed out after %.1fs" % self.timeout) from e
        except OSError as e:
            raise AuditQueryError("ausearch not runnable: %s" % e) from e
        if proc.returncode == 0:
            return proc.stdout or ""
        # Exit status 1 with "<no matches>" is ausearch's empty result.
        if "<no matches>" in (proc.stderr or "") + (proc.stdout or ""):
            return ""
        raise AuditQueryError(
            "ausearch exited %d: %s" % (proc.returncode, (proc.stderr or "").strip()[:200])
        )


class AuditRuleManager:
    """Keeps exactly one `-w <root> -p wa -k <key>` rule installed."""

    def __init__(
        self,
        watch_path: Path,
        key: str = DEFAULT_RULE_KEY,
        runner: Runner = subprocess.run,
        timeout: float = 10.0,
    ) -> None:
        self.watch_path = str(Path(watch_path).resolve())
        self.key = key
        self._run = runner
        self._timeout = timeout
        self.installed = False

    def _call(self, cmd: list[str]) -> subprocess.CompletedProcess:
        return self._run(cmd, capture_output=True, text=True, timeout=self._timeout, check=False)

    def _rule_args(self, flag: str) -> list[str]:
        return ["auditctl", flag, self.watch_path, "-p", "wa", "-k", self.key]

    def ensure_running(self) -> None:
        """Start auditd when it is not active; raises AuditSubsystemError on failure."""
        if shutil.which("auditctl") is None:
            raise AuditSubsystemError("auditctl not found; install the audit package (auditd)")
        try:
            status = self._call(["systemctl", "is-active", "--quiet", "auditd"])
            if status.returncode == 0:
                return
            logger.warning("auditd service is not running. Starting it...")
            started = self._call(["systemctl", "start", "auditd"])
        except (OSError, subprocess.TimeoutExpired) as e:
            raise AuditSubsystemError("Could not query/start auditd: %s" % e) from e
        if started.returncode != 0:
            raise AuditSubsystemError(
                "Could not start auditd service: %s" % (started.stderr or "").strip()
            )

    def install(self) -> None:
        """Remove any previous copy of the rule, then add it once."""
        try:
            self._call(self._rule_args("-W"))
            added = self._call(self._rule_args("-w"))
        except (OSError, subprocess.TimeoutExpired) as e:
            raise AuditSubsystemError("auditctl failed: %s" % e) from e
        if added.returncode != 0:
            raise AuditSubsystemError(
                "Could not add audit rule for %s: %s"
                % (self.watch_path, (added.stderr or "").strip())
            )
        self.installed = True
        logger.info("Audit rule refreshed for %s (key=%s)", self.watch_path, self.key)

    def remove(self) -> None:
        """Delete the rule; failures are logged, never raised."""
        if not self.installed:
            return
        try:
            proc = self._call(self._rule_args("-W"))
            if proc.returncode != 0:
                logger.warning(
                    "Could not remove audit rule for %s: %s",
                    self.watch_path, (proc.stderr or "").strip(),
                )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not remove audit rule for %s: %s", self.watch_path, e)
        self.installed = False


# ---------------------------------------------------------------------------
#  Correlator
# ---------------------------------------------------------------------------
class AuditCorrelator:
    """Finds audit events that touched a file's basename within a window."""

    def __init__(
        self,
        source: AusearchSource,
        key: str = DEFAULT_RULE_KEY,
    ) -> None:
        self.source = source
        self.key = key

    def query(self, path: str, window_start: float, window_end: float) -> list[AuditRecord]:
        """
        Records within [window_start, window_end] whose PATH entries name
        the file's basename, newest first. Never raises: an unreadable or
        failing audit source yields [].
        """
        if not self.source.readable():
            logger.warning("Audit log %s is not readable; skipping correlation", self.source.audit_log)
            return []
        try:
            output = self.source.search(self.key, window_start, window_end)
        except AuditQueryError as e:
            logger.warning("Audit query failed: %s", e)
            return []

        basename = os.path.basename(path)
        matches = [
            rec for rec in parse_ausearch(output)
            if window_start <= rec.timestamp <= window_end
            and any(os.path.basename(p) == basename for p in rec.paths)
        ]
        matches.sort(key=lambda r: (r.timestamp, r.serial or 0), reverse=True)
        logger.debug("Audit correlation for %s: %d record(s)", basename, len(matches))
        return matches
