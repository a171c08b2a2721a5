"""
fimtrace - Shared data models (raw events, classified events, attribution).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class RawEventKind(str, Enum):
    """Filesystem notification kinds as delivered by the watch source."""

    CREATE = "CREATE"
    MODIFY = "MODIFY"
    DELETE = "DELETE"
    MOVE_FROM = "MOVE_FROM"
    MOVE_TO = "MOVE_TO"


class ChangeKind(str, Enum):
    """Integrity-relevant change classes."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    MOVED = "MOVED"


class AttributionSource(str, Enum):
    AUDIT_LOG = "AUDIT_LOG"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class RawEvent:
    """One filesystem notification; never persisted."""

    timestamp: float
    kind: RawEventKind
    path: str


@dataclass
class ClassifiedEvent:
    """A raw event that passed the path filter and the hash check."""

    kind: ChangeKind
    raw: RawEvent
    rel_path: str
    abs_path: str
    old_hash: Optional[str] = None
    new_hash: Optional[str] = None

    @property
    def moved_away(self) -> bool:
        return self.raw.kind == RawEventKind.MOVE_FROM


@dataclass(frozen=True)
class Rejected:
    """Classifier verdict for events that must not produce alerts."""

    raw: RawEvent
    reason: str


Classification = Union[ClassifiedEvent, Rejected]


@dataclass(frozen=True)
class AuditRecord:
    """
    One audit event (SYSCALL + PATH records sharing a serial).

    Every identity field is optional: ausearch output is frequently
    partial and a missing field must never be fatal.
    """

    timestamp: float
    serial: Optional[int] = None
    uid: Optional[int] = None
    auid: Optional[int] = None
    pid: Optional[int] = None
    comm: Optional[str] = None
    exe: Optional[str] = None
    paths: tuple[str, ...] = ()

    @property
    def actor_uid(self) -> Optional[int]:
        """Login uid when set (survives sudo/su), otherwise the effective uid."""
        if self.auid is not None:
            return self.auid
        return self.uid


@dataclass
class AttributionRecord:
    """Best-effort answer to 'who caused this change'."""

    source: AttributionSource = AttributionSource.FALLBACK
    file_owner: Optional[tuple[str, str]] = None
    actor_user: Optional[str] = None
    actor_process: Optional[str] = None
    actor_pid: Optional[int] = None
    logged_users: list[str] = field(default_factory=list)
    handle_user: Optional[str] = None

    def summary(self) -> str:
        """
        Human-readable attribution line; never empty.

        Audit   -> 'File Owner: u:g | Action by: user (process: comm) [PID: n]'
        Fallback-> 'File Owner: u:g | Logged users: a,b | Recent access by: c'
        """
        parts: list[str] = []
        if self.file_owner is not None:
            parts.append("File Owner: %s:%s" % self.file_owner)
        if self.source == AttributionSource.AUDIT_LOG:
            action = "Action by: %s" % (self.actor_user or "unknown")
            if self.actor_process:
                action += " (process: %s)" % self.actor_process
            if self.actor_pid is not None:
                action += " [PID: %d]" % self.actor_pid
            parts.append(action)
        else:
            users = ",".join(self.logged_users) if self.logged_users else "unknown"
            parts.append("Logged users: %s" % users)
            if self.handle_user:
                parts.append("Recent access by: %s" % self.handle_user)
        return " | ".join(parts)
