"""
fimtrace - Per-path notification rate limiting.

Rapid repeated changes to one file collapse into one desktop alert per
throttle window. Log lines are never throttled, only notifications.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fimtrace.core.models import ChangeKind

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_SECONDS = 5.0


@dataclass
class AlertThrottleEntry:
    rel_path: str
    last_emitted_at: float


class NotificationGate:
    """
    Remembers when each path last produced an alert.

    The key is the path alone. Only kinds in throttled_kinds consult the
    window; other kinds always pass and leave the entry untouched.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_THROTTLE_SECONDS,
        throttled_kinds: Optional[Iterable[ChangeKind]] = None,
    ) -> None:
        self.window_seconds = window_seconds
        self.throttled_kinds = frozenset(
            throttled_kinds if throttled_kinds is not None else (ChangeKind.MODIFIED,)
        )
        self._entries: dict[str, AlertThrottleEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, rel_path: str) -> Optional[AlertThrottleEntry]:
        return self._entries.get(rel_path)

    def should_emit(self, rel_path: str, now: float) -> bool:
        """True when rel_path may alert at now; records now only in that case."""
        current = self._entries.get(rel_path)
        if current is not None and now - current.last_emitted_at < self.window_seconds:
            logger.debug(
                "Notification for %s throttled (%.1fs since last)",
                rel_path, now - current.last_emitted_at,
            )
            return False
        if current is None:
            self._entries[rel_path] = AlertThrottleEntry(rel_path, now)
        else:
            current.last_emitted_at = now
        return True

    def allows(self, rel_path: str, kind: ChangeKind, now: float) -> bool:
        """Gate decision for one classified change."""
        if kind not in self.throttled_kinds:
            return True
        return self.should_emit(rel_path, now)
