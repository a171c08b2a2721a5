"""
fimtrace - Event classifier.

Maps a RawEvent to a ClassifiedEvent or a Rejected verdict. Modify
notifications are checked against the baseline hash: many editors fire
several writes per save and only a real content change is reported.
"""

import logging
from pathlib import Path
from typing import Optional

from fimtrace.core.hash_index import HashIndex
from fimtrace.core.hashing import HashEngine
from fimtrace.core.models import (
    ChangeKind,
    Classification,
    ClassifiedEvent,
    RawEvent,
    RawEventKind,
    Rejected,
)
from fimtrace.core.scanner import PathFilter

logger = logging.getLogger(__name__)

_KIND_MAP = {
    RawEventKind.CREATE: ChangeKind.CREATED,
    RawEventKind.MODIFY: ChangeKind.MODIFIED,
    RawEventKind.DELETE: ChangeKind.DELETED,
    RawEventKind.MOVE_FROM: ChangeKind.MOVED,
    RawEventKind.MOVE_TO: ChangeKind.MOVED,
}


class EventClassifier:
    def __init__(
        self,
        path_filter: PathFilter,
        index: HashIndex,
        hash_engine: Optional[HashEngine] = None,
    ) -> None:
        self.path_filter = path_filter
        self.index = index
        self.hash_engine = hash_engine or HashEngine()

    def classify(self, raw: RawEvent) -> Classification:
        path = Path(raw.path)
        reason = self.path_filter.reason_rejected(path)
        if reason is not None:
            return Rejected(raw, reason)
        if path.is_dir():
            return Rejected(raw, "directory")

        rel_path = self.path_filter.relative(path)
        old_hash = self.index.lookup(rel_path)
        event = ClassifiedEvent(
            kind=_KIND_MAP[raw.kind],
            raw=raw,
            rel_path=rel_path,
            abs_path=str(path),
            old_hash=old_hash,
        )

        if raw.kind in (RawEventKind.DELETE, RawEventKind.MOVE_FROM):
            return event

        new_hash = self.hash_engine.compute_file_hash(path)
        if raw.kind == RawEventKind.MODIFY:
            if new_hash is None:
                return Rejected(raw, "unreadable or vanished")
            if new_hash == old_hash:
                return Rejected(raw, "content unchanged")
        elif new_hash is None:
            logger.warning("Could not hash %s; baseline entry not updated", rel_path)
        event.new_hash = new_hash
        return event
