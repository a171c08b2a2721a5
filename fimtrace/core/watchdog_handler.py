"""
fimtrace - Watchdog event source.

Translates watchdog notifications for files under the monitored root
into RawEvents on a bounded queue. The observer thread is the only
producer; the event loop is the only consumer.
"""

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from fimtrace.core.models import RawEvent, RawEventKind

logger = logging.getLogger(__name__)


def _as_str(path) -> str:
    return path.decode("utf-8", errors="replace") if isinstance(path, bytes) else str(path)


class RawEventHandler(FileSystemEventHandler):
    """
    Pushes file (not directory) events as RawEvents.

    When the queue is full the event is dropped; one warning is logged per
    overflow episode (until the queue drains below capacity again).
    """

    def __init__(
        self,
        events: "queue.Queue[RawEvent]",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self._events = events
        self._clock = clock
        self._lock = threading.Lock()
        self._overflowing = False
        self.dropped = 0

    def _push(self, kind: RawEventKind, path) -> None:
        raw = RawEvent(timestamp=self._clock(), kind=kind, path=_as_str(path))
        try:
            self._events.put_nowait(raw)
        except queue.Full:
            with self._lock:
                self.dropped += 1
                if not self._overflowing:
                    self._overflowing = True
                    logger.warning(
                        "Event queue full (%d); dropping filesystem events until the monitor catches up",
                        self._events.maxsize,
                    )
            return
        if self._overflowing:
            with self._lock:
                self._overflowing = False

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(RawEventKind.CREATE, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(RawEventKind.MODIFY, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(RawEventKind.DELETE, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._push(RawEventKind.MOVE_FROM, event.src_path)
        self._push(RawEventKind.MOVE_TO, event.dest_path)


class WatchSource:
    """Owns the watchdog Observer for one root directory."""

    def __init__(self, root: Path, handler: RawEventHandler) -> None:
        self.root = Path(root).resolve()
        self.handler = handler
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        observer = Observer()
        observer.schedule(self.handler, str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watchdog observing %s (recursive=True)", self.root)

    def stop(self) -> None:
        """Stop producing events; safe to call twice."""
        if self._observer is None:
            return
        try:
            self._observer.stop()
            self._observer.join(timeout=5.0)
        except RuntimeError as e:
            logger.warning("Watchdog observer did not stop cleanly: %s", e)
        self._observer = None
