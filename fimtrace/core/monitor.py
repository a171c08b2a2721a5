"""
fimtrace - Monitoring engine.

Pipeline (strictly one event at a time):

    watchdog → classifier → attribution → hash index → event log
             → notification gate → desktop notifier

EventLoop owns the per-event pipeline; FileMonitor wires the components
from config, performs startup (audit rule, baseline) and orderly shutdown.
"""

import logging
import os
import queue
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Optional

from fimtrace.core.alerts import EventLog, describe_path
from fimtrace.core.attribution import AttributionResolver
from fimtrace.core.audit import AuditCorrelator, AuditRuleManager, AusearchSource
from fimtrace.core.classifier import EventClassifier
from fimtrace.core.errors import PrivilegeError, TargetDirectoryError
from fimtrace.core.gate import NotificationGate
from fimtrace.core.hash_index import HashIndex
from fimtrace.core.models import ChangeKind, ClassifiedEvent, RawEvent, RawEventKind, Rejected
from fimtrace.core.notifier import DesktopNotifier
from fimtrace.core.process_resolver import ProcessResolver
from fimtrace.core.scanner import DirectoryScanner, PathFilter
from fimtrace.core.watchdog_handler import RawEventHandler, WatchSource

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    ChangeKind.CREATED: "CREATE",
    ChangeKind.MODIFIED: "MODIFY",
    ChangeKind.DELETED: "DELETE",
    ChangeKind.MOVED: "MOVE",
}


def check_privileges() -> None:
    """Audit rules and audit logs need root."""
    if os.geteuid() != 0:
        raise PrivilegeError("Please run as root to access audit logs (usage: sudo fimtrace [directory])")


def resolve_target(directory: Optional[str]) -> Path:
    """Monitored directory: the argument, or the working directory."""
    if directory is None:
        return Path.cwd().resolve()
    path = Path(directory)
    if not path.is_dir():
        raise TargetDirectoryError(f"Directory '{directory}' doesn't exist!")
    return path.resolve()


def _change_message(event: ClassifiedEvent) -> str:
    if event.kind == ChangeKind.CREATED:
        return "File created"
    if event.kind == ChangeKind.MODIFIED:
        return "File modified"
    if event.kind == ChangeKind.DELETED:
        return "File deleted"
    return "File moved from" if event.moved_away else "File moved to"


class EventLoop:
    """
    Single consumer of RawEvents.

    The hash index and the notification gate are only touched from here;
    process() finishes the index mutation and its log line before the
    next event is looked at.
    """

    def __init__(
        self,
        classifier: EventClassifier,
        resolver: AttributionResolver,
        index: HashIndex,
        gate: NotificationGate,
        event_log: EventLog,
        notifier: Optional[DesktopNotifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.classifier = classifier
        self.resolver = resolver
        self.index = index
        self.gate = gate
        self.event_log = event_log
        self.notifier = notifier
        self._clock = clock
        self.stats: Counter = Counter()

    def process(self, raw: RawEvent) -> Optional[ClassifiedEvent]:
        """Run one raw event through the pipeline; returns it when accepted."""
        verdict = self.classifier.classify(raw)
        if isinstance(verdict, Rejected):
            logger.debug("Ignored %s %s: %s", raw.kind.value, raw.path, verdict.reason)
            if verdict.reason == "content unchanged":
                self.stats["suppressed"] += 1
            return None

        event = verdict
        self.event_log.write("EVENT", "%s detected: %s" % (raw.kind.value, event.rel_path))

        attribution = self.resolver.resolve(event.abs_path, event.kind)
        summary = attribution.summary()
        self.stats[attribution.source.value] += 1

        self._apply_to_index(event)
        self.event_log.write(
            _LOG_LEVELS[event.kind],
            "%s: %s" % (_change_message(event), describe_path(event.rel_path, summary)),
        )
        self.stats[event.kind.value] += 1

        if self.gate.allows(event.rel_path, event.kind, self._clock()):
            if self.notifier is not None and self.notifier.notify_change(event.kind, event.rel_path, summary):
                self.stats["notifications"] += 1
        else:
            self.stats["throttled"] += 1
        return event

    def _apply_to_index(self, event: ClassifiedEvent) -> None:
        if event.raw.kind in (RawEventKind.DELETE, RawEventKind.MOVE_FROM):
            self.index.remove(event.rel_path)
        elif event.new_hash is not None:
            self.index.upsert(event.rel_path, event.new_hash)

    def run(
        self,
        events: "queue.Queue[RawEvent]",
        stop: threading.Event,
        poll_interval: float = 0.5,
    ) -> int:
        """
        Drain events until stop is set. Returns the number of queued events
        discarded at shutdown.
        """
        while not stop.is_set():
            try:
                raw = events.get(timeout=poll_interval)
            except queue.Empty:
                continue
            try:
                self.process(raw)
            except Exception as e:
                logger.exception("Failed to process %s %s: %s", raw.kind.value, raw.path, e)
        discarded = 0
        while True:
            try:
                events.get_nowait()
                discarded += 1
            except queue.Empty:
                break
        if discarded:
            logger.info("Discarded %d queued events at shutdown", discarded)
        return discarded


class FileMonitor:
    """
    Wires components from config and runs the monitor until stop is set.

    Collaborators can be injected (tests pass fakes for the audit rule
    manager, correlator, process inspector and notifier).
    """

    def __init__(
        self,
        config: dict[str, Any],
        stop_event: Optional[threading.Event] = None,
        rules: Optional[AuditRuleManager] = None,
        correlator: Optional[AuditCorrelator] = None,
        inspector: Optional[ProcessResolver] = None,
        notifier: Optional[DesktopNotifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.root = Path(config["watch_dir"])
        self._clock = clock

        self.index = HashIndex(config["baseline_path"])
        self.event_log = EventLog(config["log_path"], console=config.get("console_alerts", True), clock=clock)
        self.path_filter = PathFilter(
            self.root,
            include_patterns=config["file_patterns"],
            exclude_patterns=config["exclude_patterns"],
            artifacts=[config["baseline_path"], config["log_path"]],
        )
        self.rules = rules or AuditRuleManager(self.root, key=config["audit_rule_key"])
        self.correlator = correlator or AuditCorrelator(
            AusearchSource(config["audit_log_path"], timeout=config["audit_query_timeout"]),
            key=config["audit_rule_key"],
        )
        self.notifier = notifier or DesktopNotifier(config)
        self.loop = EventLoop(
            classifier=EventClassifier(self.path_filter, self.index),
            resolver=AttributionResolver(
                self.correlator,
                inspector or ProcessResolver(),
                lookback_seconds=config["audit_lookback_seconds"],
                clock=clock,
            ),
            index=self.index,
            gate=NotificationGate(config["throttle_seconds"], config["throttled_kinds"]),
            event_log=self.event_log,
            notifier=self.notifier,
            clock=clock,
        )
        self.events: "queue.Queue[RawEvent]" = queue.Queue(maxsize=config["queue_size"])
        self.watch = WatchSource(self.root, RawEventHandler(self.events, clock=clock))

    def init_baseline(self) -> int:
        """Create the baseline from a scan, or load and compact the existing one."""
        if not self.index.exists():
            logger.info("Creating initial hash baseline...")
            manifest = DirectoryScanner(self.path_filter).scan()
            self.index.replace_all(manifest)
            self.event_log.write("INIT", "Baseline created with %d files" % len(self.index))
        else:
            self.index.load()
            removed = self.index.compact()
            if removed:
                logger.info("Compacted baseline: %d duplicate line(s) removed", removed)
            self.event_log.write("INIT", "Using existing baseline with %d files" % len(self.index))
        return len(self.index)

    def start(self) -> None:
        """Startup sequence; AuditSubsystemError propagates as fatal."""
        self.event_log.ensure_created(self.root)
        self.rules.ensure_running()
        self.rules.install()
        self.event_log.write("INFO", "Audit rule refreshed for: %s" % self.root)
        self.init_baseline()
        self.notifier.notify("File Monitor", "Monitoring system initialized")
        self.watch.start()
        self.event_log.write("MONITOR", "File monitoring started")

    def shutdown(self) -> None:
        """Stop intake, drop the audit rule, persist the index."""
        self.watch.stop()
        self.rules.remove()
        if not self.index.flush():
            logger.warning("Baseline could not be written at shutdown: %s", self.index.baseline_path)
        stats = self.loop.stats
        self.event_log.write(
            "MONITOR",
            "File monitoring stopped (created=%d modified=%d deleted=%d moved=%d suppressed=%d notifications=%d)"
            % (
                stats[ChangeKind.CREATED.value],
                stats[ChangeKind.MODIFIED.value],
                stats[ChangeKind.DELETED.value],
                stats[ChangeKind.MOVED.value],
                stats["suppressed"],
                stats["notifications"],
            ),
        )

    def run(self) -> None:
        logger.info("Starting fimtrace monitor on %s", self.root)
        try:
            self.start()
            self.loop.run(self.events, self.stop_event)
        finally:
            self.shutdown()
        logger.info("fimtrace monitor stopped.")
