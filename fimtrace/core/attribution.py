"""
fimtrace - Attribution resolver.

Answers "who changed this file" by combining the audit trail with coarse
fallbacks. The audit answer wins whenever a matching record carries a
uid; otherwise logged-in sessions and open file handles are reported.
Nothing in here raises: every failing step leaves its field empty.
"""

import logging
import os
import time
from typing import Callable, Optional

from fimtrace.core.audit import DEFAULT_LOOKBACK_SECONDS, AuditCorrelator
from fimtrace.core.models import AttributionRecord, AttributionSource, AuditRecord, ChangeKind
from fimtrace.core.process_resolver import ProcessResolver, username_for_uid

logger = logging.getLogger(__name__)


class AttributionResolver:
    """Builds an AttributionRecord for one classified change."""

    def __init__(
        self,
        correlator: Optional[AuditCorrelator],
        inspector: ProcessResolver,
        lookback_seconds: float = DEFAULT_LOOKBACK_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.correlator = correlator
        self.inspector = inspector
        self.lookback_seconds = lookback_seconds
        self._clock = clock

    def resolve(self, file_path: str, kind: ChangeKind) -> AttributionRecord:
        record = AttributionRecord()
        exists = os.path.isfile(file_path)

        if exists:
            try:
                record.file_owner = self.inspector.file_owner(file_path)
            except Exception as e:
                logger.warning("Owner lookup failed for %s: %s", file_path, e)

        audit_hit = self._from_audit(file_path)
        if audit_hit is not None:
            record.source = AttributionSource.AUDIT_LOG
            record.actor_user = username_for_uid(audit_hit.actor_uid)
            record.actor_process = audit_hit.comm
            record.actor_pid = audit_hit.pid
            logger.debug("%s %s attributed via audit log", kind.value, file_path)
            return record

        record.source = AttributionSource.FALLBACK
        try:
            record.logged_users = self.inspector.logged_in_users()
        except Exception as e:
            logger.warning("Session lookup failed: %s", e)
        if exists:
            try:
                holders = self.inspector.open_handle_holders(file_path)
                if holders:
                    record.handle_user = holders[0].username
            except Exception as e:
                logger.warning("Open-handle lookup failed for %s: %s", file_path, e)
        logger.debug("%s %s attributed via fallback", kind.value, file_path)
        return record

    def _from_audit(self, file_path: str) -> Optional[AuditRecord]:
        """Newest audit record in the lookback window that has an actor uid."""
        if self.correlator is None:
            return None
        now = self._clock()
        try:
            records = self.correlator.query(file_path, now - self.lookback_seconds, now)
        except Exception as e:
            logger.warning("Audit correlation failed for %s: %s", file_path, e)
            return None
        for rec in records:
            if rec.actor_uid is not None:
                return rec
        return None
