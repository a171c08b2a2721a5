"""
fimtrace - File integrity monitoring core.

Provides the hash baseline, audit correlation, attribution, event
classification, alert throttling and the sequential event loop.
"""

from fimtrace.core.attribution import AttributionResolver
from fimtrace.core.audit import AuditCorrelator, AuditRuleManager, AusearchSource
from fimtrace.core.classifier import EventClassifier
from fimtrace.core.gate import NotificationGate
from fimtrace.core.hash_index import HashIndex
from fimtrace.core.hashing import HashEngine
from fimtrace.core.monitor import EventLoop, FileMonitor

__all__ = [
    "AttributionResolver",
    "AuditCorrelator",
    "AuditRuleManager",
    "AusearchSource",
    "EventClassifier",
    "EventLoop",
    "FileMonitor",
    "HashEngine",
    "HashIndex",
    "NotificationGate",
]
