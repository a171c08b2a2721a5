import hashlib
from pathlib import Path

import pytest

from fimtrace.core.config_loader import load_config
from fimtrace.core.monitor import FileMonitor


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class FakeClock:
    def __init__(self, start: float = 1_760_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCorrelator:
    def __init__(self, records=None, error=None) -> None:
        self.records = list(records or [])
        self.error = error
        self.calls = []

    def query(self, path, window_start, window_end):
        self.calls.append((path, window_start, window_end))
        if self.error is not None:
            raise self.error
        return list(self.records)


class FakeInspector:
    def __init__(self, users=None, owner=("alice", "staff"), holders=None) -> None:
        self.users = list(users or [])
        self.owner = owner
        self.holders = list(holders or [])

    def file_owner(self, file_path):
        return self.owner

    def logged_in_users(self):
        return list(self.users)

    def open_handle_holders(self, file_path, limit=3):
        return list(self.holders)


class FakeNotifier:
    def __init__(self) -> None:
        self.changes = []
        self.messages = []

    def notify(self, title, message, icon="dialog-information"):
        self.messages.append((title, message))
        return True

    def notify_change(self, kind, rel_path, attribution):
        self.changes.append((kind, rel_path, attribution))
        return True


class FakeRules:
    def __init__(self) -> None:
        self.calls = []

    def ensure_running(self):
        self.calls.append("ensure_running")

    def install(self):
        self.calls.append("install")

    def remove(self):
        self.calls.append("remove")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> dict:
    cfg = load_config(None, tmp_path)
    cfg["console_alerts"] = False
    return cfg


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def monitor(config, clock, notifier) -> FileMonitor:
    return FileMonitor(
        config,
        rules=FakeRules(),
        correlator=FakeCorrelator(),
        inspector=FakeInspector(users=["alice"]),
        notifier=notifier,
        clock=clock,
    )
