import subprocess

import pytest

from fimtrace.core.models import ChangeKind
from fimtrace.core.notifier import DesktopNotifier

CONFIG = {
    "desktop_notifications": True,
    "notification_timeout": 2.0,
    "notification_expire_ms": 5000,
    "notification_display": ":0",
}


@pytest.fixture
def notify_send(monkeypatch):
    monkeypatch.setattr("fimtrace.core.notifier.shutil.which", lambda name: "/usr/bin/notify-send")


def test_root_wraps_command_for_desktop_user(notify_send, monkeypatch):
    monkeypatch.setattr("fimtrace.core.notifier.os.geteuid", lambda: 0)
    seen = []

    def runner(cmd, **kwargs):
        seen.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, 0, "", "")

    notifier = DesktopNotifier(CONFIG, runner=runner, user="root")
    assert notifier.is_configured
    assert notifier.notify_change(ChangeKind.DELETED, "a.txt", "Logged users: root")
    assert notifier.sent == 1

    cmd, kwargs = seen[0]
    assert cmd[:5] == ["sudo", "-u", "root", "DISPLAY=:0", "DBUS_SESSION_BUS_ADDRESS=unix:path=/run/user/0/bus"]
    assert "--icon=dialog-warning" in cmd
    assert cmd[-2:] == ["File Deleted", "File: a.txt\nLogged users: root"]
    assert kwargs["timeout"] == 2.0


def test_non_root_sends_directly(notify_send, monkeypatch):
    monkeypatch.setattr("fimtrace.core.notifier.os.geteuid", lambda: 1000)
    seen = []

    def runner(cmd, **kwargs):
        seen.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    DesktopNotifier(CONFIG, runner=runner, user="root").notify("File Monitor", "hello")
    assert seen[0][0] == "/usr/bin/notify-send"


def test_failures_are_reported_not_raised(notify_send, caplog):
    def timeout(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    assert not DesktopNotifier(CONFIG, runner=timeout, user="root").notify("t", "m")
    assert "timed out" in caplog.text

    def failing(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, "", "no session bus")

    notifier = DesktopNotifier(CONFIG, runner=failing, user="root")
    assert not notifier.notify("t", "m")
    assert notifier.sent == 0


def test_unconfigured_warns_once(monkeypatch, caplog):
    monkeypatch.setattr("fimtrace.core.notifier.shutil.which", lambda name: None)
    calls = []
    notifier = DesktopNotifier(CONFIG, runner=lambda cmd, **kw: calls.append(cmd), user="root")
    assert not notifier.is_configured
    assert not notifier.notify("t", "m")
    assert not notifier.notify("t", "m")
    assert calls == []
    assert caplog.text.count("Desktop notifications unavailable") == 1


def test_disabled_in_config(notify_send):
    notifier = DesktopNotifier(dict(CONFIG, desktop_notifications=False), user="root")
    assert not notifier.is_configured
