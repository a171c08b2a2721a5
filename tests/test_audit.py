import subprocess

import pytest

from fimtrace.core.audit import (
    AuditCorrelator,
    AuditQueryError,
    AuditRuleManager,
    AusearchSource,
    parse_ausearch,
)
from fimtrace.core.errors import AuditSubsystemError

SAMPLE = """\
----
time->Fri Oct 16 12:00:01 2026
type=PROCTITLE msg=audit(1760616001.120:880): proctitle=76696D00612E747874
type=PATH msg=audit(1760616001.120:880): item=0 name="/srv/data/" inode=2 dev=08:01 mode=040755 nametype=PARENT
type=PATH msg=audit(1760616001.120:880): item=1 name="a.txt" inode=12 dev=08:01 mode=0100644 nametype=CREATE
type=CWD msg=audit(1760616001.120:880): cwd="/srv/data"
type=SYSCALL msg=audit(1760616001.120:880): arch=c000003e syscall=257 success=yes exit=3 ppid=900 pid=4242 auid=1000 uid=0 gid=0 euid=0 comm="vim" exe="/usr/bin/vim" key="filewatch"
----
time->Fri Oct 16 12:00:05 2026
type=PATH msg=audit(1760616005.500:881): item=0 name=6D79206E6F7465732E747874 inode=13 nametype=NORMAL
type=SYSCALL msg=audit(1760616005.500:881): arch=c000003e syscall=87 success=yes auid=4294967295 uid=33 comm=(null) key="filewatch"
----
type=SYSCALL msg=audit(garbage): pid=1
"""


class FakeSource:
    def __init__(self, output="", readable=True, error=None):
        self.output = output
        self._readable = readable
        self.error = error
        self.audit_log = "/var/log/audit/audit.log"
        self.calls = []

    def readable(self):
        return self._readable

    def search(self, key, start, end):
        self.calls.append((key, start, end))
        if self.error:
            raise self.error
        return self.output


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_parse_ausearch_structures_events():
    records = parse_ausearch(SAMPLE)
    assert len(records) == 2

    first, second = records
    assert first.timestamp == pytest.approx(1760616001.120)
    assert first.serial == 880
    assert first.uid == 0
    assert first.auid == 1000
    assert first.actor_uid == 1000
    assert first.pid == 4242
    assert first.comm == "vim"
    assert first.exe == "/usr/bin/vim"
    assert first.paths == ("/srv/data/", "a.txt")

    # hex-encoded name, unset auid, missing pid and (null) comm
    assert second.paths == ("my notes.txt",)
    assert second.auid is None
    assert second.actor_uid == 33
    assert second.pid is None
    assert second.comm is None


def test_parse_ausearch_empty_and_no_matches():
    assert parse_ausearch("") == []
    assert parse_ausearch("<no matches>\n") == []


def test_correlator_filters_basename_and_window_newest_first():
    source = FakeSource(SAMPLE)
    correlator = AuditCorrelator(source, key="filewatch")
    hits = correlator.query("/srv/data/a.txt", 1760616000.0, 1760616010.0)
    assert [r.serial for r in hits] == [880]
    assert source.calls == [("filewatch", 1760616000.0, 1760616010.0)]

    assert correlator.query("/srv/data/a.txt", 1760616002.0, 1760616010.0) == []
    assert correlator.query("/srv/data/other.txt", 1760616000.0, 1760616010.0) == []


def test_correlator_orders_newest_first():
    output = (
        "----\ntype=PATH msg=audit(100.0:1): name=\"a.txt\"\n"
        "type=SYSCALL msg=audit(100.0:1): uid=1 pid=10\n"
        "----\ntype=PATH msg=audit(105.0:2): name=\"a.txt\"\n"
        "type=SYSCALL msg=audit(105.0:2): uid=2 pid=20\n"
    )
    hits = AuditCorrelator(FakeSource(output)).query("a.txt", 95.0, 105.0)
    assert [r.pid for r in hits] == [20, 10]


def test_correlator_degrades_to_empty(caplog):
    assert AuditCorrelator(FakeSource(SAMPLE, readable=False)).query("a.txt", 0, 1) == []
    failing = FakeSource(error=AuditQueryError("ausearch timed out"))
    assert AuditCorrelator(failing).query("a.txt", 0, 1) == []
    assert "timed out" in caplog.text


def test_ausearch_source_command_and_results():
    seen = []

    def runner(cmd, **kwargs):
        seen.append((cmd, kwargs))
        return completed(stdout=SAMPLE)

    source = AusearchSource(timeout=1.5, runner=runner)
    assert source.search("filewatch", 1760616000.0, 1760616010.0) == SAMPLE
    cmd, kwargs = seen[0]
    assert cmd[0] == "ausearch"
    assert cmd[1] == "-ts" and cmd[4] == "-te"
    assert cmd[-2:] == ["-k", "filewatch"]
    assert kwargs["timeout"] == 1.5


def test_ausearch_source_no_matches_and_failures():
    no_match = AusearchSource(runner=lambda cmd, **kw: completed(1, stderr="<no matches>\n"))
    assert no_match.search("k", 0, 1) == ""

    broken = AusearchSource(runner=lambda cmd, **kw: completed(10, stderr="Error opening log"))
    with pytest.raises(AuditQueryError):
        broken.search("k", 0, 1)

    def slow(cmd, **kw):
        raise subprocess.TimeoutExpired(cmd, kw["timeout"])

    with pytest.raises(AuditQueryError):
        AusearchSource(runner=slow).search("k", 0, 1)

    def missing(cmd, **kw):
        raise FileNotFoundError("ausearch")

    with pytest.raises(AuditQueryError):
        AusearchSource(runner=missing).search("k", 0, 1)


def test_rule_manager_remove_then_add(tmp_path):
    seen = []

    def runner(cmd, **kwargs):
        seen.append(cmd)
        return completed()

    rules = AuditRuleManager(tmp_path, key="filewatch", runner=runner)
    rules.install()
    assert [c[1] for c in seen] == ["-W", "-w"]
    assert seen[1] == ["auditctl", "-w", str(tmp_path.resolve()), "-p", "wa", "-k", "filewatch"]

    rules.remove()
    rules.remove()
    assert [c[1] for c in seen] == ["-W", "-w", "-W"]


def test_rule_manager_add_failure_is_fatal(tmp_path):
    def runner(cmd, **kwargs):
        return completed(1 if cmd[1] == "-w" else 0, stderr="permission denied")

    with pytest.raises(AuditSubsystemError):
        AuditRuleManager(tmp_path, runner=runner).install()


def test_rule_manager_starts_auditd(tmp_path, monkeypatch):
    monkeypatch.setattr("fimtrace.core.audit.shutil.which", lambda name: "/sbin/" + name)
    seen = []

    def runner(cmd, **kwargs):
        seen.append(cmd)
        return completed(3 if cmd[1] == "is-active" else 0)

    AuditRuleManager(tmp_path, runner=runner).ensure_running()
    assert seen[-1] == ["systemctl", "start", "auditd"]

    def cannot_start(cmd, **kwargs):
        return completed(1, stderr="unit not found")

    with pytest.raises(AuditSubsystemError):
        AuditRuleManager(tmp_path, runner=cannot_start).ensure_running()


def test_rule_manager_requires_auditctl(tmp_path, monkeypatch):
    monkeypatch.setattr("fimtrace.core.audit.shutil.which", lambda name: None)
    with pytest.raises(AuditSubsystemError):
        AuditRuleManager(tmp_path, runner=lambda cmd, **kw: completed()).ensure_running()
