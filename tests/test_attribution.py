import os

from conftest import FakeClock, FakeCorrelator, FakeInspector

from fimtrace.core.attribution import AttributionResolver
from fimtrace.core.models import AttributionSource, AuditRecord, ChangeKind
from fimtrace.core.process_resolver import HandleHolder


def test_audit_record_wins(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("x", encoding="utf-8")
    clock = FakeClock(1000.0)
    correlator = FakeCorrelator([
        AuditRecord(timestamp=999.0, serial=7, uid=0, auid=None, pid=4242, comm="vim"),
    ])
    resolver = AttributionResolver(correlator, FakeInspector(users=["bob"]), clock=clock)

    record = resolver.resolve(str(f), ChangeKind.MODIFIED)
    assert record.source == AttributionSource.AUDIT_LOG
    assert record.actor_user == "root"
    assert record.actor_pid == 4242
    assert correlator.calls == [(str(f), 990.0, 1000.0)]
    assert record.summary() == "File Owner: alice:staff | Action by: root (process: vim) [PID: 4242]"


def test_records_without_identity_are_skipped(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("x", encoding="utf-8")
    correlator = FakeCorrelator([
        AuditRecord(timestamp=5.0, comm="cp"),
        AuditRecord(timestamp=4.0, uid=0, comm="tee"),
    ])
    record = AttributionResolver(correlator, FakeInspector()).resolve(str(f), ChangeKind.CREATED)
    assert record.actor_process == "tee"


def test_fallback_without_sessions(tmp_path):
    missing = tmp_path / "gone.txt"
    resolver = AttributionResolver(FakeCorrelator(), FakeInspector(users=[]))
    record = resolver.resolve(str(missing), ChangeKind.DELETED)
    assert record.source == AttributionSource.FALLBACK
    assert record.file_owner is None
    assert record.summary() == "Logged users: unknown"


def test_fallback_reports_sessions_and_handle_holder(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("x", encoding="utf-8")
    inspector = FakeInspector(
        users=["alice", "bob"], holders=[HandleHolder(pid=10, name="less", username="bob")],
    )
    record = AttributionResolver(None, inspector).resolve(str(f), ChangeKind.MODIFIED)
    assert record.summary() == (
        "File Owner: alice:staff | Logged users: alice,bob | Recent access by: bob"
    )


def test_correlator_failure_falls_back(tmp_path, caplog):
    f = tmp_path / "a.txt"
    f.write_text("x", encoding="utf-8")
    resolver = AttributionResolver(
        FakeCorrelator(error=RuntimeError("audit down")), FakeInspector(users=["alice"]),
    )
    record = resolver.resolve(str(f), ChangeKind.CREATED)
    assert record.source == AttributionSource.FALLBACK
    assert record.logged_users == ["alice"]
    assert "audit down" in caplog.text


def test_real_owner_lookup(tmp_path):
    from fimtrace.core.process_resolver import ProcessResolver, username_for_uid

    f = tmp_path / "a.txt"
    f.write_text("x", encoding="utf-8")
    owner = ProcessResolver().file_owner(str(f))
    assert owner is not None
    assert owner[0] == username_for_uid(os.getuid())
    assert ProcessResolver().file_owner(str(tmp_path / "missing")) is None
