import json

from keyvault.models import AuditEvent
from keyvault.services.audit import AuditLog, sanitize_metadata
from keyvault.wallet.secure import SecretBytes


def test_record_appends_json_line(tmp_path):
    path = tmp_path / "audit.jsonl"
    audit = AuditLog(path)
    event = audit.record("unlock", "w1", "success", metadata={"chain": "ethereum"})

    lines = path.read_text().splitlines()
    assert len(lines) == 1
    stored = json.loads(lines[0])
    assert stored["id"] == event.id
    assert stored["operation"] == "unlock"
    assert stored["metadata"] == {"chain": "ethereum"}
    assert not audit.degraded


def test_events_survive_reload(tmp_path):
    path = tmp_path / "audit.jsonl"
    first = AuditLog(path)
    first.record("create", "w1")
    first.record("unlock", "w1", "failure", reason="invalid_password_or_corrupted")

    reloaded = AuditLog(path)
    assert [e.operation for e in reloaded.events()] == ["create", "unlock"]
    assert reloaded.events()[1].reason == "invalid_password_or_corrupted"
    assert not reloaded.events()[1].succeeded


def test_malformed_lines_are_skipped(tmp_path):
    path = tmp_path / "audit.jsonl"
    AuditLog(path).record("create", "w1")
    with open(path, "a") as f:
        f.write("not json\n\n")
    assert len(AuditLog(path)) == 1


def test_elevated_severity_defaults():
    audit = AuditLog()
    assert audit.record("export", "w1").severity == "elevated"
    assert audit.record("delete", "w1").severity == "elevated"
    assert audit.record("sign", "w1").severity == "info"


def test_sanitize_metadata_drops_secrets():
    clean = sanitize_metadata({
        "password": "hunter2",
        "mnemonic": "abandon ...",
        "Passphrase": "x",
        "seed_hex": "00",
        "private_key": "11",
        "session_secret": "22",
        "raw": b"\x00\x01",
        "wrapped": SecretBytes(b"abc"),
        "chain": "ethereum",
        "account_index": 0,
        "chains": ["ethereum", b"\x00", 3],
        "nested": {"password": "x", "ok": True},
    })
    assert clean == {
        "chain": "ethereum",
        "account_index": 0,
        "chains": ["ethereum", 3],
        "nested": {"ok": True},
    }


def test_write_failure_enters_degraded_mode(tmp_path):
    audit = AuditLog(tmp_path / "missing" / "audit.jsonl")
    event = audit.record("sign", "w1")

    assert audit.degraded
    assert audit.events() == [event]


def test_query_filters(tmp_path):
    audit = AuditLog(tmp_path / "audit.jsonl")
    audit.record("unlock", "w1", "failure", reason="invalid_password_or_corrupted")
    audit.record("unlock", "w1", "success")
    audit.record("sign", "w1", "success")
    audit.record("unlock", "w2", "success")

    assert len(audit.query(wallet_id="w1")) == 3
    assert len(audit.query(operation="unlock")) == 3
    assert len(audit.query(wallet_id="w1", operation="unlock", outcome="success")) == 1
    assert [e.operation for e in audit.query(wallet_id="w1", limit=2)] == ["unlock", "sign"]
    assert audit.query(limit=0) == []


def test_export_and_purge(tmp_path):
    path = tmp_path / "audit.jsonl"
    audit = AuditLog(path)
    audit.record("create", "w1")
    audit.record("create", "w2")
    audit.record("sign", "w1")

    exported = audit.export("w1")
    assert [e["operation"] for e in exported] == ["create", "sign"]
    assert all(isinstance(e, dict) for e in exported)

    assert audit.purge("w1") == 2
    assert audit.purge("w1") == 0
    assert [e.wallet_id for e in AuditLog(path).events()] == ["w2"]


def test_event_dict_roundtrip():
    event = AuditEvent.create("lock", None, "success")
    data = event.to_dict()
    assert "wallet_id" not in data
    assert AuditEvent.from_dict(data) == event
