import json

from fastapi.testclient import TestClient

import ebk.gates
from ebk import db
from ebk.db import StorageError
from ebk.signing import sign_body
from ebk.util import md5_hex, now_epoch
from ebk.main import _shutdown, app

client = TestClient(app)

BIRTH = {"cert_id": "C1", "cert_ts": 1000, "kit_sid": "K1", "p1": "P1", "p2": "P2",
         "gen": 3, "tier": 2, "dna_hash": "H1", "owner": "OwnerA"}


def post(op, body, secret, ts=None):
    return client.post(f"/ebk/{op}", json=sign_body(op, body, secret, ts=ts))


def test_health_is_unauthenticated():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


# Birth is accepted and recorded
def test_birth_accepted(secret):
    r = post("birth", BIRTH, secret)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "inserted": True}
    rec = db.get_certificate("C1")
    assert rec["kit_sid"] == "K1"
    assert rec["p1_sid"] == "P1" and rec["p2_sid"] == "P2"
    assert rec["gen"] == 3 and rec["tier"] == 2 and rec["cert_ts"] == 1000
    assert rec["owner_uuid"] == "OwnerA"


# Retrying a birth is safe: both succeed, one row
def test_birth_idempotent(secret):
    r1 = post("birth", BIRTH, secret)
    r2 = post("birth", BIRTH, secret)
    assert r1.json()["ok"] and r2.json()["ok"]
    assert r2.json()["inserted"] is False
    assert db.get_db_stats()["births_count"] == 1


# Every accepted write is audited, including idempotent no-ops
def test_birth_audited_even_when_noop(secret):
    post("birth", BIRTH, secret)
    post("birth", BIRTH, secret)
    entries = db.export_audit_log()
    assert [e["event"] for e in entries] == ["birth", "birth"]
    payload = entries[0]["payload"]
    assert payload["cert_id"] == "C1"
    assert payload["sig"] and payload["ts"]


def test_stale_ts_rejected_before_storage(secret):
    r = post("birth", BIRTH, secret, ts=now_epoch() - 400)
    assert r.status_code == 400
    assert r.json() == {"ok": False, "reason": "stale ts"}
    assert db.get_db_stats() == {"births_count": 0, "transfers_count": 0, "audit_count": 0}


def test_future_ts_rejected(secret):
    r = post("birth", BIRTH, secret, ts=now_epoch() + 400)
    assert r.json() == {"ok": False, "reason": "stale ts"}


def test_missing_ts_is_stale(secret):
    r = client.post("/ebk/birth", json=dict(BIRTH, sig="x"))
    assert r.status_code == 400
    assert r.json()["reason"] == "stale ts"


def test_bad_sig_rejected(secret):
    signed = sign_body("birth", BIRTH, secret)
    signed["owner"] = "Mallory"
    r = client.post("/ebk/birth", json=signed)
    assert r.status_code == 400
    assert r.json() == {"ok": False, "reason": "bad sig"}
    assert db.get_certificate("C1") is None


def test_wrong_secret_rejected():
    r = post("birth", BIRTH, "not-the-secret")
    assert r.json()["reason"] == "bad sig"


# kit_sid is stored but not part of the signed material
def test_kit_sid_not_signed(secret):
    signed = sign_body("birth", BIRTH, secret)
    signed["kit_sid"] = "K9"
    r = client.post("/ebk/birth", json=signed)
    assert r.json()["ok"] is True
    assert db.get_certificate("C1")["kit_sid"] == "K9"


def test_scenario_fresh_then_stale(secret, monkeypatch):
    t = 1_700_000_000
    body = sign_body("birth", BIRTH, secret, ts=t)
    assert body["sig"] == md5_hex(f"{t}|C1|1000|P1|P2|3|2|H1|OwnerA|s3cret")

    monkeypatch.setattr(ebk.gates, "now_epoch", lambda: t + 10)
    assert client.post("/ebk/birth", json=body).json()["ok"] is True

    monkeypatch.setattr(ebk.gates, "now_epoch", lambda: t + 400)
    r = client.post("/ebk/birth", json=body)
    assert r.json() == {"ok": False, "reason": "stale ts"}


def test_transfer_accepted_and_not_deduplicated(secret):
    body = {"sid": "K1", "from_owner": "OwnerA", "to_owner": "OwnerB"}
    ts = now_epoch()
    r1 = post("transfer", body, secret, ts=ts)
    r2 = post("transfer", body, secret, ts=ts)
    assert r1.json() == {"ok": True}
    assert r2.json() == {"ok": True}
    rows = db.list_transfers("K1")
    assert len(rows) == 2
    assert all(row["ts"] == ts for row in rows)
    assert [e["event"] for e in db.export_audit_log()] == ["transfer", "transfer"]


def test_transfer_bad_sig(secret):
    signed = sign_body("transfer", {"sid": "K1", "from_owner": "A", "to_owner": "B"}, secret)
    signed["to_owner"] = "C"
    r = client.post("/ebk/transfer", json=signed)
    assert r.json() == {"ok": False, "reason": "bad sig"}
    assert db.list_transfers("K1") == []


def test_verify_matching_hash(secret):
    post("birth", dict(BIRTH, dna_hash="abc"), secret)
    r = post("verify", {"cert_id": "C1", "dna_hash": "abc"}, secret)
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["record"]["cert_id"] == "C1"
    assert data["record"]["dna_hash"] == "abc"


def test_verify_mismatch(secret):
    post("birth", dict(BIRTH, dna_hash="abc"), secret)
    r = post("verify", {"cert_id": "C1", "dna_hash": "xyz"}, secret)
    assert r.status_code == 200
    assert r.json() == {"ok": False, "reason": "dna mismatch"}


def test_verify_without_asserted_hash(secret):
    post("birth", BIRTH, secret)
    r = post("verify", {"cert_id": "C1"}, secret)
    assert r.json()["ok"] is True


def test_verify_not_found(secret):
    r = post("verify", {"cert_id": "missing", "dna_hash": "abc"}, secret)
    assert r.status_code == 200
    assert r.json() == {"ok": False, "reason": "not found"}


def test_verify_requires_signature(secret):
    post("birth", BIRTH, secret)
    r = client.post("/ebk/verify", json={"cert_id": "C1", "ts": now_epoch(), "sig": "0" * 32})
    assert r.json() == {"ok": False, "reason": "bad sig"}


def test_verify_is_not_audited(secret):
    post("birth", BIRTH, secret)
    post("verify", {"cert_id": "C1"}, secret)
    assert len(db.export_audit_log()) == 1


def test_storage_error_is_generic(secret, monkeypatch):
    def broken(**kwargs):
        raise StorageError("disk I/O error at /secret/path")
    monkeypatch.setattr(db, "record_birth", broken)
    r = post("birth", BIRTH, secret)
    assert r.status_code == 400
    assert r.json() == {"ok": False, "reason": "db error"}
    assert "secret/path" not in r.text


def test_verify_storage_error(secret, monkeypatch):
    def broken(cert_id):
        raise StorageError("locked")
    monkeypatch.setattr(db, "get_certificate", broken)
    r = post("verify", {"cert_id": "C1"}, secret)
    assert r.json() == {"ok": False, "reason": "db error"}


def test_audit_failure_does_not_fail_write(secret, monkeypatch):
    import ebk.audit

    def broken(*args):
        raise StorageError("audit table gone")
    monkeypatch.setattr(ebk.audit, "append_audit", broken)
    r = post("birth", BIRTH, secret)
    assert r.json() == {"ok": True, "inserted": True}
    assert db.get_certificate("C1") is not None
    assert db.export_audit_log() == []


def test_malformed_body(secret):
    r = client.post("/ebk/birth", json={"ts": now_epoch(), "sig": "x"})
    assert r.status_code == 400
    assert r.json() == {"ok": False, "reason": "bad request"}


def test_non_numeric_generation(secret):
    r = client.post("/ebk/birth", json=dict(BIRTH, gen="three", ts=now_epoch(), sig="x"))
    assert r.json() == {"ok": False, "reason": "bad request"}


def test_oversized_body_rejected():
    r = client.post("/ebk/birth", content=b"{" + b" " * (300 * 1024) + b"}",
                    headers={"content-type": "application/json"})
    assert r.status_code == 413
    assert r.json()["ok"] is False


# No Content-Length: the limit is enforced while the body streams in
def test_chunked_oversized_body_rejected():
    chunks = (b" " * 1024 for _ in range(400))
    r = client.post("/ebk/birth", content=chunks, headers={"content-type": "application/json"})
    assert r.status_code == 413
    assert r.json() == {"ok": False, "reason": "payload too large"}
    assert r.headers["X-Request-ID"]
    assert db.get_db_stats()["births_count"] == 0


def test_chunked_body_under_limit_accepted(secret):
    body = json.dumps(sign_body("birth", BIRTH, secret)).encode()
    chunks = (body[i:i + 16] for i in range(0, len(body), 16))
    r = client.post("/ebk/birth", content=chunks, headers={"content-type": "application/json"})
    assert r.json() == {"ok": True, "inserted": True}


# Integers SQLite cannot store are a schema failure, not a server error
def test_integer_beyond_64_bits_is_bad_request(secret):
    for field in ("cert_ts", "gen", "tier"):
        r = post("birth", dict(BIRTH, **{field: 2**63}), secret)
        assert r.status_code == 400
        assert r.json() == {"ok": False, "reason": "bad request"}
    assert db.get_db_stats()["births_count"] == 0


def test_largest_64_bit_integer_accepted(secret):
    r = post("birth", dict(BIRTH, gen=2**63 - 1, cert_ts=-2**63), secret)
    assert r.json() == {"ok": True, "inserted": True}
    rec = db.get_certificate("C1")
    assert rec["gen"] == 2**63 - 1 and rec["cert_ts"] == -2**63


def test_request_id_echoed(secret):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    r = client.get("/health")
    assert r.headers["X-Request-ID"]


def test_extra_fields_kept_in_audit(secret):
    post("birth", dict(BIRTH, client_version="2.1"), secret)
    assert db.export_audit_log()[0]["payload"]["client_version"] == "2.1"


def test_shutdown_closes_connection_and_store_reopens(secret):
    post("birth", BIRTH, secret)
    _shutdown()
    assert db._local.conn is None
    assert post("verify", {"cert_id": "C1"}, secret).json()["ok"] is True
