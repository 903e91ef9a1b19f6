from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from hippius.config import load_config
from hippius.crypto.sig import public_key_hex
from hippius.ledger.memory import InMemoryLedger
from hippius.services import HippiusServices, build_services
from hippius.storage.gateway_memory import InMemoryGateway, fake_cid
from hippius.util import ipfs_cid

SEED = "44" * 32
ACCOUNT = public_key_hex(SEED)


def _mk_services(monkeypatch: pytest.MonkeyPatch, *, credits: int = 50) -> HippiusServices:
    monkeypatch.setenv("HIPPIUS_MODE", "dev")
    monkeypatch.setenv("HIPPIUS_SIGNER_SEED", SEED)
    monkeypatch.delenv("HIPPIUS_ACCOUNT", raising=False)
    monkeypatch.setenv("HIPPIUS_REFRESH_AUTOSTART", "0")
    ledger = InMemoryLedger()
    ledger.set_credits(ACCOUNT, credits)
    return build_services(load_config(), ledger=ledger, gateway=InMemoryGateway())


def _mk_client(svc: HippiusServices) -> TestClient:
    from hippius.api.app import create_app

    return TestClient(create_app(svc))


def test_health_reports_signer_and_ledger(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    with _mk_client(svc) as client:
        r = client.get("/v1/health")
        assert r.status_code == 200
        body = r.json()
        assert body["ok"] is True
        assert body["signer"] == ACCOUNT
        assert body["ledger_connected"] is True
        assert body["mode"] == "dev"


def test_list_files_is_cached_until_refresh(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    ledger = svc.ledger
    assert isinstance(ledger, InMemoryLedger)
    a, b = fake_cid(b"a"), fake_cid(b"b")
    ledger.add_storage_request(ACCOUNT, cid=a, file_name="a.txt", created_at=1, is_assigned=True)

    with _mk_client(svc) as client:
        r = client.get(f"/v1/files/{ACCOUNT}")
        assert r.status_code == 200
        assert [f["cid"] for f in r.json()["files"]] == [a]

        ledger.add_storage_request(ACCOUNT, cid=b, file_name="b.txt", created_at=2, is_assigned=True)
        assert [f["cid"] for f in client.get(f"/v1/files/{ACCOUNT}").json()["files"]] == [a]

        r = client.post(f"/v1/files/{ACCOUNT}/refresh")
        assert [f["cid"] for f in r.json()["files"]] == [b, a]


def test_register_then_list_shows_pending_entries(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    cid = fake_cid(b"existing")
    with _mk_client(svc) as client:
        r = client.post(f"/v1/files/{ACCOUNT}/register", json=[{"name": "existing.bin", "cid": cid}])
        assert r.status_code == 200
        body = r.json()
        assert body["items"] == [{"name": "existing.bin", "cid": cid, "size": None}]

        listing = client.get(f"/v1/files/{ACCOUNT}").json()
        cids = [f["cid"] for f in listing["files"]]
        assert cid in cids
        # the unassigned request points at the info object, which expands to the file
        assert body["manifest_cid"] not in cids

        status = client.get("/v1/upload/status").json()
        assert status["state"] == "idle"
        assert status["progress"] == 100


def test_register_with_no_credits_is_402(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch, credits=0)
    with _mk_client(svc) as client:
        r = client.post(f"/v1/files/{ACCOUNT}/register", json=[{"name": "x", "cid": fake_cid(b"x")}])
        assert r.status_code == 402
        assert r.json()["error"]["code"] == "insufficient_credits"


def test_register_for_other_account_is_refused(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    with _mk_client(svc) as client:
        r = client.post("/v1/files/someone-else/register", json=[{"name": "x", "cid": fake_cid(b"x")}])
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "account_mismatch"


def test_register_invalid_cid_is_400(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    with _mk_client(svc) as client:
        r = client.post(f"/v1/files/{ACCOUNT}/register", json=[{"name": "x", "cid": "not-a-cid"}])
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "invalid_cid_encoding"


def test_transaction_failure_is_502(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    svc.ledger.script_outcome(("failed", {"token": "Frozen"}))  # type: ignore[attr-defined]
    with _mk_client(svc) as client:
        r = client.post(f"/v1/files/{ACCOUNT}/register", json=[{"name": "x", "cid": fake_cid(b"x")}])
        assert r.status_code == 502
        assert r.json()["error"]["message"] == "Token error: Frozen"


def test_import_csv_registers_valid_rows(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    csv_text = "name,cid\nok.txt," + fake_cid(b"ok") + "\nbad.txt,nope\n"
    with _mk_client(svc) as client:
        r = client.post(f"/v1/files/{ACCOUNT}/import-csv", json={"csv": csv_text})
        assert r.status_code == 200
        body = r.json()
        assert [it["name"] for it in body["items"]] == ["ok.txt"]
        assert body["invalid_lines"] == ["Line 3: bad.txt,nope"]

        r = client.post(f"/v1/files/{ACCOUNT}/import-csv", json={"csv": "name,cid\nbad,nope\n"})
        assert r.status_code == 400


def test_unpin_known_cid(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    a = fake_cid(b"a")
    svc.ledger.add_storage_request(ACCOUNT, cid=a, file_name="a.txt", created_at=1, is_assigned=True)  # type: ignore[attr-defined]

    with _mk_client(svc) as client:
        r = client.post(f"/v1/files/{ACCOUNT}/unpin", json=[{"cid": ipfs_cid.to_hex(a)}])
        assert r.status_code == 200
        assert r.json()["unpinned"] == [a]

        assert client.get(f"/v1/files/{ACCOUNT}").json()["files"] == []

        r = client.post(f"/v1/files/{ACCOUNT}/unpin", json=[{"cid": fake_cid(b"unknown")}])
        assert r.status_code == 404


def test_ledger_down_is_502(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    svc.ledger.set_connected(False)  # type: ignore[attr-defined]
    with _mk_client(svc) as client:
        r = client.get(f"/v1/files/{ACCOUNT}")
        assert r.status_code == 502
        assert r.json()["error"]["code"] == "ledger_unavailable"


def test_metrics_endpoints(monkeypatch: pytest.MonkeyPatch) -> None:
    svc = _mk_services(monkeypatch)
    with _mk_client(svc) as client:
        client.get(f"/v1/files/{ACCOUNT}")
        r = client.get("/metrics")
        assert r.status_code == 200
        assert "hippius_reconcile_total" in r.text
        assert "counters" in client.get("/v1/metrics").json()["metrics"]


def test_create_app_uses_monkeypatched_build_services(monkeypatch: pytest.MonkeyPatch) -> None:
    from hippius.api import app as api_app

    svc = _mk_services(monkeypatch)
    monkeypatch.setattr(api_app, "build_services", lambda: svc)

    app = api_app.create_app()
    assert app.state.services is svc
    with TestClient(app) as client:
        assert client.get("/v1/upload/status").json()["enabled"] is True


def test_prod_without_ledger_client_refuses_to_boot(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HIPPIUS_MODE", "prod")
    with pytest.raises(RuntimeError):
        build_services(load_config())


def test_wildcard_cors_rejected_in_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    from hippius.api.app import _parse_cors_origins

    monkeypatch.setenv("HIPPIUS_CORS_ORIGINS", "*")
    with pytest.raises(RuntimeError):
        _parse_cors_origins("prod")
    assert _parse_cors_origins("dev") == ["*"]
