from __future__ import annotations

import http.client
import json

import pytest

from hippius import metrics
from hippius.errors import GatewayError, ManifestFetchFailed
from hippius.models import EntrySource, StorageRequestRecord
from hippius.storage.gateway_memory import InMemoryGateway, fake_cid
from hippius.storage.manifest import ManifestFetcher, UnassignedEntryExpander, parse_manifest
from hippius.util import ipfs_cid


def _mk_record(cid: str, *, name: str = "batch.info.json", created_at: int = 50) -> StorageRequestRecord:
    return StorageRequestRecord(
        cid=cid,
        file_name=name,
        created_at=created_at,
        is_assigned=False,
        last_charged_at=created_at,
    )


def test_parse_manifest_reads_wire_keys() -> None:
    cid = fake_cid(b"one")
    raw = json.dumps(
        [
            {
                "file_hash": ipfs_cid.to_hex(cid),
                "file_name": "one.txt",
                "file_size_in_bytes": 1234,
                "is_assigned": True,
                "last_charged_at": 40,
                "main_req_hash": "0xabc",
                "selected_validator": "validator-7",
                "total_replicas": 3,
            }
        ]
    ).encode("utf-8")

    [entry] = parse_manifest(raw)
    assert entry.cid == cid
    assert entry.file_name == "one.txt"
    assert entry.size_bytes == 1234
    assert entry.is_assigned is True
    assert entry.created_at == 40
    assert entry.miner_ids == ("validator-7",)


def test_parse_manifest_accepts_camel_case_and_skips_bad_rows() -> None:
    good = fake_cid(b"good")
    raw = json.dumps(
        [
            {"cid": good, "fileName": "good.png", "fileSizeInBytes": 10, "createdAt": 9},
            {"file_hash": "0x" + b"nope".hex(), "file_name": "bad"},
            "not-a-row",
        ]
    ).encode("utf-8")

    entries = parse_manifest(raw)
    assert [e.cid for e in entries] == [good]
    assert entries[0].created_at == 9


@pytest.mark.parametrize("raw, reason", [(b"{not json", "malformed_json"), (b'{"a": 1}', "not_a_list")])
def test_parse_manifest_rejects_malformed(raw: bytes, reason: str) -> None:
    with pytest.raises(ManifestFetchFailed) as ei:
        parse_manifest(raw)
    assert ei.value.reason == reason


def test_fetch_manifest_wraps_gateway_errors() -> None:
    gw = InMemoryGateway()
    with pytest.raises(ManifestFetchFailed) as ei:
        ManifestFetcher(gw).fetch_manifest(fake_cid(b"missing"))
    assert ei.value.reason == "gateway_error"


def test_expander_yields_one_entry_per_info_item() -> None:
    gw = InMemoryGateway()
    a, b = fake_cid(b"a"), fake_cid(b"b")
    info_cid = gw.put_json([{"filename": "a.txt", "cid": a}, {"filename": "b.txt", "cid": b}])

    entries = UnassignedEntryExpander(gw).expand(_mk_record(info_cid, created_at=77))
    assert [(e.name, e.cid) for e in entries] == [("a.txt", a), ("b.txt", b)]
    assert all(e.created_at == 77 and e.is_assigned is False for e in entries)
    assert all(e.source == EntrySource.ON_CHAIN for e in entries)


def test_expander_empty_info_list_expands_to_nothing() -> None:
    gw = InMemoryGateway()
    info_cid = gw.put_json([])
    assert UnassignedEntryExpander(gw).expand(_mk_record(info_cid)) == []


def test_expander_falls_back_to_record_on_any_failure() -> None:
    metrics.reset()
    gw = InMemoryGateway()
    missing = fake_cid(b"missing")
    broken = gw.put_bytes(b"<html>not json</html>")
    timed_out = fake_cid(b"slow")
    gw.fail_get[timed_out] = GatewayError("get_failed", "timeout")

    exp = UnassignedEntryExpander(gw)
    for cid in (missing, broken, timed_out):
        [entry] = exp.expand(_mk_record(cid, name="raw-name.bin"))
        assert entry.cid == cid
        assert entry.name == "raw-name.bin"

    assert metrics.counter("info_expand_failed_total") == 3


def test_expand_all_never_drops_records() -> None:
    gw = InMemoryGateway()
    x = fake_cid(b"x")
    info_cid = gw.put_json([{"filename": "x.txt", "cid": x}])
    recs = [_mk_record(info_cid), _mk_record(fake_cid(b"unknown"))]

    out = UnassignedEntryExpander(gw).expand_all(recs)
    assert [e.cid for e in out] == [x, fake_cid(b"unknown")]


def test_fetch_manifest_wraps_truncated_body() -> None:
    gw = InMemoryGateway()
    cid = fake_cid(b"truncated")
    gw.fail_get[cid] = http.client.IncompleteRead(b"[{", 100)
    with pytest.raises(ManifestFetchFailed) as ei:
        ManifestFetcher(gw).fetch_manifest(cid)
    assert ei.value.reason == "io_error"


def test_expander_falls_back_on_unexpected_gateway_exception() -> None:
    gw = InMemoryGateway()
    cid = fake_cid(b"flaky")
    gw.fail_get[cid] = http.client.IncompleteRead(b"[", 10)

    [entry] = UnassignedEntryExpander(gw).expand(_mk_record(cid, name="raw-name.bin"))
    assert (entry.cid, entry.name) == (cid, "raw-name.bin")
