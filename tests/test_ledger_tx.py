from __future__ import annotations

import pytest

from hippius.crypto.sig import verify_call_envelope
from hippius.errors import (
    LedgerUnavailable,
    ModuleError,
    OtherError,
    TokenError,
    TransactionFailed,
    decode_dispatch_error,
)
from hippius.ledger.client import STAGE_DROPPED, STAGE_FINALIZED, STAGE_IN_BLOCK, STAGE_READY, TxEvent, TxStatus
from hippius.ledger.memory import InMemoryLedger
from hippius.ledger.tx import LedgerTx, TxSigner, storage_request_args, watch_until_result
from hippius.storage.gateway_memory import fake_cid
from hippius.util import ipfs_cid

ACCOUNT = "5Alice"
SEED = "22" * 32

_OK = TxEvent(section="system", method="ExtrinsicSuccess")


def _mk_tx(ledger: InMemoryLedger) -> LedgerTx:
    return LedgerTx(ledger, TxSigner(account=ACCOUNT, seed=SEED))


def test_inclusion_without_result_event_keeps_waiting() -> None:
    statuses = [
        TxStatus(stage=STAGE_READY, tx_hash="0x01"),
        TxStatus(stage=STAGE_IN_BLOCK, tx_hash="0x01", block_hash="0xb1"),
        TxStatus(stage=STAGE_FINALIZED, tx_hash="0x01", block_hash="0xb1", events=(_OK,)),
    ]
    out = watch_until_result(statuses)
    assert out.tx_hash == "0x01"
    assert out.block_hash == "0xb1"


def test_stream_ending_without_result_fails() -> None:
    with pytest.raises(TransactionFailed) as ei:
        watch_until_result([TxStatus(stage=STAGE_IN_BLOCK, tx_hash="0x02")])
    assert isinstance(ei.value.error, OtherError)


def test_dropped_transaction_fails() -> None:
    with pytest.raises(TransactionFailed) as ei:
        watch_until_result([TxStatus(stage=STAGE_READY), TxStatus(stage=STAGE_DROPPED)])
    assert ei.value.reason == "transaction dropped"


def test_failure_event_beats_success_event() -> None:
    bad = TxEvent(section="system", method="ExtrinsicFailed", data={"dispatch_error": {"token": "Frozen"}})
    with pytest.raises(TransactionFailed) as ei:
        watch_until_result([TxStatus(stage=STAGE_IN_BLOCK, events=(_OK, bad))])
    assert ei.value.error == TokenError("Frozen")


def test_non_system_events_are_ignored() -> None:
    other = TxEvent(section="marketplace", method="ExtrinsicSuccess")
    with pytest.raises(TransactionFailed):
        watch_until_result([TxStatus(stage=STAGE_IN_BLOCK, events=(other,))])


def test_decode_dispatch_error_variants() -> None:
    mod = decode_dispatch_error({"module": {"section": "credits", "name": "NoCredits", "docs": ["Out", "of credits"]}})
    assert mod == ModuleError("credits", "NoCredits", "Out of credits")
    assert mod.message() == "credits.NoCredits: Out of credits"
    assert decode_dispatch_error({"module": {"section": "s", "name": "n"}}).message() == "s.n"
    assert decode_dispatch_error({"token": "BelowMinimum"}).message() == "Token error: BelowMinimum"
    assert decode_dispatch_error({"message": "bad origin"}) == OtherError("bad origin")
    assert decode_dispatch_error("BadOrigin") == OtherError("BadOrigin")
    assert decode_dispatch_error(None).message() == "Transaction failed"


def test_storage_request_args_hex_encode_fields() -> None:
    cid = fake_cid(b"x")
    args = storage_request_args([(cid, "x.json")])
    [row] = args["files_input"]
    assert row["file_hash"] == ipfs_cid.to_hex(cid)
    assert row["file_name"] == ipfs_cid.to_hex("x.json")
    assert args["miner_ids"] is None


def test_submit_signs_envelope_and_applies_on_success() -> None:
    ledger = InMemoryLedger()
    cid = fake_cid(b"info")
    out = _mk_tx(ledger).storage_request([(cid, "batch.info.json")])

    [env] = ledger.submitted
    assert env["signer"] == ACCOUNT
    assert env["nonce"] == 0
    assert verify_call_envelope(env)
    assert out.block_hash is not None

    [row] = ledger.storage_requests(ACCOUNT)
    assert ipfs_cid.decode(row["file_hash"]) == cid
    assert row["is_assigned"] is False


def test_nonce_advances_per_included_call() -> None:
    ledger = InMemoryLedger()
    tx = _mk_tx(ledger)
    tx.storage_request([(fake_cid(b"1"), "1")])
    tx.storage_request([(fake_cid(b"2"), "2")])
    assert [e["nonce"] for e in ledger.submitted] == [0, 1]


def test_submit_requires_connection() -> None:
    ledger = InMemoryLedger()
    ledger.set_connected(False)
    with pytest.raises(LedgerUnavailable):
        _mk_tx(ledger).storage_request([(fake_cid(b"1"), "1")])
    assert ledger.submitted == []


def test_client_exceptions_become_transaction_failed() -> None:
    ledger = InMemoryLedger()
    ledger.script_outcome(ConnectionError("socket closed"))
    with pytest.raises(TransactionFailed) as ei:
        _mk_tx(ledger).storage_request([(fake_cid(b"1"), "1")])
    assert ei.value.reason == "socket closed"
