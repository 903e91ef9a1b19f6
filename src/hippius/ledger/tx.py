"""
Signed ledger calls.

Both write paths (storage_request, storage_unpin_request) are watched the same
way: block inclusion alone is not success. The call is only accepted once an
ExtrinsicSuccess event is seen in an in-block/finalized status; an
ExtrinsicFailed event (or a dispatch error on the status) fails it with the
decoded LedgerError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from hippius.crypto.sig import sign_call_envelope
from hippius.errors import HippiusError, LedgerUnavailable, OtherError, TransactionFailed, decode_dispatch_error
from hippius.ledger.client import TERMINAL_FAILURE_STAGES, LedgerClient, TxStatus
from hippius.metrics import inc_counter
from hippius.structured_logging import log_event
from hippius.util import ipfs_cid

Json = Dict[str, Any]

log = logging.getLogger("hippius.ledger.tx")

PALLET_MARKETPLACE = "marketplace"
CALL_STORAGE_REQUEST = "storage_request"
CALL_STORAGE_UNPIN_REQUEST = "storage_unpin_request"


@dataclass(frozen=True, slots=True)
class TxSigner:
    account: str
    seed: str


@dataclass(frozen=True, slots=True)
class TxOutcome:
    tx_hash: str
    block_hash: Optional[str]


def storage_request_args(files: Sequence[Tuple[str, str]], miner_ids: Optional[List[str]] = None) -> Json:
    """Build storage_request args from (cid, file_name) pairs.

    Ledger fields are raw bytes; they travel as 0x-hex.
    """
    return {
        "files_input": [
            {"file_hash": ipfs_cid.to_hex(cid), "file_name": ipfs_cid.to_hex(name)} for cid, name in files
        ],
        "miner_ids": list(miner_ids) if miner_ids else None,
    }


def storage_unpin_args(items: Sequence[Tuple[str, str]]) -> Json:
    """Build storage_unpin_request args from (cid, file_name) pairs."""
    return {"files": [{"cid": cid, "filename": name} for cid, name in items]}


def watch_until_result(statuses: Iterable[TxStatus]) -> TxOutcome:
    """Consume a status stream until the call is known to have succeeded or failed."""
    last_hash = ""
    for st in statuses:
        last_hash = st.tx_hash or last_hash

        if st.dispatch_error is not None:
            raise TransactionFailed(decode_dispatch_error(st.dispatch_error), {"tx_hash": last_hash})

        if st.stage in TERMINAL_FAILURE_STAGES:
            raise TransactionFailed(OtherError(f"transaction {st.stage}"), {"tx_hash": last_hash})

        if not st.included:
            continue

        success = False
        failure: Any = None
        failed = False
        for ev in st.events:
            if ev.is_success:
                success = True
            elif ev.is_failure:
                failed = True
                failure = ev.data.get("dispatch_error", ev.data)

        if failed:
            raise TransactionFailed(decode_dispatch_error(failure), {"tx_hash": last_hash})
        if success:
            return TxOutcome(tx_hash=last_hash, block_hash=st.block_hash)

    raise TransactionFailed(OtherError("status stream ended without extrinsic result"), {"tx_hash": last_hash})


class LedgerTx:
    """Builds, signs and submits marketplace calls for one signer."""

    def __init__(self, ledger: LedgerClient, signer: TxSigner) -> None:
        self._ledger = ledger
        self._signer = signer

    @property
    def account(self) -> str:
        return self._signer.account

    def _submit(self, call: str, args: Json) -> TxOutcome:
        if not self._ledger.is_connected():
            raise LedgerUnavailable("not_connected")

        try:
            nonce = int(self._ledger.next_nonce(self._signer.account))
        except Exception as e:
            raise LedgerUnavailable("nonce_query_failed", str(e)) from e

        envelope = sign_call_envelope(
            pallet=PALLET_MARKETPLACE,
            call=call,
            signer=self._signer.account,
            nonce=nonce,
            args=args,
            privkey=self._signer.seed,
        )

        inc_counter("tx_submitted_total", 1)
        log_event(log, "tx_submit", call=call, signer=self._signer.account, nonce=nonce)
        try:
            outcome = watch_until_result(self._ledger.submit_and_watch(envelope))
        except TransactionFailed as e:
            inc_counter("tx_failed_total", 1)
            log_event(log, "tx_failed", level=logging.WARNING, call=call, error=e.reason)
            raise
        except HippiusError:
            raise
        except Exception as e:
            inc_counter("tx_failed_total", 1)
            log_event(log, "tx_failed", level=logging.WARNING, call=call, error=str(e))
            raise TransactionFailed(OtherError(str(e))) from e
        log_event(log, "tx_succeeded", call=call, tx_hash=outcome.tx_hash, block_hash=outcome.block_hash)
        return outcome

    def storage_request(self, files: Sequence[Tuple[str, str]], miner_ids: Optional[List[str]] = None) -> TxOutcome:
        return self._submit(CALL_STORAGE_REQUEST, storage_request_args(files, miner_ids))

    def storage_unpin_request(self, items: Sequence[Tuple[str, str]]) -> TxOutcome:
        return self._submit(CALL_STORAGE_UNPIN_REQUEST, storage_unpin_args(items))
