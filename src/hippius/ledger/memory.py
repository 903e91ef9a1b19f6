from __future__ import annotations

import hashlib
import threading
from typing import Any, Dict, Iterator, List, Optional

from hippius.crypto.sig import verify_call_envelope
from hippius.errors import InvalidCidEncoding
from hippius.ledger.client import (
    EXTRINSIC_FAILED,
    EXTRINSIC_SUCCESS,
    STAGE_IN_BLOCK,
    STAGE_INVALID,
    STAGE_READY,
    Json,
    RawBytes,
    TxEvent,
    TxStatus,
)
from hippius.util import ipfs_cid


class InMemoryLedger:
    """
    Minimal in-process ledger used for unit tests and dev mode.

    - No network, no SCALE codec
    - Storage maps are plain dicts keyed by account
    - submit_and_watch() verifies the envelope signature, then replays a
      scripted outcome (default: success) and applies successful calls to
      its own storage so later queries observe them
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connected = True
        self._block = 1
        self._requests: Dict[str, List[Json]] = {}
        self._total_size: Dict[str, int] = {}
        self._profiles: Dict[str, RawBytes] = {}
        self._credits: Dict[str, Optional[int]] = {}
        self._nonces: Dict[str, int] = {}
        self._outcomes: List[Any] = []
        self.submitted: List[Json] = []
        self.query_errors: Dict[str, Exception] = {}

    # ---- LedgerClient surface ----

    def is_connected(self) -> bool:
        return self._connected

    def _maybe_raise(self, name: str) -> None:
        err = self.query_errors.get(name)
        if err is not None:
            raise err

    def storage_requests(self, account_id: str) -> List[Json]:
        self._maybe_raise("storage_requests")
        with self._lock:
            return [dict(r) for r in self._requests.get(account_id, [])]

    def user_total_files_size(self, account_id: str) -> Optional[int]:
        self._maybe_raise("user_total_files_size")
        with self._lock:
            return self._total_size.get(account_id)

    def user_profile(self, account_id: str) -> Optional[RawBytes]:
        self._maybe_raise("user_profile")
        with self._lock:
            return self._profiles.get(account_id)

    def free_credits(self, account_id: str) -> Optional[int]:
        self._maybe_raise("free_credits")
        with self._lock:
            return self._credits.get(account_id)

    def next_nonce(self, account_id: str) -> int:
        with self._lock:
            return int(self._nonces.get(account_id, 0))

    def submit_and_watch(self, envelope: Json) -> Iterator[TxStatus]:
        tx_hash = "0x" + hashlib.sha256(repr(sorted(envelope.items())).encode("utf-8")).hexdigest()
        with self._lock:
            self.submitted.append(dict(envelope))
            outcome = self._outcomes.pop(0) if self._outcomes else "success"

        yield TxStatus(stage=STAGE_READY, tx_hash=tx_hash)

        if not verify_call_envelope(envelope):
            yield TxStatus(stage=STAGE_INVALID, tx_hash=tx_hash)
            return

        if isinstance(outcome, Exception):
            raise outcome

        with self._lock:
            self._block += 1
            block_hash = f"0xblock{self._block:08x}"
            signer = str(envelope.get("signer") or "")
            self._nonces[signer] = int(self._nonces.get(signer, 0)) + 1

        if isinstance(outcome, tuple) and outcome and outcome[0] == "failed":
            ev = TxEvent(section="system", method=EXTRINSIC_FAILED, data={"dispatch_error": outcome[1]})
            yield TxStatus(stage=STAGE_IN_BLOCK, tx_hash=tx_hash, block_hash=block_hash, events=(ev,))
            return

        if isinstance(outcome, tuple) and outcome and outcome[0] == "dispatch":
            yield TxStatus(stage=STAGE_IN_BLOCK, tx_hash=tx_hash, block_hash=block_hash, dispatch_error=outcome[1])
            return

        self._apply(envelope)
        ev = TxEvent(section="system", method=EXTRINSIC_SUCCESS)
        yield TxStatus(stage=STAGE_IN_BLOCK, tx_hash=tx_hash, block_hash=block_hash, events=(ev,))

    def _apply(self, envelope: Json) -> None:
        call = str(envelope.get("call") or "")
        signer = str(envelope.get("signer") or "")
        args = envelope.get("args") if isinstance(envelope.get("args"), dict) else {}

        with self._lock:
            if call == "storage_request":
                rows = self._requests.setdefault(signer, [])
                for f in args.get("files_input") or []:
                    rows.append(
                        {
                            "file_hash": f.get("file_hash"),
                            "file_name": f.get("file_name"),
                            "owner": signer,
                            "is_assigned": False,
                            "created_at": self._block,
                            "last_charged_at": self._block,
                            "miner_ids": None,
                        }
                    )
            elif call == "storage_unpin_request":
                drop = {str(f.get("cid") or "") for f in args.get("files") or []}
                rows = self._requests.get(signer, [])
                self._requests[signer] = [r for r in rows if _row_cid(r) not in drop]

    # ---- helpers for tests / harness ----

    def set_connected(self, connected: bool) -> None:
        self._connected = bool(connected)

    def add_storage_request(
        self,
        account_id: str,
        *,
        cid: str,
        file_name: str,
        created_at: int,
        is_assigned: bool = False,
        last_charged_at: Optional[int] = None,
        miner_ids: Optional[List[str]] = None,
        raw_hash: Optional[RawBytes] = None,
    ) -> None:
        row: Json = {
            "file_hash": raw_hash if raw_hash is not None else ipfs_cid.encode(cid).hex(),
            "file_name": ipfs_cid.encode(file_name),
            "owner": account_id,
            "is_assigned": bool(is_assigned),
            "created_at": int(created_at),
            "last_charged_at": int(last_charged_at if last_charged_at is not None else created_at),
            "miner_ids": [ipfs_cid.encode(m) for m in miner_ids] if miner_ids else None,
        }
        with self._lock:
            self._requests.setdefault(account_id, []).append(row)

    def set_profile(self, account_id: str, raw: Optional[RawBytes]) -> None:
        with self._lock:
            if raw is None:
                self._profiles.pop(account_id, None)
            else:
                self._profiles[account_id] = raw

    def set_total_size(self, account_id: str, size: Optional[int]) -> None:
        with self._lock:
            if size is None:
                self._total_size.pop(account_id, None)
            else:
                self._total_size[account_id] = int(size)

    def set_credits(self, account_id: str, credits: Optional[int]) -> None:
        with self._lock:
            self._credits[account_id] = credits

    def script_outcome(self, outcome: Any) -> None:
        """Queue the outcome of the next submission.

        "success" | ("failed", dispatch_error) | ("dispatch", dispatch_error) | Exception
        """
        with self._lock:
            self._outcomes.append(outcome)


def _row_cid(row: Json) -> str:
    try:
        return ipfs_cid.decode(row.get("file_hash") or "")
    except InvalidCidEncoding:
        return ""
