from __future__ import annotations

import logging
from typing import Any, List, Optional

from hippius.errors import InvalidCidEncoding, LedgerUnavailable
from hippius.ledger.client import Json, LedgerClient
from hippius.metrics import inc_counter
from hippius.models import StorageRequestRecord
from hippius.structured_logging import log_event
from hippius.util import ipfs_cid

log = logging.getLogger("hippius.index")


def _safe_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _miner_ids(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    out: List[str] = []
    for m in raw:
        s = ipfs_cid.decode_text(m)
        if s:
            out.append(s)
    return tuple(out)


def record_from_raw(raw: Json) -> StorageRequestRecord:
    """Decode one raw ledger storage request. Raises InvalidCidEncoding."""
    cid = ipfs_cid.decode(raw.get("file_hash") or "")
    created_at = _safe_int(raw.get("created_at"), 0)
    last_charged_at = _safe_int(raw.get("last_charged_at"), 0)
    size_any = raw.get("file_size_in_bytes")
    return StorageRequestRecord(
        cid=cid,
        file_name=ipfs_cid.decode_text(raw.get("file_name")),
        # Older runtimes only report last_charged_at.
        created_at=created_at or last_charged_at,
        is_assigned=bool(raw.get("is_assigned", False)),
        last_charged_at=last_charged_at,
        miner_ids=_miner_ids(raw.get("miner_ids")),
        file_size_bytes=_safe_int(size_any) if size_any is not None else None,
    )


class OnChainIndexFetcher:
    """Read-side ledger queries for one account.

    Storage requests are the source of truth and fail hard; the stored-bytes
    counter and the manifest pointer degrade to 0 / None.
    """

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger

    def _require_connected(self) -> None:
        if not self._ledger.is_connected():
            raise LedgerUnavailable("not_connected")

    def fetch_storage_requests(self, account_id: str) -> List[StorageRequestRecord]:
        self._require_connected()
        try:
            rows = self._ledger.storage_requests(account_id)
        except Exception as e:
            raise LedgerUnavailable("storage_requests_query_failed", str(e)) from e

        out: List[StorageRequestRecord] = []
        for raw in rows or []:
            if not isinstance(raw, dict):
                continue
            try:
                out.append(record_from_raw(raw))
            except InvalidCidEncoding as e:
                inc_counter("storage_request_bad_cid_total", 1)
                log_event(log, "storage_request_bad_cid", level=logging.WARNING, account=account_id, error=str(e))
        return out

    def fetch_total_stored_bytes(self, account_id: str) -> int:
        if not self._ledger.is_connected():
            return 0
        try:
            v = self._ledger.user_total_files_size(account_id)
        except Exception as e:
            log_event(log, "total_stored_bytes_failed", level=logging.WARNING, account=account_id, error=str(e))
            return 0
        return max(0, _safe_int(v, 0)) if v is not None else 0

    def fetch_manifest_pointer(self, account_id: str) -> Optional[str]:
        if not self._ledger.is_connected():
            return None
        try:
            raw = self._ledger.user_profile(account_id)
        except Exception as e:
            log_event(log, "manifest_pointer_failed", level=logging.WARNING, account=account_id, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return ipfs_cid.decode(raw)
        except InvalidCidEncoding as e:
            # New users have no manifest yet; an unreadable pointer is treated the same way.
            log_event(log, "manifest_pointer_undecodable", account=account_id, reason=e.reason)
            return None
