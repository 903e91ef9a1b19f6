"""Unpin (delete) files: one signed storage_unpin_request per batch."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from hippius.errors import InvalidCidEncoding
from hippius.files.cache import SnapshotCache
from hippius.files.pending import PendingRegistry
from hippius.ledger.tx import LedgerTx, TxOutcome
from hippius.metrics import inc_counter
from hippius.models import FileEntry
from hippius.structured_logging import log_event
from hippius.util import ipfs_cid

log = logging.getLogger("hippius.unpin")


def unpin_items(entries: Sequence[FileEntry]) -> List[Tuple[str, str]]:
    """(cid, filename) pairs; entry CIDs may still be in their ledger encoding."""
    out: List[Tuple[str, str]] = []
    for e in entries:
        out.append((ipfs_cid.decode(e.cid), e.name))
    return out


def unpin_files(
    entries: Sequence[FileEntry],
    ledger_tx: LedgerTx,
    cache: Optional[SnapshotCache] = None,
    pending: Optional[PendingRegistry] = None,
) -> TxOutcome:
    """Submit the unpin call and wait for its ExtrinsicSuccess event.

    Raises InvalidCidEncoding before submitting when any CID is unusable,
    TransactionFailed when the ledger rejects the call.
    """
    if not entries:
        raise InvalidCidEncoding("empty", "no files to unpin")

    items = unpin_items(entries)
    account = ledger_tx.account
    log_event(log, "unpin_submit", account=account, files=len(items))

    outcome = ledger_tx.storage_unpin_request(items)

    inc_counter("unpin_total", len(items))
    if cache is not None:
        cache.invalidate(account)
    if pending is not None:
        pending.discard(account, [cid for cid, _ in items])
    log_event(log, "unpin_succeeded", account=account, files=len(items), tx_hash=outcome.tx_hash)
    return outcome
