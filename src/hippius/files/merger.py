from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from hippius.errors import ManifestFetchFailed
from hippius.ledger.index_fetcher import OnChainIndexFetcher
from hippius.metrics import inc_counter
from hippius.models import FileEntry, ManifestEntry, ReconciledSnapshot, StorageRequestRecord
from hippius.storage.manifest import ManifestFetcher, UnassignedEntryExpander
from hippius.structured_logging import log_event

log = logging.getLogger("hippius.merge")


def _now_ms() -> int:
    return int(time.time() * 1000)


def partition_records(
    records: Iterable[StorageRequestRecord],
) -> Tuple[List[StorageRequestRecord], List[StorageRequestRecord]]:
    assigned: List[StorageRequestRecord] = []
    unassigned: List[StorageRequestRecord] = []
    for r in records:
        (assigned if r.is_assigned else unassigned).append(r)
    return assigned, unassigned


def _fill_from_manifest(entry: FileEntry, m: ManifestEntry) -> FileEntry:
    # On-chain keeps assignment/charge fields; the manifest only fills gaps.
    changes = {}
    if entry.size_bytes is None and m.size_bytes is not None:
        changes["size_bytes"] = m.size_bytes
    if (not entry.name or entry.name == "Unnamed File") and m.file_name:
        changes["name"] = m.file_name
    return entry.with_updates(**changes) if changes else entry


def _preserve_prior(entry: FileEntry, prior: Optional[FileEntry]) -> FileEntry:
    if prior is None:
        return entry
    changes = {}
    if not entry.miner_ids and prior.miner_ids:
        changes["miner_ids"] = prior.miner_ids
    if entry.size_bytes is None and prior.size_bytes is not None:
        changes["size_bytes"] = prior.size_bytes
    return entry.with_updates(**changes) if changes else entry


def merge(
    assigned: Sequence[FileEntry],
    expanded_unassigned: Sequence[FileEntry],
    manifest_entries: Sequence[ManifestEntry],
    previous: Optional[ReconciledSnapshot] = None,
) -> List[FileEntry]:
    """Merge both sources into one deduplicated, newest-first listing.

    Invariants:
      - at most one entry per cid
      - created_at non-increasing; ties keep concatenation order
        (assigned, expanded unassigned, manifest-only)
    """
    on_chain: List[FileEntry] = []
    seen: Set[str] = set()
    for e in list(assigned) + list(expanded_unassigned):
        if e.cid in seen:
            continue
        seen.add(e.cid)
        on_chain.append(e)

    manifest_by_cid: Dict[str, ManifestEntry] = {}
    manifest_only: List[FileEntry] = []
    for m in manifest_entries:
        if m.cid in manifest_by_cid:
            continue
        manifest_by_cid[m.cid] = m
        if m.cid in seen:
            continue
        seen.add(m.cid)
        manifest_only.append(FileEntry.from_manifest(m))

    on_chain = [_fill_from_manifest(e, manifest_by_cid[e.cid]) if e.cid in manifest_by_cid else e for e in on_chain]

    prior = previous.by_cid() if previous is not None else {}
    merged = [_preserve_prior(e, prior.get(e.cid)) for e in on_chain + manifest_only]

    # sorted() is stable: ties keep concatenation order.
    return sorted(merged, key=lambda e: int(e.created_at), reverse=True)


class FileIndexService:
    """Runs one reconciliation cycle for an account.

    Only the storage request enumeration is fatal; the stored-bytes counter,
    the manifest and per-request expansion all degrade.
    """

    def __init__(
        self,
        *,
        index: OnChainIndexFetcher,
        manifests: ManifestFetcher,
        expander: UnassignedEntryExpander,
    ) -> None:
        self._index = index
        self._manifests = manifests
        self._expander = expander

    def fetch(self, account_id: str, *, previous: Optional[ReconciledSnapshot] = None) -> ReconciledSnapshot:
        inc_counter("reconcile_total", 1)
        try:
            records = self._index.fetch_storage_requests(account_id)
        except Exception:
            inc_counter("reconcile_failed_total", 1)
            raise

        assigned, unassigned = partition_records(records)
        expanded = self._expander.expand_all(unassigned)

        degraded = False
        manifest_cid = self._index.fetch_manifest_pointer(account_id)
        manifest_entries: List[ManifestEntry] = []
        if manifest_cid:
            try:
                manifest_entries = self._manifests.fetch_manifest(manifest_cid)
            except ManifestFetchFailed as e:
                degraded = True
                inc_counter("manifest_fetch_failed_total", 1)
                log_event(
                    log,
                    "manifest_fetch_failed",
                    level=logging.WARNING,
                    account=account_id,
                    cid=manifest_cid,
                    error=str(e)[:300],
                )

        files = merge(
            [FileEntry.from_record(r) for r in assigned],
            expanded,
            manifest_entries,
            previous,
        )
        total = self._index.fetch_total_stored_bytes(account_id)

        log_event(
            log,
            "reconciled",
            account=account_id,
            files=len(files),
            assigned=len(assigned),
            unassigned=len(unassigned),
            manifest_entries=len(manifest_entries),
            degraded=degraded,
        )
        return ReconciledSnapshot(
            account=account_id,
            files=tuple(files),
            total_stored_bytes=int(total),
            fetched_at_ms=_now_ms(),
            manifest_cid=manifest_cid,
            degraded=degraded,
        )
