from __future__ import annotations

import threading
import time
from typing import Dict, Iterable, List, Sequence

from hippius.models import EntrySource, FileEntry, PendingLocal, ReconciledSnapshot

DEFAULT_STALE_MS = 30 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_stale(entry: FileEntry, now_ms: int, threshold_ms: int = DEFAULT_STALE_MS) -> bool:
    """A pending entry that has not shown up on either source within threshold_ms."""
    if entry.pending_upload is None:
        return False
    return (int(now_ms) - int(entry.pending_upload.since_ms)) >= int(threshold_ms)


def pending_entry(*, name: str, cid: str, since_ms: int, size_bytes: int | None = None) -> FileEntry:
    return FileEntry(
        name=name,
        cid=cid,
        size_bytes=size_bytes,
        created_at=0,
        is_assigned=False,
        last_charged_at=0,
        source=EntrySource.LOCAL,
        pending_upload=PendingLocal(since_ms=int(since_ms)),
    )


class PendingRegistry:
    """Local-only entries for uploads submitted in this session.

    Entries drop out once their cid appears in a reconciled snapshot.
    """

    def __init__(self, *, stale_ms: int = DEFAULT_STALE_MS) -> None:
        self._lock = threading.Lock()
        self._by_account: Dict[str, Dict[str, FileEntry]] = {}
        self._stale_ms = int(stale_ms)

    def add(self, account_id: str, entries: Iterable[FileEntry]) -> None:
        with self._lock:
            slot = self._by_account.setdefault(account_id, {})
            for e in entries:
                slot[e.cid] = e

    def entries(self, account_id: str) -> List[FileEntry]:
        with self._lock:
            return list(self._by_account.get(account_id, {}).values())

    def overlay(self, snapshot: ReconciledSnapshot) -> List[FileEntry]:
        """Snapshot files with unconfirmed pending entries in front (newest first)."""
        confirmed = {f.cid for f in snapshot.files}
        with self._lock:
            slot = self._by_account.get(snapshot.account, {})
            for cid in [c for c in slot if c in confirmed]:
                del slot[cid]
            pending = sorted(slot.values(), key=lambda e: e.pending_upload.since_ms, reverse=True)  # type: ignore[union-attr]
        return pending + list(snapshot.files)

    def stale(self, account_id: str, now_ms: int | None = None) -> List[FileEntry]:
        now = _now_ms() if now_ms is None else int(now_ms)
        return [e for e in self.entries(account_id) if is_stale(e, now, self._stale_ms)]

    def discard(self, account_id: str, cids: Sequence[str]) -> None:
        with self._lock:
            slot = self._by_account.get(account_id, {})
            for c in cids:
                slot.pop(c, None)
