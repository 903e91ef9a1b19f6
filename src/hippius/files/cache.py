from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from hippius.files.merger import FileIndexService
from hippius.metrics import inc_counter, set_gauge
from hippius.models import ReconciledSnapshot
from hippius.structured_logging import log_event

log = logging.getLogger("hippius.cache")

Clock = Callable[[], float]


@dataclass
class _Slot:
    snapshot: Optional[ReconciledSnapshot] = None
    stored_at: float = 0.0
    stale: bool = True
    generation: int = 0


class SnapshotCache:
    """Per-account cache of reconciled snapshots.

    - get() serves a snapshot younger than ttl_s, otherwise refetches
    - get(force=True) always refetches (explicit refresh)
    - invalidate() marks a slot stale but keeps the snapshot so the next
      fetch can carry previously-known detail forward
    - a fetch that overlaps an invalidate() is stored but left stale
    - only the fetch cycle writes a slot; fetches for one account are serialized
    """

    def __init__(self, service: FileIndexService, *, ttl_s: float = 30.0, clock: Clock = time.monotonic) -> None:
        self._service = service
        self._ttl_s = float(ttl_s)
        self._clock = clock
        self._slots: Dict[str, _Slot] = {}
        self._slots_lock = threading.Lock()
        self._account_locks: Dict[str, threading.Lock] = {}

    def _slot(self, account_id: str) -> _Slot:
        with self._slots_lock:
            slot = self._slots.get(account_id)
            if slot is None:
                slot = _Slot()
                self._slots[account_id] = slot
                self._account_locks[account_id] = threading.Lock()
            return slot

    def _fresh(self, slot: _Slot) -> bool:
        if slot.snapshot is None or slot.stale:
            return False
        return (self._clock() - slot.stored_at) < self._ttl_s

    def get(self, account_id: str, *, force: bool = False) -> ReconciledSnapshot:
        slot = self._slot(account_id)
        if not force and self._fresh(slot):
            inc_counter("cache_hits_total", 1)
            return slot.snapshot  # type: ignore[return-value]

        with self._account_locks[account_id]:
            # Another caller may have refreshed while we waited.
            if not force and self._fresh(slot):
                inc_counter("cache_hits_total", 1)
                return slot.snapshot  # type: ignore[return-value]

            inc_counter("cache_misses_total", 1)
            gen = slot.generation
            snap = self._service.fetch(account_id, previous=slot.snapshot)
            slot.snapshot = snap
            slot.stored_at = self._clock()
            # An invalidate() during the fetch keeps the slot stale.
            slot.stale = slot.generation != gen
            set_gauge("cache_accounts", len(self._slots))
            return snap

    def refresh(self, account_id: str) -> ReconciledSnapshot:
        return self.get(account_id, force=True)

    def peek(self, account_id: str) -> Optional[ReconciledSnapshot]:
        with self._slots_lock:
            slot = self._slots.get(account_id)
        return slot.snapshot if slot is not None else None

    def invalidate(self, account_id: Optional[str] = None) -> None:
        with self._slots_lock:
            targets = list(self._slots.values()) if account_id is None else [self._slots.get(account_id)]
            for slot in targets:
                if slot is not None:
                    slot.generation += 1
                    slot.stale = True
        log_event(log, "cache_invalidated", account=account_id or "*")

    def accounts(self) -> List[str]:
        with self._slots_lock:
            return list(self._slots.keys())


class BackgroundRefresher:
    """Refreshes cached snapshots on a fixed interval, independent of readers.

    Errors are logged and counted; the loop keeps running.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        *,
        interval_s: float = 180.0,
        accounts: Optional[Iterable[str]] = None,
    ) -> None:
        self._cache = cache
        self._interval_s = max(0.01, float(interval_s))
        self._accounts = list(accounts) if accounts is not None else None
        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def started(self) -> bool:
        return self._t is not None and self._t.is_alive()

    def start(self) -> bool:
        if self.started:
            return True
        self._stop.clear()
        self._t = threading.Thread(target=self._run, name="hippius-refresher", daemon=True)
        self._t.start()
        return True

    def stop(self) -> None:
        self._stop.set()
        t = self._t
        if t is not None:
            t.join(timeout=2.0)
        self._t = None

    def tick(self) -> int:
        """Refresh every tracked account once. Returns the number refreshed."""
        accounts = self._accounts if self._accounts is not None else self._cache.accounts()
        ok = 0
        for acc in accounts:
            try:
                self._cache.refresh(acc)
                ok += 1
            except Exception as e:
                inc_counter("refresh_errors_total", 1)
                log_event(log, "background_refresh_failed", level=logging.WARNING, account=acc, error=str(e)[:300])
        return ok

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            self.tick()
