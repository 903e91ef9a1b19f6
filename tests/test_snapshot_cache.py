from __future__ import annotations

import threading
from typing import List, Optional

import pytest

from hippius.errors import LedgerUnavailable
from hippius.files.cache import BackgroundRefresher, SnapshotCache
from hippius.models import ReconciledSnapshot


class _CountingService:
    """Stands in for FileIndexService; records every fetch."""

    def __init__(self) -> None:
        self.calls: List[Optional[ReconciledSnapshot]] = []
        self.fail = False

    def fetch(self, account_id: str, *, previous: Optional[ReconciledSnapshot] = None) -> ReconciledSnapshot:
        self.calls.append(previous)
        if self.fail:
            raise LedgerUnavailable("not_connected")
        return ReconciledSnapshot(account=account_id, files=(), total_stored_bytes=len(self.calls), fetched_at_ms=0)


class _Clock:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


def _mk_cache(ttl_s: float = 30.0):
    svc = _CountingService()
    clock = _Clock()
    return SnapshotCache(svc, ttl_s=ttl_s, clock=clock), svc, clock


def test_get_serves_cached_snapshot_within_ttl() -> None:
    cache, svc, clock = _mk_cache()
    first = cache.get("acct")
    clock.t += 29.0
    assert cache.get("acct") is first
    assert len(svc.calls) == 1

    clock.t += 2.0
    second = cache.get("acct")
    assert second is not first
    assert len(svc.calls) == 2


def test_force_refresh_bypasses_ttl() -> None:
    cache, svc, _ = _mk_cache()
    cache.get("acct")
    cache.refresh("acct")
    assert len(svc.calls) == 2


def test_invalidate_marks_stale_and_passes_previous() -> None:
    cache, svc, _ = _mk_cache()
    first = cache.get("acct")
    cache.invalidate("acct")
    # stale snapshot is still visible to peek()
    assert cache.peek("acct") is first

    cache.get("acct")
    assert len(svc.calls) == 2
    assert svc.calls[1] is first


def test_invalidate_all_accounts() -> None:
    cache, svc, _ = _mk_cache()
    cache.get("a")
    cache.get("b")
    cache.invalidate()
    cache.get("a")
    cache.get("b")
    assert len(svc.calls) == 4


def test_fetch_error_keeps_previous_snapshot() -> None:
    cache, svc, _ = _mk_cache()
    first = cache.get("acct")
    svc.fail = True
    with pytest.raises(LedgerUnavailable):
        cache.refresh("acct")
    assert cache.peek("acct") is first


def test_refresher_tick_refreshes_known_accounts_and_survives_errors() -> None:
    cache, svc, _ = _mk_cache()
    cache.get("a")
    cache.get("b")

    r = BackgroundRefresher(cache, interval_s=60.0)
    assert r.tick() == 2
    assert len(svc.calls) == 4

    svc.fail = True
    assert r.tick() == 0


def test_refresher_start_stop() -> None:
    cache, _, _ = _mk_cache()
    r = BackgroundRefresher(cache, interval_s=60.0)
    assert r.start() is True
    assert r.started is True
    r.stop()
    assert r.started is False


class _BlockingService(_CountingService):
    """Holds the first fetch open until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch(self, account_id: str, *, previous: Optional[ReconciledSnapshot] = None) -> ReconciledSnapshot:
        if not self.calls:
            self.entered.set()
            assert self.release.wait(timeout=5.0)
        return super().fetch(account_id, previous=previous)


def test_invalidate_during_inflight_fetch_forces_refetch() -> None:
    svc = _BlockingService()
    cache = SnapshotCache(svc, ttl_s=30.0, clock=_Clock())

    t = threading.Thread(target=cache.refresh, args=("acc",))
    t.start()
    assert svc.entered.wait(timeout=5.0)
    cache.invalidate("acc")
    svc.release.set()
    t.join(timeout=5.0)

    snap = cache.get("acc")
    assert len(svc.calls) == 2
    assert snap.total_stored_bytes == 2

    # the refetch itself was not overlapped, so it is served fresh
    cache.get("acc")
    assert len(svc.calls) == 2
