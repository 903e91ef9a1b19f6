"""
Upload state machine: IDLE -> UPLOADING -> SUBMITTING -> IDLE.

UPLOADING
  Every item passes the credits gate first, then either streams its bytes to
  the gateway (raw files) or is accepted as-is (existing CIDs). Afterwards the
  batch's [{filename, cid}] list is uploaded as one more object, the info
  object, which is what the ledger call references.

SUBMITTING
  One signed storage_request for (info name, info cid), watched until an
  ExtrinsicSuccess / ExtrinsicFailed event.

Any failure returns straight to IDLE and re-raises; there is no error state.
Success invalidates the snapshot cache for the account.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from hippius.credits import CreditsGate
from hippius.errors import GatewayError, HippiusError, InsufficientCredits, PipelineBusy
from hippius.files.cache import SnapshotCache
from hippius.files.pending import PendingRegistry, pending_entry
from hippius.ledger.tx import LedgerTx
from hippius.metrics import inc_counter, set_gauge
from hippius.storage.gateway import ContentGateway
from hippius.structured_logging import log_event
from hippius.util import ipfs_cid

Json = Dict[str, Any]

log = logging.getLogger("hippius.upload")

# Item progress is capped here until the info object itself is uploaded.
_ITEMS_CAP = 99


def _now_ms() -> int:
    return int(time.time() * 1000)


class UploadState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SUBMITTING = "submitting"


@dataclass(frozen=True, slots=True)
class RawFile:
    name: str
    data: bytes


@dataclass(frozen=True, slots=True)
class ExistingCid:
    name: str
    cid: str


UploadInput = Union[RawFile, ExistingCid]


@dataclass(frozen=True, slots=True)
class UploadedItem:
    name: str
    cid: str
    size_bytes: Optional[int] = None


@dataclass(frozen=True, slots=True)
class UploadResult:
    manifest_cid: str
    manifest_name: str
    items: Tuple[UploadedItem, ...]
    tx_hash: str
    block_hash: Optional[str]


@dataclass(frozen=True, slots=True)
class UploadEvent:
    kind: str  # state | progress | item_done | succeeded | failed
    state: UploadState
    progress: int
    detail: Json = field(default_factory=dict)


@dataclass
class UploadJob:
    """Ephemeral state for one pipeline call; never persisted."""

    files: Tuple[UploadInput, ...]
    state: UploadState = UploadState.IDLE
    progress_percent: int = 0
    manifest_cid: Optional[str] = None
    started_ms: int = 0


EventFn = Callable[[UploadEvent], None]


def info_object_bytes(items: Sequence[UploadedItem]) -> bytes:
    rows = [{"filename": it.name, "cid": it.cid} for it in items]
    return json.dumps(rows, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def info_file_name(items: Sequence[UploadedItem], now_ms: int) -> str:
    first = items[0].name if items else "batch"
    stem = first.rsplit(".", 1)[0] if "." in first else first
    return f"{stem or 'batch'}-{int(now_ms)}.info.json"


def _weight(item: UploadInput) -> int:
    return len(item.data) if isinstance(item, RawFile) else 0


class UploadPipeline:
    """Upload state machine; one instance per user session.

    A call while not IDLE raises PipelineBusy before touching anything.
    """

    def __init__(
        self,
        *,
        gateway: ContentGateway,
        ledger_tx: LedgerTx,
        credits: CreditsGate,
        cache: Optional[SnapshotCache] = None,
        pending: Optional[PendingRegistry] = None,
        on_event: Optional[EventFn] = None,
        concurrency: int = 1,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._gateway = gateway
        self._ledger_tx = ledger_tx
        self._credits = credits
        self._cache = cache
        self._pending = pending
        self._on_event = on_event
        self._concurrency = max(1, int(concurrency))
        self._clock_ms = clock_ms

        self._lock = threading.Lock()
        self._progress_lock = threading.Lock()
        self._job: Optional[UploadJob] = None
        self._state = UploadState.IDLE
        self._progress = 0

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def account(self) -> str:
        return self._ledger_tx.account

    @property
    def ledger_tx(self) -> LedgerTx:
        return self._ledger_tx

    def status(self) -> Json:
        job = self._job
        return {
            "state": self._state.value,
            "progress": int(self._progress),
            "items": len(job.files) if job is not None else 0,
            "manifest_cid": job.manifest_cid if job is not None else None,
        }

    # ---- events / transitions ----

    def _emit(self, kind: str, **detail: Any) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(UploadEvent(kind=kind, state=self._state, progress=int(self._progress), detail=detail))
        except Exception as e:
            log_event(log, "upload_event_handler_failed", level=logging.WARNING, kind=kind, error=str(e))

    def _transition(self, state: UploadState) -> None:
        self._state = state
        if self._job is not None:
            self._job.state = state
        set_gauge("upload_state_busy", 0 if state == UploadState.IDLE else 1)
        self._emit("state")

    def _set_progress(self, pct: int) -> None:
        with self._progress_lock:
            pct = max(0, min(100, int(pct)))
            if pct <= self._progress:
                return
            self._progress = pct
            if self._job is not None:
                self._job.progress_percent = pct
        self._emit("progress")

    def _begin(self, files: Sequence[UploadInput]) -> UploadJob:
        with self._lock:
            if self._state != UploadState.IDLE:
                raise PipelineBusy(details={"state": self._state.value})
            self._job = UploadJob(files=tuple(files), started_ms=self._clock_ms())
            self._progress = 0
            self._state = UploadState.UPLOADING
        self._job.state = UploadState.UPLOADING
        set_gauge("upload_state_busy", 1)
        self._emit("state")
        return self._job

    # ---- public entry points ----

    def upload_files(self, files: Sequence[RawFile]) -> UploadResult:
        return self.run(files)

    def register_cids(self, items: Sequence[ExistingCid]) -> UploadResult:
        return self.run(items)

    def run(self, files: Sequence[UploadInput]) -> UploadResult:
        if not files:
            raise GatewayError("empty_batch")
        job = self._begin(files)
        inc_counter("upload_batches_total", 1)
        log_event(log, "upload_started", account=self.account, items=len(job.files))

        try:
            result = self._run_job(job)
        except Exception as e:
            self._fail(e)
            raise

        self._transition(UploadState.IDLE)
        if self._cache is not None:
            self._cache.invalidate(self.account)
        if self._pending is not None:
            now = self._clock_ms()
            self._pending.add(
                self.account,
                [pending_entry(name=it.name, cid=it.cid, since_ms=now, size_bytes=it.size_bytes) for it in result.items],
            )
        log_event(
            log,
            "upload_succeeded",
            account=self.account,
            manifest_cid=result.manifest_cid,
            items=len(result.items),
            tx_hash=result.tx_hash,
        )
        self._emit("succeeded", manifest_cid=result.manifest_cid, tx_hash=result.tx_hash)
        return result

    def _fail(self, err: Exception) -> None:
        insufficient = isinstance(err, InsufficientCredits)
        inc_counter("upload_failed_total", 1)
        if insufficient:
            inc_counter("upload_insufficient_credits_total", 1)
        code = err.code if isinstance(err, HippiusError) else type(err).__name__
        log_event(log, "upload_failed", level=logging.WARNING, account=self.account, code=code, error=str(err)[:300])

        with self._progress_lock:
            self._progress = 0
        self._transition(UploadState.IDLE)
        self._emit("failed", code=code, insufficient_credits=insufficient, message=str(err)[:300])

    # ---- stages ----

    def _run_job(self, job: UploadJob) -> UploadResult:
        items = self._upload_items(job.files)

        self._credits.ensure_spendable()
        now = self._clock_ms()
        manifest_name = info_file_name(items, now)
        try:
            added = self._gateway.add(name=manifest_name, data=info_object_bytes(items))
        except OSError as e:
            raise GatewayError("add_failed", str(e)) from e
        job.manifest_cid = added.cid
        self._set_progress(100)

        self._transition(UploadState.SUBMITTING)
        outcome = self._ledger_tx.storage_request([(added.cid, manifest_name)])
        return UploadResult(
            manifest_cid=added.cid,
            manifest_name=manifest_name,
            items=tuple(items),
            tx_hash=outcome.tx_hash,
            block_hash=outcome.block_hash,
        )

    def _upload_items(self, files: Sequence[UploadInput]) -> List[UploadedItem]:
        # Raw files share the batch by bytes; each existing CID counts as one
        # item-sized share that completes at once.
        total_bytes = sum(_weight(f) for f in files)
        count = len(files)
        raw_count = sum(1 for f in files if isinstance(f, RawFile))
        done = {"bytes": 0, "raw": 0, "cids": 0}
        done_lock = threading.Lock()

        def _advance(nbytes: int = 0, item_done: bool = False, raw: bool = True) -> None:
            with done_lock:
                done["bytes"] += int(nbytes)
                if item_done:
                    done["raw" if raw else "cids"] += 1
                if total_bytes > 0:
                    raw_frac = done["bytes"] / float(total_bytes)
                else:
                    raw_frac = done["raw"] / float(raw_count) if raw_count else 0.0
                frac = (raw_frac * raw_count + done["cids"]) / float(count)
            self._set_progress(min(_ITEMS_CAP, int(frac * 100)))

        def _one(idx: int, item: UploadInput) -> UploadedItem:
            self._credits.ensure_spendable()
            if isinstance(item, RawFile):
                try:
                    res = self._gateway.add(name=item.name, data=item.data, on_progress=lambda n: _advance(n))
                except OSError as e:
                    raise GatewayError("add_failed", str(e)) from e
                out = UploadedItem(name=item.name, cid=res.cid, size_bytes=len(item.data))
            else:
                out = UploadedItem(name=item.name, cid=ipfs_cid.decode(item.cid))
            _advance(0, item_done=True, raw=isinstance(item, RawFile))
            self._emit("item_done", index=idx, name=out.name, cid=out.cid)
            return out

        if self._concurrency == 1 or count == 1:
            return [_one(i, f) for i, f in enumerate(files)]

        with ThreadPoolExecutor(max_workers=self._concurrency, thread_name_prefix="hippius-upload") as pool:
            futures: List[Future] = [pool.submit(_one, i, f) for i, f in enumerate(files)]
            finished, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for fut in finished:
                err = fut.exception()
                if err is not None:
                    for other in futures:
                        other.cancel()
                    raise err
            return [fut.result() for fut in futures]
