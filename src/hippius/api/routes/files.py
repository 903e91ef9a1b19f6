# src/hippius/api/routes/files.py
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Request

from hippius.api.errors import ApiError
from hippius.api.routes.common import _pipeline_for, _result_json, _services
from hippius.api.schemas import CidItem, CsvImportRequest, UnpinItem
from hippius.files.csv_import import parse_cid_csv
from hippius.files.pending import is_stale
from hippius.files.unpin import unpin_files
from hippius.models import FileEntry, ReconciledSnapshot
from hippius.upload.pipeline import ExistingCid
from hippius.util import ipfs_cid

Json = Dict[str, Any]

router = APIRouter()


def _listing(request: Request, snap: ReconciledSnapshot) -> Json:
    svc = _services(request)
    files = svc.pending.overlay(snap)
    now_ms = snap.fetched_at_ms
    out = snap.to_json()
    out["ok"] = True
    out["files"] = [f.to_json() for f in files]
    out["length"] = len(files)
    out["stalePending"] = [
        f.cid for f in files if is_stale(f, now_ms, int(svc.cfg.pending_stale_s * 1000))
    ]
    return out


@router.get("/files/{account}")
def list_files(account: str, request: Request) -> Json:
    """Reconciled listing (cached up to HIPPIUS_CACHE_TTL_S), pending uploads first."""
    snap = _services(request).cache.get(account)
    return _listing(request, snap)


@router.post("/files/{account}/refresh")
def refresh_files(account: str, request: Request) -> Json:
    snap = _services(request).cache.refresh(account)
    return _listing(request, snap)


@router.post("/files/{account}/register")
def register_cids(account: str, items: List[CidItem], request: Request) -> Json:
    if not items:
        raise ApiError.bad_request("empty_batch", "no items to register", {})
    pipeline = _pipeline_for(request, account)
    res = pipeline.register_cids([ExistingCid(name=it.name.strip(), cid=it.cid.strip()) for it in items])
    return _result_json(res)


@router.post("/files/{account}/import-csv")
def import_csv(account: str, body: CsvImportRequest, request: Request) -> Json:
    parsed = parse_cid_csv(body.csv)
    if not parsed.entries:
        raise ApiError.bad_request(
            "no_valid_rows", "CSV contains no valid name,cid rows", {"invalid_lines": list(parsed.invalid_lines)}
        )
    pipeline = _pipeline_for(request, account)
    res = pipeline.register_cids(list(parsed.entries))
    out = _result_json(res)
    out["invalid_lines"] = list(parsed.invalid_lines)
    return out


@router.post("/files/{account}/unpin")
def unpin(account: str, items: List[UnpinItem], request: Request) -> Json:
    if not items:
        raise ApiError.bad_request("empty_batch", "no items to unpin", {})
    svc = _services(request)
    ledger_tx = _pipeline_for(request, account).ledger_tx

    known = svc.cache.get(account).by_cid()
    entries: List[FileEntry] = []
    for it in items:
        cid = ipfs_cid.decode(it.cid)
        entry = known.get(cid)
        if entry is None and not it.name:
            raise ApiError.not_found("unknown_cid", "cid is not in the account's file list", {"cid": cid})
        if entry is None:
            entry = FileEntry(name=str(it.name), cid=cid, size_bytes=None, created_at=0, is_assigned=False, last_charged_at=0)
        elif it.name:
            entry = entry.with_updates(name=it.name)
        entries.append(entry)

    outcome = unpin_files(entries, ledger_tx, svc.cache, svc.pending)
    return {
        "ok": True,
        "tx_hash": outcome.tx_hash,
        "block_hash": outcome.block_hash,
        "unpinned": [e.cid for e in entries],
    }
