from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from hippius.api.errors import ApiError
from hippius.services import HippiusServices
from hippius.upload.pipeline import UploadPipeline, UploadResult

Json = Dict[str, Any]


def _services(request: Request) -> HippiusServices:
    svc = getattr(request.app.state, "services", None)
    if svc is None:
        raise ApiError.unavailable("not_ready", "services not attached to app.state", {})
    return svc


def _pipeline_for(request: Request, account: str) -> UploadPipeline:
    """The upload pipeline signs as one account; writes for any other are refused."""
    svc = _services(request)
    if svc.pipeline is None:
        raise ApiError.unavailable("no_signer", "no signer configured (HIPPIUS_SIGNER_SEED)", {})
    if svc.pipeline.account != account:
        raise ApiError.forbidden("account_mismatch", "account is not the configured signer", {"account": account})
    return svc.pipeline


def _result_json(res: UploadResult) -> Json:
    return {
        "ok": True,
        "manifest_cid": res.manifest_cid,
        "manifest_name": res.manifest_name,
        "tx_hash": res.tx_hash,
        "block_hash": res.block_hash,
        "items": [{"name": it.name, "cid": it.cid, "size": it.size_bytes} for it in res.items],
    }
