from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from hippius.api.routes.common import _services

Json = Dict[str, Any]

router = APIRouter()


@router.get("/upload/status")
def upload_status(request: Request) -> Json:
    svc = _services(request)
    if svc.pipeline is None:
        return {"ok": True, "enabled": False, "state": "idle", "progress": 0}
    out: Json = {"ok": True, "enabled": True, "account": svc.pipeline.account}
    out.update(svc.pipeline.status())
    return out
