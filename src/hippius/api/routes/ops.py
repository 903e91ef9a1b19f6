from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request, Response

from hippius import __version__
from hippius.api.routes.common import _services
from hippius.metrics import format_prometheus, snapshot

Json = Dict[str, Any]

router = APIRouter()
root_router = APIRouter()


@router.get("/health")
def health(request: Request) -> Json:
    svc = _services(request)
    try:
        connected = bool(svc.ledger.is_connected())
    except Exception:
        connected = False
    return {
        "ok": True,
        "version": __version__,
        "mode": svc.cfg.mode,
        "ledger_connected": connected,
        "signer": svc.account,
        "refresher_running": svc.refresher.started,
        "cached_accounts": len(svc.cache.accounts()),
    }


@router.get("/metrics")
def metrics_json() -> Json:
    return {"ok": True, "metrics": snapshot()}


@root_router.get("/metrics")
def metrics_prometheus() -> Response:
    return Response(content=format_prometheus(), media_type="text/plain")
