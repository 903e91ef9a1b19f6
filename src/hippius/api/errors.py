from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hippius.errors import HippiusError
from hippius.structured_logging import log_event

log = logging.getLogger("hippius.api")

# Domain error code -> HTTP status
HTTP_STATUS_BY_CODE: Dict[str, int] = {
    "invalid_cid_encoding": 400,
    "insufficient_credits": 402,
    "pipeline_busy": 409,
    "ledger_unavailable": 502,
    "transaction_failed": 502,
    "gateway_error": 502,
    "manifest_fetch_failed": 502,
}


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})


def _body(code: str, message: str, details: Any) -> Dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message, "details": details}}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=_body(exc.code, exc.message, exc.details))

    @app.exception_handler(HippiusError)
    async def _domain_error(request: Request, exc: HippiusError) -> JSONResponse:
        status = HTTP_STATUS_BY_CODE.get(exc.code, 500)
        log_event(
            log,
            "api_domain_error",
            level=logging.WARNING,
            path=str(request.url.path),
            code=exc.code,
            reason=exc.reason,
            status=status,
        )
        details = exc.details if isinstance(exc.details, (dict, list, str, int, float, type(None))) else str(exc.details)
        return JSONResponse(status_code=status, content=_body(exc.code, exc.reason, details))
