from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hippius.api.errors import install_error_handlers
from hippius.api.request_logging import RequestLogMiddleware
from hippius.api.routes import api_router
from hippius.services import HippiusServices
from hippius.services import build_services as _build_services
from hippius.structured_logging import log_event

log = logging.getLogger("hippius.api")


def build_services() -> HippiusServices:
    """Build the service graph for the API runtime.

    Tests monkeypatch `hippius.api.app.build_services` instead of reaching
    into the wiring module.
    """
    return _build_services()


def _truthy(v: Optional[str], default: bool) -> bool:
    if v is None or not v.strip():
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_cors_origins(mode: str) -> List[str]:
    """HIPPIUS_CORS_ORIGINS (comma separated). Empty -> CORS off; "*" refused in prod."""
    raw = os.environ.get("HIPPIUS_CORS_ORIGINS", "").strip()
    if not raw:
        return []
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in HIPPIUS_CORS_ORIGINS."
            )
        return ["*"]
    return origins


def create_app(services: Optional[HippiusServices] = None) -> FastAPI:
    """Create the FastAPI application.

    services:
      - None (default): build_services() from the environment
      - otherwise used as-is (tests pass in-memory wiring)

    The background refresher is started by the lifespan unless
    HIPPIUS_REFRESH_AUTOSTART=0.
    """
    svc = services if services is not None else build_services()
    mode = svc.cfg.mode

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        refresher = None
        if _truthy(os.environ.get("HIPPIUS_REFRESH_AUTOSTART"), True):
            refresher = svc.refresher
            refresher.start()
            log_event(log, "refresher_started", interval_s=svc.cfg.refresh_interval_s)
        yield
        if refresher is not None:
            refresher.stop()

    if mode == "prod":
        app = FastAPI(title="Hippius Files API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="Hippius Files API", lifespan=_lifespan)

    app.state.services = svc

    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins(mode)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    install_error_handlers(app)
    app.include_router(api_router)
    return app
