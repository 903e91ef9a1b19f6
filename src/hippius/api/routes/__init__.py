# src/hippius/api/routes/__init__.py
from __future__ import annotations

from fastapi import APIRouter

from hippius.api.routes.files import router as files_router
from hippius.api.routes.ops import router as ops_router
from hippius.api.routes.ops import root_router as ops_root_router
from hippius.api.routes.upload import router as upload_router

api_router = APIRouter()

api_router.include_router(files_router, prefix="/v1", tags=["files"])
api_router.include_router(upload_router, prefix="/v1", tags=["upload"])
api_router.include_router(ops_router, prefix="/v1", tags=["ops"])

# Unversioned scrape path for Prometheus
api_router.include_router(ops_root_router, prefix="", tags=["ops"])
