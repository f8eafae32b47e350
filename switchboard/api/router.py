"""Composition of API routers."""

from __future__ import annotations

from fastapi import APIRouter

from switchboard.api.bridge import router as bridge_router
from switchboard.api.health import router as health_router

api_router = APIRouter(prefix="/api")
api_router.include_router(health_router)
api_router.include_router(bridge_router)
