"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .entities import router as entities_router
from .jobs import router as jobs_router
from .signals import router as signals_router

api_router = APIRouter()
api_router.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
api_router.include_router(signals_router, prefix="/signals", tags=["signals"])
api_router.include_router(entities_router, prefix="/entities", tags=["entities"])

__all__ = ["api_router"]
