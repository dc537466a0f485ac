"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .assets import router as assets_router
from .simulations import router as simulations_router

api_router = APIRouter()
api_router.include_router(assets_router, prefix="/assets", tags=["assets"])
api_router.include_router(simulations_router, prefix="/simulations", tags=["simulations"])

__all__ = ["api_router"]
