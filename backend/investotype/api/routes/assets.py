"""Sessionless asset endpoints: token validation, spot price and name resolution."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from investotype.api.dependencies import get_simulation_service
from investotype.schemas import (
    AssetCheckResponse,
    AssetPriceRequest,
    AssetPriceResponse,
    AssetTokenRequest,
    ResolveAssetRequest,
    ResolveAssetResponse,
)
from investotype.services.simulation import SimulationService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/validate", response_model=AssetCheckResponse)
async def validate_asset(
    payload: AssetTokenRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> AssetCheckResponse:
    check = await service.validate_asset(payload.token)
    return AssetCheckResponse.model_validate(check)


@router.post("/price", response_model=AssetPriceResponse)
async def asset_price(
    payload: AssetPriceRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> AssetPriceResponse:
    quote = await service.asset_price(payload.token, payload.date)
    return AssetPriceResponse.model_validate(quote)


@router.post("/resolve", response_model=ResolveAssetResponse)
async def resolve_asset(
    payload: ResolveAssetRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> ResolveAssetResponse:
    logger.info("Resolving asset query: %s", payload.query)
    resolution = await service.resolve_asset(payload.query, prefer_bond=payload.prefer_bond)
    return ResolveAssetResponse.model_validate(resolution)


__all__ = ["router"]
