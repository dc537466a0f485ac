"""Pydantic schema exports."""

from .assets import (
    AssetCheckResponse,
    AssetPriceRequest,
    AssetPriceResponse,
    AssetSchema,
    AssetTokenRequest,
    ResolveAssetRequest,
    ResolveAssetResponse,
)
from .simulations import (
    AddAssetRequest,
    AddAssetResponse,
    FinishResponse,
    MarketBriefingResponse,
    MarketSearchRequest,
    MarketSearchResponse,
    ProjectionResponse,
    RebalanceRequest,
    RebalanceResponse,
    ReplayResponse,
    SimulationStateResponse,
    StartSimulationRequest,
    TimelineResponse,
    TradeRequest,
    TradeResponse,
)

__all__ = [
    "AddAssetRequest",
    "AddAssetResponse",
    "AssetCheckResponse",
    "AssetPriceRequest",
    "AssetPriceResponse",
    "AssetSchema",
    "AssetTokenRequest",
    "FinishResponse",
    "MarketBriefingResponse",
    "MarketSearchRequest",
    "MarketSearchResponse",
    "ProjectionResponse",
    "RebalanceRequest",
    "RebalanceResponse",
    "ReplayResponse",
    "ResolveAssetRequest",
    "ResolveAssetResponse",
    "SimulationStateResponse",
    "StartSimulationRequest",
    "TimelineResponse",
    "TradeRequest",
    "TradeResponse",
]
