"""Simulation session endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from investotype.api.dependencies import get_simulation_service
from investotype.schemas import (
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
from investotype.services.simulation import SimulationService

router = APIRouter()


@router.post("/start", response_model=SimulationStateResponse)
async def start_simulation(
    payload: StartSimulationRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> SimulationStateResponse:
    view = await service.start(payload.to_config())
    return SimulationStateResponse.model_validate(view)


@router.get("/{simulation_id}", response_model=SimulationStateResponse)
async def get_simulation(
    simulation_id: str,
    service: SimulationService = Depends(get_simulation_service),
) -> SimulationStateResponse:
    return SimulationStateResponse.model_validate(await service.get(simulation_id))


@router.post("/{simulation_id}/assets", response_model=AddAssetResponse)
async def add_asset(
    simulation_id: str,
    payload: AddAssetRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> AddAssetResponse:
    return AddAssetResponse.model_validate(await service.add_asset(simulation_id, payload.token))


@router.post("/{simulation_id}/rebalance", response_model=RebalanceResponse)
async def rebalance(
    simulation_id: str,
    payload: RebalanceRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> RebalanceResponse:
    allocation = payload.to_allocation()
    view = await service.rebalance(simulation_id, allocation, skip_fees=payload.skip_fees)
    return RebalanceResponse.model_validate(view)


@router.post("/{simulation_id}/trade", response_model=TradeResponse)
async def trade(
    simulation_id: str,
    payload: TradeRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> TradeResponse:
    return TradeResponse.model_validate(await service.trade(simulation_id, payload.to_order()))


@router.post("/{simulation_id}/finish", response_model=FinishResponse)
async def finish(
    simulation_id: str,
    service: SimulationService = Depends(get_simulation_service),
) -> FinishResponse:
    return FinishResponse.model_validate(await service.finish(simulation_id))


@router.get("/{simulation_id}/timeline", response_model=TimelineResponse)
async def timeline(
    simulation_id: str,
    end_date: Optional[date] = Query(None, alias="endDate", description="Last day to include"),
    service: SimulationService = Depends(get_simulation_service),
) -> TimelineResponse:
    return TimelineResponse.model_validate(await service.timeline(simulation_id, end_date))


@router.get("/{simulation_id}/replay", response_model=ReplayResponse)
async def replay(
    simulation_id: str,
    service: SimulationService = Depends(get_simulation_service),
) -> ReplayResponse:
    return ReplayResponse.model_validate(await service.replay(simulation_id))


@router.get("/{simulation_id}/projection", response_model=ProjectionResponse)
async def projection(
    simulation_id: str,
    service: SimulationService = Depends(get_simulation_service),
) -> ProjectionResponse:
    return ProjectionResponse.model_validate(await service.projection(simulation_id))


@router.get("/{simulation_id}/market-briefing", response_model=MarketBriefingResponse)
async def market_briefing(
    simulation_id: str,
    on: Optional[date] = Query(None, alias="date", description="Briefing date, defaults to the next rebalance"),
    since: Optional[date] = Query(None, description="Start of the return window"),
    service: SimulationService = Depends(get_simulation_service),
) -> MarketBriefingResponse:
    briefing = await service.market_briefing(simulation_id, day=on, since=since)
    return MarketBriefingResponse.model_validate(briefing)


@router.post("/{simulation_id}/market-search", response_model=MarketSearchResponse)
async def market_search(
    simulation_id: str,
    payload: MarketSearchRequest,
    service: SimulationService = Depends(get_simulation_service),
) -> MarketSearchResponse:
    result = await service.market_search(simulation_id, payload.query, day=payload.date, since=payload.since)
    return MarketSearchResponse.model_validate(result)


__all__ = ["router"]
