"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from investotype.config import get_settings
from investotype.services.market_data import YahooMarketData
from investotype.services.simulation import SimulationService


@lru_cache
def get_market_data() -> YahooMarketData:
    return YahooMarketData(settings=get_settings())


@lru_cache
def get_simulation_service() -> SimulationService:
    """Process-wide service; tests swap it through ``app.dependency_overrides``."""

    return SimulationService(get_market_data(), get_settings())


__all__ = ["get_market_data", "get_simulation_service"]
