"""Schemas for simulation sessions, orders and reports."""

from __future__ import annotations

import datetime as dt

from pydantic import Field

from investotype.services import engine
from investotype.services.assets import normalize_symbol
from investotype.services.sessions import Frequency
from investotype.services.simulation import StartConfig

from .assets import AssetSchema
from .base import CamelModel


# Requests


class StartSimulationRequest(CamelModel):
    start_date: str
    end_date: str
    frequency: str = "weekly"
    initial_cash: float
    assets: list[str] = Field(default_factory=list)
    benchmark_symbols: list[str] = Field(default_factory=list)

    def to_config(self) -> StartConfig:
        return StartConfig(
            start_date=self.start_date,
            end_date=self.end_date,
            frequency=self.frequency,
            initial_cash=self.initial_cash,
            assets=list(self.assets),
            benchmark_symbols=list(self.benchmark_symbols),
        )


class AddAssetRequest(CamelModel):
    token: str


class TargetEntrySchema(CamelModel):
    mode: str = "weight"
    value: float = 0.0


class RebalanceRequest(CamelModel):
    """Exactly one of ``targets``, ``weights``, ``dollars`` or ``units``."""

    targets: dict[str, TargetEntrySchema] | None = None
    weights: dict[str, float] | None = None
    dollars: dict[str, float] | None = None
    units: dict[str, float] | None = None
    skip_fees: bool = False

    def to_allocation(self) -> engine.Allocation:
        targets = None
        if self.targets is not None:
            targets = {
                symbol: engine.TargetEntry(mode=entry.mode.lower(), value=entry.value)
                for symbol, entry in self.targets.items()
            }
        return engine.select_allocation(
            targets=targets,
            weights=self.weights,
            dollars=self.dollars,
            units=self.units,
        )


class TradeRequest(CamelModel):
    sell_symbol: str
    buy_symbol: str
    sell_mode: str = "dollars"
    buy_mode: str = "dollars"
    sell_amount: float = 0.0
    sell_units: float = 0.0
    buy_amount: float = 0.0
    buy_units: float = 0.0
    liquidate_all: bool = False

    def to_order(self) -> engine.TradeOrder:
        return engine.TradeOrder(
            sell_symbol=normalize_symbol(self.sell_symbol),
            buy_symbol=normalize_symbol(self.buy_symbol),
            sell_mode=self.sell_mode.lower(),
            buy_mode=self.buy_mode.lower(),
            sell_amount=self.sell_amount,
            sell_units=self.sell_units,
            buy_amount=self.buy_amount,
            buy_units=self.buy_units,
            liquidate_all=self.liquidate_all,
        )


class MarketSearchRequest(CamelModel):
    query: str = Field(..., max_length=128)
    date: dt.date | None = None
    since: dt.date | None = None


# Shared fragments


class PointSchema(CamelModel):
    date: dt.date
    value: float


class PreviewSchema(CamelModel):
    date: dt.date
    portfolio_value: float
    prices: dict[str, float]


class HoldingInsightSchema(CamelModel):
    symbol: str
    quantity: float
    price: float
    value: float
    weight: float
    average_price: float
    first_buy_price: float
    realized_profit: float
    closed: bool = False


class PreviewInsightsSchema(CamelModel):
    date: dt.date
    since_date: dt.date
    reference_value: float
    portfolio_value: float
    period_return: float
    cash: float
    holdings: list[HoldingInsightSchema]


class PositionSchema(CamelModel):
    symbol: str
    quantity: float
    cost_basis: float
    first_buy_price: float
    realized_profit: float
    average_price: float


class HeadlineSchema(CamelModel):
    title: str
    publisher: str = ""
    date: dt.date | None = None


class DividendSchema(CamelModel):
    date: dt.date
    amount: float


class BenchmarkComparisonSchema(CamelModel):
    symbol: str
    total_return: float | None = None
    ok: bool
    error: str | None = None


class BenchmarkSeriesSchema(CamelModel):
    symbol: str
    points: list[PointSchema]


# Responses


class SimulationStateResponse(CamelModel):
    simulation_id: str
    start_date: dt.date
    end_date: dt.date
    frequency: Frequency
    symbols: list[str]
    assets: list[AssetSchema]
    benchmark_symbols: list[str]
    initial_cash: float
    cash: float
    fees_paid: float
    dividends_received: float
    step_index: int
    total_steps: int
    next_rebalance_date: dt.date | None = None
    completed: bool
    positions: list[PositionSchema]
    decisions: int
    trades: int
    preview: PreviewSchema | None = None
    preview_insights: PreviewInsightsSchema | None = None


class AddAssetResponse(CamelModel):
    simulation_id: str
    symbols: list[str]
    assets: list[AssetSchema]
    already_exists: bool
    preview: PreviewSchema | None = None
    preview_insights: PreviewInsightsSchema | None = None


class RebalanceResponse(CamelModel):
    date: dt.date
    portfolio_value: float
    cash: float
    fee: float
    fees_paid: float
    dividends_received: float
    allocation_mode: str
    per_asset_modes: dict[str, str]
    requested_inputs: dict[str, float]
    target_values: dict[str, float]
    actual_weights: dict[str, float]
    budget_used: float
    budget_used_ratio: float
    reference_portfolio_value: float
    reference_prices: dict[str, float]
    turnover: float
    concentration_hhi: float
    archived_symbols: list[str]
    positions: list[PositionSchema]
    step_index: int
    total_steps: int
    next_rebalance_date: dt.date | None = None
    symbols: list[str]
    assets: list[AssetSchema]
    next_preview: PreviewSchema | None = None
    next_preview_insights: PreviewInsightsSchema | None = None


class TradeResponse(CamelModel):
    date: dt.date
    sell_symbol: str
    buy_symbol: str
    liquidate_all: bool
    sold_value: float
    sold_units: float
    bought_value: float
    bought_units: float
    fee_total: float
    fees_paid: float
    dividends_received: float
    cash: float
    portfolio_value: float
    positions: list[PositionSchema]
    symbols: list[str]
    assets: list[AssetSchema]
    next_preview: PreviewSchema | None = None
    next_preview_insights: PreviewInsightsSchema | None = None


class BehaviorMetricsSchema(CamelModel):
    avg_turnover: float
    avg_concentration: float
    avg_cash_ratio: float
    annualized_volatility: float
    max_drawdown: float
    trade_activity: float
    turnover_std: float
    avg_top_weight: float
    fee_intensity: float
    decision_drift: float
    direction_flip_rate: float


class BehaviorSummarySchema(CamelModel):
    avg_turnover: float
    avg_concentration_hhi: float
    avg_cash_ratio: float
    rebalances_completed: int
    trades_executed: int
    metrics: BehaviorMetricsSchema


class InvestorProfileSchema(CamelModel):
    code: str
    type: str
    axes: dict[str, str]
    axis_scores: dict[str, int]
    recommendation: str


class FinishResponse(CamelModel):
    simulation_id: str
    start_date: dt.date
    end_date: dt.date
    final_value: float
    total_return: float
    cagr: float
    max_drawdown: float
    annualized_volatility: float
    fees_paid: float
    dividends_received: float
    benchmark: BenchmarkComparisonSchema
    benchmark_comparisons: list[BenchmarkComparisonSchema]
    benchmark_series: list[BenchmarkSeriesSchema]
    final_weights: dict[str, float]
    timeline: list[PointSchema]
    behavior: BehaviorSummarySchema
    investor_profile: InvestorProfileSchema
    guidance: list[str]


class TimelineResponse(CamelModel):
    simulation_id: str
    start_date: dt.date
    end_date: dt.date
    timeline: list[PointSchema]
    benchmark_series: list[BenchmarkSeriesSchema]


class ReplayFrameSchema(CamelModel):
    date: dt.date
    prices: dict[str, float]


class ReplayResponse(CamelModel):
    simulation_id: str
    start_date: dt.date
    end_date: dt.date
    symbols: list[str]
    frames: list[ReplayFrameSchema]


class BenchmarkProjectionSchema(CamelModel):
    symbol: str
    ok: bool
    projected_return_to_end: float | None = None
    series: list[PointSchema]
    error: str | None = None


class ProjectionResponse(CamelModel):
    simulation_id: str
    current_date: dt.date
    end_date: dt.date
    current_value: float
    projected_end_value: float
    projected_return_to_end: float
    periods_remaining: int
    projected_timeline: list[PointSchema]
    benchmark_projection: list[BenchmarkProjectionSchema]


class BriefingAssetSchema(CamelModel):
    symbol: str
    base_symbol: str
    display_name: str
    type: str
    price: float
    quantity: float
    value: float
    weight: float
    period_return: float | None = None
    daily_return: float | None = None
    latest_dividend: DividendSchema | None = None
    earnings_date: dt.date | None = None
    headlines: list[HeadlineSchema]


class MarketBriefingResponse(CamelModel):
    simulation_id: str
    date: dt.date
    since_date: dt.date
    total_value: float
    cash: float
    assets: list[BriefingAssetSchema]


class SearchedAssetSchema(CamelModel):
    symbol: str
    display_name: str
    in_portfolio: bool
    portfolio_symbol: str | None = None
    price: float
    quantity: float
    value: float
    weight: float
    period_return: float | None = None
    daily_return: float | None = None
    latest_dividend: DividendSchema | None = None
    earnings_date: dt.date | None = None
    headlines: list[HeadlineSchema]


class MarketSearchResponse(CamelModel):
    simulation_id: str
    query: str
    date: dt.date
    since_date: dt.date
    asset: SearchedAssetSchema


__all__ = [
    "AddAssetRequest",
    "AddAssetResponse",
    "FinishResponse",
    "MarketBriefingResponse",
    "MarketSearchRequest",
    "MarketSearchResponse",
    "ProjectionResponse",
    "RebalanceRequest",
    "RebalanceResponse",
    "ReplayResponse",
    "SimulationStateResponse",
    "StartSimulationRequest",
    "TargetEntrySchema",
    "TimelineResponse",
    "TradeRequest",
    "TradeResponse",
]
