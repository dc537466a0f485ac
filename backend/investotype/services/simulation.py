"""Simulation use cases: session lifecycle, orders, reports and read-only views."""

from __future__ import annotations

import asyncio
import logging
import math
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import AsyncIterator, Callable

from investotype.config import AppSettings, get_settings
from investotype.core.errors import (
    AlreadyCompletedError,
    DataUnavailableError,
    InputValidationError,
    PriceUnavailableError,
    SessionNotFoundError,
)
from investotype.core.telemetry import SimulationTelemetry
from investotype.services import analytics, engine
from investotype.services.assets import (
    AssetDescriptor,
    AssetResolver,
    Resolution,
    is_likely_ticker,
    normalize_symbol,
    parse_asset_token,
)
from investotype.services.history import History, PriceQuote
from investotype.services.market_data import Headline, MarketDataProvider
from investotype.services.market_intel import MarketIntel
from investotype.services.prices import HistoryProvider
from investotype.services.sessions import (
    Frequency,
    InMemorySessionStore,
    Session,
    SessionStore,
    Snapshot,
    build_schedule,
)
from investotype.services.timeline import ReplayFrame, daily_timeline, rebased_series, replay_frames

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

GUIDANCE = (
    "This simulator is educational and not financial advice.",
    "Repeat the simulation across different years to reduce period bias.",
    "Compare your behavior metrics against your risk tolerance survey.",
)
VALIDATION_LOOKBACK_DAYS = 90
PRICE_LOOKBACK_DAYS = 365
PRICE_LOOKAHEAD_DAYS = 2
HISTORICAL_VIEW_DAYS = 7
FALLBACK_BENCHMARK = "SPY"


def parse_iso_date(value: object, field_name: str) -> date:
    text = str(value or "").strip()
    if not _ISO_DATE.match(text):
        raise InputValidationError(f"{field_name} must be YYYY-MM-DD")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise InputValidationError(f"{field_name} must be YYYY-MM-DD") from None


# Views returned to the transport layer


@dataclass(frozen=True)
class StartConfig:
    start_date: str
    end_date: str
    frequency: str
    initial_cash: float
    assets: list[str]
    benchmark_symbols: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Preview:
    date: date
    portfolio_value: float
    prices: dict[str, float]


@dataclass(frozen=True)
class PositionView:
    symbol: str
    quantity: float
    cost_basis: float
    first_buy_price: float
    realized_profit: float
    average_price: float


@dataclass(frozen=True)
class SessionView:
    simulation_id: str
    start_date: date
    end_date: date
    frequency: Frequency
    symbols: list[str]
    assets: list[AssetDescriptor]
    benchmark_symbols: list[str]
    initial_cash: float
    cash: float
    fees_paid: float
    dividends_received: float
    step_index: int
    total_steps: int
    next_rebalance_date: date | None
    completed: bool
    positions: list[PositionView]
    decisions: int
    trades: int
    preview: Preview | None
    preview_insights: engine.PreviewInsights | None


@dataclass(frozen=True)
class AddAssetResult:
    simulation_id: str
    symbols: list[str]
    assets: list[AssetDescriptor]
    already_exists: bool
    preview: Preview | None = None
    preview_insights: engine.PreviewInsights | None = None


@dataclass(frozen=True)
class RebalanceView:
    date: date
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
    positions: list[PositionView]
    step_index: int
    total_steps: int
    next_rebalance_date: date | None
    symbols: list[str]
    assets: list[AssetDescriptor]
    next_preview: Preview | None
    next_preview_insights: engine.PreviewInsights | None


@dataclass(frozen=True)
class TradeView:
    date: date
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
    positions: list[PositionView]
    symbols: list[str]
    assets: list[AssetDescriptor]
    next_preview: Preview | None
    next_preview_insights: engine.PreviewInsights | None


@dataclass(frozen=True)
class BenchmarkComparison:
    symbol: str
    total_return: float | None
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class BenchmarkSeries:
    symbol: str
    points: list[Snapshot]


@dataclass(frozen=True)
class BehaviorSummary:
    avg_turnover: float
    avg_concentration_hhi: float
    avg_cash_ratio: float
    rebalances_completed: int
    trades_executed: int
    metrics: analytics.BehaviorMetrics


@dataclass(frozen=True)
class FinishReport:
    simulation_id: str
    start_date: date
    end_date: date
    final_value: float
    total_return: float
    cagr: float
    max_drawdown: float
    annualized_volatility: float
    fees_paid: float
    dividends_received: float
    benchmark: BenchmarkComparison
    benchmark_comparisons: list[BenchmarkComparison]
    benchmark_series: list[BenchmarkSeries]
    final_weights: dict[str, float]
    timeline: list[Snapshot]
    behavior: BehaviorSummary
    investor_profile: analytics.InvestorProfile
    guidance: list[str]


@dataclass(frozen=True)
class TimelineView:
    simulation_id: str
    start_date: date
    end_date: date
    timeline: list[Snapshot]
    benchmark_series: list[BenchmarkSeries]


@dataclass(frozen=True)
class ReplayView:
    simulation_id: str
    start_date: date
    end_date: date
    symbols: list[str]
    frames: list[ReplayFrame]


@dataclass(frozen=True)
class BenchmarkProjection:
    symbol: str
    ok: bool
    projected_return_to_end: float | None
    series: list[Snapshot]
    error: str | None = None


@dataclass(frozen=True)
class ProjectionView:
    simulation_id: str
    current_date: date
    end_date: date
    current_value: float
    projected_end_value: float
    projected_return_to_end: float
    periods_remaining: int
    projected_timeline: list[Snapshot]
    benchmark_projection: list[BenchmarkProjection]


@dataclass(frozen=True)
class DividendInfo:
    date: date
    amount: float


@dataclass(frozen=True)
class BriefingAsset:
    symbol: str
    base_symbol: str
    display_name: str
    type: str
    price: float
    quantity: float
    value: float
    weight: float
    period_return: float | None
    daily_return: float | None
    latest_dividend: DividendInfo | None
    earnings_date: date | None
    headlines: list[Headline]


@dataclass(frozen=True)
class MarketBriefing:
    simulation_id: str
    date: date
    since_date: date
    total_value: float
    cash: float
    assets: list[BriefingAsset]


@dataclass(frozen=True)
class SearchedAsset:
    symbol: str
    display_name: str
    in_portfolio: bool
    portfolio_symbol: str | None
    price: float
    quantity: float
    value: float
    weight: float
    period_return: float | None
    daily_return: float | None
    latest_dividend: DividendInfo | None
    earnings_date: date | None
    headlines: list[Headline]


@dataclass(frozen=True)
class MarketSearchResult:
    simulation_id: str
    query: str
    date: date
    since_date: date
    asset: SearchedAsset


@dataclass(frozen=True)
class AssetCheck:
    ok: bool
    asset: AssetDescriptor


@dataclass(frozen=True)
class AssetPrice:
    asset: AssetDescriptor
    date: date
    price: float


def _preview(valuation: engine.Valuation) -> Preview:
    return Preview(
        date=valuation.date,
        portfolio_value=valuation.total,
        prices={symbol: quote.price for symbol, quote in valuation.prices.items()},
    )


def _positions(session: Session) -> list[PositionView]:
    return [
        PositionView(
            symbol=symbol,
            quantity=position.quantity,
            cost_basis=position.cost_basis,
            first_buy_price=position.first_buy_price,
            realized_profit=position.realized_profit,
            average_price=position.average_price,
        )
        for symbol, position in session.positions.items()
    ]


def _dividend(quote: PriceQuote | None) -> DividendInfo | None:
    return DividendInfo(date=quote.date, amount=quote.price) if quote else None


class SimulationService:
    """Entry point for every simulation operation.

    Each session is guarded by its own ``asyncio.Lock``; network calls happen
    before any session mutation so a failed fetch never leaves partial state.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        settings: AppSettings | None = None,
        *,
        store: SessionStore | None = None,
        model: analytics.ClassificationModel | None = None,
        today: Callable[[], date] = date.today,
        telemetry: SimulationTelemetry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        ttl_hours = self.settings.session_ttl_hours
        self.store: SessionStore = store or InMemorySessionStore(ttl_hours * 3600 if ttl_hours else None)
        self.histories = HistoryProvider(provider, self.settings)
        self.resolver = AssetResolver(provider)
        self.intel = MarketIntel(provider, self.settings)
        self.model = model or analytics.ClassificationModel()
        self._today = today
        self.telemetry = telemetry or SimulationTelemetry()
        self._locks: dict[str, asyncio.Lock] = {}

    def _prune_locks(self) -> None:
        """Forget idle locks of sessions the store no longer holds (expired or removed)."""

        stale = [sid for sid, lock in self._locks.items() if not lock.locked() and sid not in self.store]
        for sid in stale:
            del self._locks[sid]

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[Session]:
        self._prune_locks()
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = self.store.get(session_id)
            if session is None:
                self._locks.pop(session_id, None)
                raise SessionNotFoundError(session_id)
            yield session

    async def _load_asset(self, asset: AssetDescriptor, start: date, end: date) -> tuple[AssetDescriptor, History]:
        enriched, history = await asyncio.gather(
            self.resolver.enrich(asset),
            self.histories.get_history(asset, start, end),
        )
        return enriched, history

    def _parse(self, token: str) -> AssetDescriptor:
        return parse_asset_token(token, savings_apy=self.settings.savings_apy)

    def _safe_preview(self, session: Session, day: date | None) -> tuple[Preview | None, engine.PreviewInsights | None]:
        if day is None:
            return None, None
        try:
            valuation = engine.value_at(session, day)
        except PriceUnavailableError as exc:
            logger.warning("Preview unavailable for session %s on %s: %s", session.id, day, exc)
            return None, None
        return _preview(valuation), engine.preview_insights(session, valuation)

    def _assets(self, session: Session) -> list[AssetDescriptor]:
        return [session.assets[symbol] for symbol in session.symbols]

    # Lifecycle

    async def start(self, config: StartConfig) -> SessionView:
        start = parse_iso_date(config.start_date, "startDate")
        end = parse_iso_date(config.end_date, "endDate")
        if start >= end:
            raise InputValidationError("endDate must be after startDate")
        try:
            frequency = Frequency(str(config.frequency).lower())
        except ValueError:
            raise InputValidationError("frequency must be daily, weekly, or monthly") from None
        initial_cash = float(config.initial_cash)
        if not math.isfinite(initial_cash) or initial_cash <= 0:
            raise InputValidationError("initialCash must be > 0")
        tokens = [normalize_symbol(token) for token in config.assets if normalize_symbol(token)]
        if not tokens:
            raise InputValidationError("Provide at least one investment asset.")

        parsed = list({asset.id: asset for asset in map(self._parse, tokens)}.values())
        benchmarks = list(dict.fromkeys(s for s in map(normalize_symbol, config.benchmark_symbols) if s))
        benchmarks = benchmarks[: self.settings.max_benchmarks]
        schedule = build_schedule(start, end, frequency)

        loaded = await asyncio.gather(*(self._load_asset(asset, start, end) for asset in parsed))

        session = Session(
            start_date=start,
            end_date=end,
            frequency=frequency,
            schedule=schedule,
            initial_cash=initial_cash,
            cash=initial_cash,
            benchmark_symbols=benchmarks,
        )
        for asset, history in loaded:
            session.add_symbol(asset, history)
        valuation = engine.value_at(session, schedule[0])
        self._prune_locks()
        self.store.put(session)
        logger.info(
            "Started session %s: %s..%s %s with %d assets",
            session.id,
            start.isoformat(),
            end.isoformat(),
            frequency.value,
            len(session.symbols),
        )
        self.telemetry.session_started(frequency.value, len(session.symbols))
        return self._view(session, (_preview(valuation), engine.preview_insights(session, valuation)))

    def _view(
        self,
        session: Session,
        preview: tuple[Preview | None, engine.PreviewInsights | None] | None = None,
    ) -> SessionView:
        if preview is None:
            preview = self._safe_preview(session, session.current_date or session.end_date)
        return SessionView(
            simulation_id=session.id,
            start_date=session.start_date,
            end_date=session.end_date,
            frequency=session.frequency,
            symbols=list(session.symbols),
            assets=self._assets(session),
            benchmark_symbols=list(session.benchmark_symbols),
            initial_cash=session.initial_cash,
            cash=session.cash,
            fees_paid=session.fees_paid,
            dividends_received=session.total_dividends_received,
            step_index=session.step_index,
            total_steps=session.total_steps,
            next_rebalance_date=session.current_date,
            completed=session.completed,
            positions=_positions(session),
            decisions=len(session.decisions),
            trades=len(session.trades),
            preview=preview[0],
            preview_insights=preview[1],
        )

    async def get(self, session_id: str) -> SessionView:
        async with self._locked(session_id) as session:
            return self._view(session)

    async def remove(self, session_id: str) -> None:
        """Discard a session. Waiting callers then see it as not found."""

        async with self._locked(session_id) as session:
            self.store.remove(session.id)
        self._prune_locks()
        logger.info("Removed session %s", session_id)

    async def add_asset(self, session_id: str, token: str) -> AddAssetResult:
        async with self._locked(session_id) as session:
            if session.completed:
                raise AlreadyCompletedError()
            if not normalize_symbol(token):
                raise InputValidationError("token is required")
            asset = self._parse(token)
            if asset.id in session.symbols:
                return AddAssetResult(
                    simulation_id=session.id,
                    symbols=list(session.symbols),
                    assets=self._assets(session),
                    already_exists=True,
                )
            enriched, history = await self._load_asset(asset, session.start_date, session.end_date)
            session.add_symbol(enriched, history)
            logger.info("Session %s added asset %s", session.id, asset.id)
            preview, insights = self._safe_preview(session, session.current_date)
            return AddAssetResult(
                simulation_id=session.id,
                symbols=list(session.symbols),
                assets=self._assets(session),
                already_exists=False,
                preview=preview,
                preview_insights=insights,
            )

    async def rebalance(self, session_id: str, allocation: engine.Allocation, *, skip_fees: bool = False) -> RebalanceView:
        async with self._locked(session_id) as session:
            result = engine.rebalance(session, allocation, fee_rate=self.settings.fee_rate, skip_fees=skip_fees)
            self.telemetry.rebalanced(result.decision.allocation_mode, result.decision.fee)
            next_date = session.current_date
            if next_date is not None:
                next_preview, next_insights = self._safe_preview(session, next_date)
            else:
                next_preview = None
                next_insights = engine.preview_insights(session, engine.value_at(session, result.date))
            reference = result.reference
            decision = result.decision
            return RebalanceView(
                date=result.date,
                portfolio_value=decision.portfolio_value,
                cash=session.cash,
                fee=decision.fee,
                fees_paid=session.fees_paid,
                dividends_received=session.total_dividends_received,
                allocation_mode=decision.allocation_mode,
                per_asset_modes=decision.per_asset_modes,
                requested_inputs=decision.requested_inputs,
                target_values=decision.target_values,
                actual_weights=decision.actual_weights,
                budget_used=result.plan.budget_used,
                budget_used_ratio=result.plan.budget_used / reference.total if reference.total > 0 else 0.0,
                reference_portfolio_value=reference.total,
                reference_prices={symbol: quote.price for symbol, quote in reference.prices.items()},
                turnover=decision.turnover,
                concentration_hhi=decision.concentration,
                archived_symbols=result.archived,
                positions=_positions(session),
                step_index=session.step_index,
                total_steps=session.total_steps,
                next_rebalance_date=next_date,
                symbols=list(session.symbols),
                assets=self._assets(session),
                next_preview=next_preview,
                next_preview_insights=next_insights,
            )

    async def trade(self, session_id: str, order: engine.TradeOrder) -> TradeView:
        async with self._locked(session_id) as session:
            result = engine.trade(session, order, fee_rate=self.settings.fee_rate)
            self.telemetry.traded(result.record.fee)
            next_preview, next_insights = self._safe_preview(session, session.current_date)
            record = result.record
            return TradeView(
                date=result.date,
                sell_symbol=record.sell_symbol,
                buy_symbol=record.buy_symbol,
                liquidate_all=order.liquidate_all,
                sold_value=record.sold_value,
                sold_units=record.sold_units,
                bought_value=record.bought_value,
                bought_units=record.bought_units,
                fee_total=record.fee,
                fees_paid=session.fees_paid,
                dividends_received=session.total_dividends_received,
                cash=session.cash,
                portfolio_value=result.portfolio_value,
                positions=_positions(session),
                symbols=list(session.symbols),
                assets=self._assets(session),
                next_preview=next_preview,
                next_preview_insights=next_insights,
            )

    async def _benchmark_history(self, symbol: str, start: date, end: date) -> History:
        return await self.histories.market_history(symbol, start, end)

    async def _gather_benchmarks(
        self, symbols: list[str], start: date, end: date
    ) -> list[tuple[str, History | None, str | None]]:
        async def load(symbol: str) -> tuple[str, History | None, str | None]:
            try:
                return symbol, await self._benchmark_history(symbol, start, end), None
            except DataUnavailableError as exc:
                logger.warning("Benchmark %s unavailable: %s", symbol, exc)
                return symbol, None, str(exc)

        return list(await asyncio.gather(*(load(symbol) for symbol in symbols)))

    async def finish(self, session_id: str) -> FinishReport:
        """Close the session and build the final report. Calling it again rebuilds the report."""

        async with self._locked(session_id) as session:
            end = session.end_date
            benchmarks = await self._gather_benchmarks(session.benchmark_symbols, session.start_date, end)
            final = engine.value_at(session, end)
            engine.settle_dividends(session, end)

            final_value = final.total
            timeline = session.snapshots + [Snapshot(date=end, value=final_value)]
            values = [point.value for point in timeline]
            drawdown = analytics.max_drawdown(values)
            volatility = analytics.annualized_volatility(values)
            final_weights = {symbol: final.weight(symbol) for symbol in session.symbols}
            metrics = analytics.behavior_metrics(
                session,
                final_value=final_value,
                final_weights=final_weights,
                volatility=volatility,
                drawdown=drawdown,
            )
            profile = analytics.classify_investor(metrics, self.model)

            comparisons: list[BenchmarkComparison] = []
            series: list[BenchmarkSeries] = []
            for symbol, history, error in benchmarks:
                if history is None:
                    comparisons.append(BenchmarkComparison(symbol=symbol, total_return=None, ok=False, error=error))
                    continue
                start_quote = history.nearest(session.start_date, "adj_close")
                end_quote = history.on_or_before(end, "adj_close")
                total_return = None
                if start_quote and end_quote and start_quote.price > 0:
                    total_return = end_quote.price / start_quote.price - 1
                comparisons.append(BenchmarkComparison(symbol=symbol, total_return=total_return, ok=total_return is not None))
                points = rebased_series(history, session.start_date, [p.date for p in timeline], session.initial_cash)
                if points:
                    series.append(BenchmarkSeries(symbol=symbol, points=points))

            if not session.completed:
                self.telemetry.session_finished(profile.code)
            session.completed = True
            logger.info("Session %s finished: final=%.2f profile=%s", session.id, final_value, profile.code)

            return FinishReport(
                simulation_id=session.id,
                start_date=session.start_date,
                end_date=end,
                final_value=final_value,
                total_return=final_value / session.initial_cash - 1,
                cagr=analytics.cagr(session.initial_cash, final_value, session.start_date, end),
                max_drawdown=drawdown,
                annualized_volatility=volatility,
                fees_paid=session.fees_paid,
                dividends_received=session.total_dividends_received,
                benchmark=comparisons[0]
                if comparisons
                else BenchmarkComparison(symbol=FALLBACK_BENCHMARK, total_return=None, ok=False),
                benchmark_comparisons=comparisons,
                benchmark_series=series,
                final_weights=final_weights,
                timeline=timeline,
                behavior=BehaviorSummary(
                    avg_turnover=metrics.avg_turnover,
                    avg_concentration_hhi=metrics.avg_concentration,
                    avg_cash_ratio=metrics.avg_cash_ratio,
                    rebalances_completed=len(session.decisions),
                    trades_executed=len(session.trades),
                    metrics=metrics,
                ),
                investor_profile=profile,
                guidance=list(GUIDANCE),
            )

    # Read-only views

    async def timeline(self, session_id: str, end: date | None = None) -> TimelineView:
        async with self._locked(session_id) as session:
            end = end or session.current_date or session.end_date
            if end < session.start_date:
                raise InputValidationError("endDate is before simulation startDate")
            points = daily_timeline(session, end)

            missing = [s for s in session.benchmark_symbols if s not in session.benchmark_histories]
            for symbol, history, _ in await self._gather_benchmarks(missing, session.start_date, session.end_date):
                if history is not None:
                    session.benchmark_histories[symbol] = history

            series: list[BenchmarkSeries] = []
            dates = [point.date for point in points]
            for symbol in session.benchmark_symbols:
                history = session.benchmark_histories.get(symbol)
                if history is None:
                    continue
                rebased = rebased_series(history, session.start_date, dates, session.initial_cash)
                if len(rebased) >= 2:
                    series.append(BenchmarkSeries(symbol=symbol, points=rebased))
            return TimelineView(
                simulation_id=session.id,
                start_date=session.start_date,
                end_date=end,
                timeline=points,
                benchmark_series=series,
            )

    async def replay(self, session_id: str) -> ReplayView:
        async with self._locked(session_id) as session:
            return ReplayView(
                simulation_id=session.id,
                start_date=session.start_date,
                end_date=session.end_date,
                symbols=list(session.symbols),
                frames=replay_frames(session),
            )

    async def projection(self, session_id: str) -> ProjectionView:
        """Value of holding the current portfolio unchanged until the end date."""

        async with self._locked(session_id) as session:
            current_date = session.snapshots[-1].date if session.snapshots else session.start_date
            dates = sorted({current_date, session.end_date, *(d for d in session.schedule if d >= current_date)})
            projected = [Snapshot(date=day, value=engine.value_at(session, day).total) for day in dates]
            current_value = projected[0].value
            end_value = projected[-1].value
            benchmarks = await self._gather_benchmarks(session.benchmark_symbols, current_date, session.end_date)

            projections: list[BenchmarkProjection] = []
            for symbol, history, error in benchmarks:
                points = rebased_series(history, current_date, dates, current_value) if history is not None else []
                if not points:
                    projections.append(
                        BenchmarkProjection(
                            symbol=symbol,
                            ok=False,
                            projected_return_to_end=None,
                            series=[],
                            error=error,
                        )
                    )
                    continue
                projected_return = points[-1].value / current_value - 1 if current_value > 0 else None
                projections.append(
                    BenchmarkProjection(
                        symbol=symbol,
                        ok=projected_return is not None,
                        projected_return_to_end=projected_return,
                        series=points,
                    )
                )

            return ProjectionView(
                simulation_id=session.id,
                current_date=current_date,
                end_date=session.end_date,
                current_value=current_value,
                projected_end_value=end_value,
                projected_return_to_end=end_value / current_value - 1 if current_value > 0 else 0.0,
                periods_remaining=max(0, len(dates) - 1),
                projected_timeline=projected,
                benchmark_projection=projections,
            )

    def _is_historical(self, day: date) -> bool:
        return day < self._today() - timedelta(days=HISTORICAL_VIEW_DAYS)

    async def market_briefing(
        self,
        session_id: str,
        *,
        day: date | None = None,
        since: date | None = None,
    ) -> MarketBriefing:
        async with self._locked(session_id) as session:
            day = day or session.current_date or session.end_date
            if since is None:
                since = session.snapshots[-1].date if session.snapshots else session.start_date
            historical = self._is_historical(day)
            valuation = engine.value_at(session, day)

            async def describe(symbol: str) -> BriefingAsset:
                asset = session.assets[symbol]
                history = session.histories[symbol]
                earnings: date | None = None
                headlines: list[Headline] = []
                if not asset.type.is_synthetic:
                    earnings, headlines = await self.intel.lookup(asset.symbol, as_of=day, historical=historical)
                cash_bucket = session.is_cash(symbol)
                return BriefingAsset(
                    symbol=symbol,
                    base_symbol=asset.symbol,
                    display_name=asset.display_name or asset.label or symbol,
                    type=asset.type.value,
                    price=valuation.price(symbol),
                    quantity=valuation.cash if cash_bucket else session.positions[symbol].quantity,
                    value=valuation.values[symbol],
                    weight=valuation.weight(symbol),
                    period_return=history.return_between(since, day),
                    daily_return=history.daily_return_at(day),
                    latest_dividend=_dividend(history.latest_dividend(day)),
                    earnings_date=earnings,
                    headlines=headlines,
                )

            assets = await asyncio.gather(*(describe(symbol) for symbol in session.symbols))
            return MarketBriefing(
                simulation_id=session.id,
                date=day,
                since_date=since,
                total_value=valuation.total,
                cash=valuation.cash,
                assets=list(assets),
            )

    async def market_search(
        self,
        session_id: str,
        query: str,
        *,
        day: date | None = None,
        since: date | None = None,
    ) -> MarketSearchResult:
        text = str(query or "").strip()
        if not text:
            raise InputValidationError("query is required")
        async with self._locked(session_id) as session:
            day = day or session.current_date or session.end_date
            if since is None or since > day:
                since = session.start_date

            resolved_name = ""
            if is_likely_ticker(text):
                symbol = normalize_symbol(text)
            else:
                best = (await self.resolver.resolve_by_name(text)).best
                symbol = best.symbol
                resolved_name = (best.longname or best.shortname).strip()

            history = await self.histories.market_history(symbol, session.start_date, session.end_date)
            current = history.nearest(day, "close")
            if current is None:
                raise PriceUnavailableError(f"No price found for {symbol} on or near {day.isoformat()}.")
            valuation = engine.value_at(session, day)
            held = next(
                (s for s in session.symbols if s == symbol or session.assets[s].base_symbol == symbol),
                None,
            )
            quantity = session.positions[held].quantity if held else 0.0
            value = quantity * current.price
            earnings, headlines = await self.intel.lookup(symbol, as_of=day, historical=self._is_historical(day))
            held_meta = session.assets.get(held) if held else None
            display_name = (held_meta.display_name or held_meta.label) if held_meta else (resolved_name or symbol)

            return MarketSearchResult(
                simulation_id=session.id,
                query=text,
                date=day,
                since_date=since,
                asset=SearchedAsset(
                    symbol=symbol,
                    display_name=display_name,
                    in_portfolio=held is not None,
                    portfolio_symbol=held,
                    price=current.price,
                    quantity=quantity,
                    value=value,
                    weight=value / valuation.total if valuation.total > 0 else 0.0,
                    period_return=history.return_between(since, day),
                    daily_return=history.daily_return_at(day),
                    latest_dividend=_dividend(history.latest_dividend(day)),
                    earnings_date=earnings,
                    headlines=headlines,
                ),
            )

    # Sessionless asset helpers

    async def validate_asset(self, token: str) -> AssetCheck:
        """Parse a token and confirm its base symbol has recent market data."""

        if not normalize_symbol(token):
            raise InputValidationError("token is required")
        asset = self._parse(token)
        if not asset.type.is_synthetic:
            today = self._today()
            await self.histories.market_history(
                asset.symbol, today - timedelta(days=VALIDATION_LOOKBACK_DAYS), today
            )
        return AssetCheck(ok=True, asset=asset)

    async def asset_price(self, token: str, day: date | None = None) -> AssetPrice:
        if not normalize_symbol(token):
            raise InputValidationError("token is required")
        asset = self._parse(token)
        day = day or self._today()
        history = await self.histories.get_history(
            asset,
            day - timedelta(days=PRICE_LOOKBACK_DAYS),
            day + timedelta(days=PRICE_LOOKAHEAD_DAYS),
        )
        quote = history.require_nearest(day, "close", symbol=asset.id)
        return AssetPrice(asset=asset, date=quote.date, price=quote.price)

    async def resolve_asset(self, query: str, *, prefer_bond: bool = False) -> Resolution:
        return await self.resolver.resolve(query, prefer_bond=prefer_bond)


__all__ = [
    "AddAssetResult",
    "AssetCheck",
    "AssetPrice",
    "FinishReport",
    "MarketBriefing",
    "MarketSearchResult",
    "ProjectionView",
    "RebalanceView",
    "ReplayView",
    "SessionView",
    "SimulationService",
    "StartConfig",
    "TimelineView",
    "TradeView",
    "parse_iso_date",
]
