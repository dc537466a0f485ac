"""Price history retrieval: padded market fetches, FX normalisation and synthetic assets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date

from investotype.config import AppSettings, get_settings
from investotype.core.cache import TTLCache
from investotype.core.errors import DataUnavailableError, FxUnavailableError, NoDataError
from investotype.providers.yahoo_finance import padded_window
from investotype.services.assets import AssetDescriptor, AssetType
from investotype.services.history import (
    History,
    calendar_history,
    leverage_history,
    option_history,
    savings_daily_rate,
)
from investotype.services.market_data import MarketDataProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FxSeries:
    """Quotes for a currency pair. ``inverse`` means the pair is USD<CUR> (CUR per USD)."""

    pair: str
    history: History
    inverse: bool = False

    def usd_rate(self, day: date) -> float:
        quote = self.history.nearest(day, "adj_close")
        raw = quote.price if quote is not None else 0.0
        if not raw > 0:
            raise FxUnavailableError(f"Missing FX rate for {self.pair} on {day.isoformat()}")
        return 1 / raw if self.inverse else raw


class HistoryProvider:
    """Builds USD-denominated daily histories for any parsed asset."""

    def __init__(
        self,
        provider: MarketDataProvider,
        settings: AppSettings | None = None,
        *,
        fx_cache: TTLCache[tuple[str, date, date], FxSeries] | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or get_settings()
        self._fx_cache: TTLCache[tuple[str, date, date], FxSeries] = fx_cache or TTLCache()

    async def get_history(self, asset: AssetDescriptor, start: date, end: date) -> History:
        if asset.type is AssetType.CASH:
            return calendar_history(start, end)
        if asset.type is AssetType.SAVINGS:
            return calendar_history(start, end, savings_daily_rate(self.settings.savings_apy))

        base = await self.market_history(asset.symbol, start, end)
        if asset.type is AssetType.LEVERAGE:
            return leverage_history(base, asset.multiplier or 1.0)
        if asset.type is AssetType.OPTION:
            return option_history(base, asset.multiplier or 1.0, self.settings.option_daily_decay)
        return base

    async def market_history(self, symbol: str, start: date, end: date) -> History:
        """Fetch a padded window for ``symbol`` and convert it to USD when needed."""

        fetch_start, fetch_end = padded_window(start, end, self.settings)
        raw = await self.provider.daily_history(symbol, fetch_start, fetch_end)
        if not raw.points:
            raise NoDataError(f"No historical data for {symbol}")
        history = History.from_rows(raw.points)

        currency = raw.currency.upper()
        if currency in ("", self.settings.base_currency):
            return history

        fx = await self.fx_series(currency, start, end)
        converted = []
        for point in history:
            rate = fx.usd_rate(point.date)
            converted.append(
                replace(
                    point,
                    close=point.close * rate,
                    adj_close=point.adj_close * rate,
                    dividend=point.dividend * rate,
                )
            )
        logger.debug("Converted %s from %s using %s", symbol, currency, fx.pair)
        return History(converted)

    async def fx_series(self, currency: str, start: date, end: date) -> FxSeries:
        key = (currency, start, end)
        found, cached = self._fx_cache.lookup(key)
        if found and cached is not None:
            return cached

        base = self.settings.base_currency
        fetch_start, fetch_end = padded_window(start, end, self.settings)
        direct = f"{currency}{base}=X"
        try:
            raw = await self.provider.daily_history(direct, fetch_start, fetch_end)
        except DataUnavailableError as exc:
            logger.info("Direct FX pair %s unavailable (%s); trying inverse", direct, exc)
        else:
            if raw.points:
                series = FxSeries(pair=direct, history=History.from_rows(raw.points))
                self._fx_cache.set(key, series)
                return series

        inverse = f"{base}{currency}=X"
        try:
            raw = await self.provider.daily_history(inverse, fetch_start, fetch_end)
        except DataUnavailableError as exc:
            raise FxUnavailableError(f"Unable to convert from {currency} to {base} (missing FX data).") from exc
        if not raw.points:
            raise FxUnavailableError(f"Unable to convert from {currency} to {base} (empty FX history).")
        series = FxSeries(pair=inverse, history=History.from_rows(raw.points), inverse=True)
        self._fx_cache.set(key, series)
        return series


__all__ = ["FxSeries", "HistoryProvider"]
