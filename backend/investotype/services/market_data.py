"""Market data access for price histories, symbol search and symbol intel."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

from opentelemetry import trace

from investotype.config import AppSettings, get_settings
from investotype.core.errors import DataUnavailableError, NoDataError, SymbolSearchError
from investotype.providers.yahoo_finance import YahooFinanceClient, YahooFinanceError, parse_epoch_date
from investotype.services.history import PricePoint

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class RawHistory:
    points: list[PricePoint]
    currency: str = "USD"


@dataclass(frozen=True)
class SymbolQuote:
    symbol: str
    shortname: str = ""
    longname: str = ""
    logo_url: str = ""
    quote_type: str = ""
    exchange: str = ""


@dataclass(frozen=True)
class Headline:
    title: str
    publisher: str = ""
    date: date | None = None


class MarketDataProvider(Protocol):
    """Collaborator supplying raw market data. Implementations raise the typed errors."""

    async def daily_history(self, symbol: str, start: date, end: date) -> RawHistory:
        ...

    async def search_symbols(self, query: str) -> list[SymbolQuote]:
        ...

    async def earnings_date(self, symbol: str) -> date | None:
        ...

    async def news_headlines(self, symbol: str) -> list[Headline]:
        ...


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def parse_chart_result(symbol: str, result: dict[str, Any]) -> RawHistory:
    """Turn a chart ``result`` entry into price points, summing dividends per day."""

    timestamps = result.get("timestamp")
    if not isinstance(timestamps, list):
        raise NoDataError(f"No historical data for {symbol}")

    indicators = result.get("indicators") or {}
    closes = ((indicators.get("quote") or [{}])[0] or {}).get("close") or []
    adjusted = ((indicators.get("adjclose") or [{}])[0] or {}).get("adjclose") or []

    dividends: dict[date, float] = {}
    events = (result.get("events") or {}).get("dividends") or {}
    for event in events.values():
        if not isinstance(event, dict):
            continue
        amount = _number(event.get("amount"))
        day = parse_epoch_date(event.get("date"))
        if amount is None or day is None:
            continue
        dividends[day] = dividends.get(day, 0.0) + amount

    points: list[PricePoint] = []
    for index, raw_ts in enumerate(timestamps):
        day = parse_epoch_date(raw_ts)
        close = _number(closes[index]) if index < len(closes) else None
        adj_close = _number(adjusted[index]) if index < len(adjusted) else None
        if adj_close is None:
            adj_close = close
        if day is None or close is None or adj_close is None:
            continue
        points.append(PricePoint(date=day, close=close, adj_close=adj_close, dividend=dividends.get(day, 0.0)))

    if not points:
        raise NoDataError(f"No valid close prices for {symbol}")

    currency = str((result.get("meta") or {}).get("currency") or "USD").upper()
    points.sort(key=lambda p: p.date)
    return RawHistory(points=points, currency=currency)


def parse_search_quotes(payload: dict[str, Any]) -> list[SymbolQuote]:
    quotes = payload.get("quotes")
    if not isinstance(quotes, list):
        return []
    parsed: list[SymbolQuote] = []
    for item in quotes:
        if not isinstance(item, dict) or not item.get("symbol"):
            continue
        parsed.append(
            SymbolQuote(
                symbol=str(item["symbol"]).strip().upper(),
                shortname=item.get("shortname") or "",
                longname=item.get("longname") or "",
                logo_url=item.get("logoUrl") or item.get("logourl") or "",
                quote_type=item.get("quoteType") or "",
                exchange=item.get("exchDisp") or item.get("exchange") or "",
            )
        )
    return parsed


def parse_news(payload: dict[str, Any]) -> list[Headline]:
    news = payload.get("news")
    if not isinstance(news, list):
        return []
    headlines: list[Headline] = []
    for item in news:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        if not title:
            continue
        headlines.append(
            Headline(
                title=title,
                publisher=str(item.get("publisher") or "").strip(),
                date=parse_epoch_date(item.get("providerPublishTime")),
            )
        )
    return headlines


class YahooMarketData:
    """``MarketDataProvider`` backed by the public Yahoo Finance endpoints."""

    NEWS_COUNT = 8

    def __init__(self, client: YahooFinanceClient | None = None, settings: AppSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self.client = client or YahooFinanceClient(self.settings)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def daily_history(self, symbol: str, start: date, end: date) -> RawHistory:
        with tracer.start_as_current_span("market_data.daily_history") as span:
            span.set_attribute("market.symbol", symbol)
            try:
                result = await self.client.chart(symbol, start, end)
            except YahooFinanceError as exc:
                span.record_exception(exc)
                raise NoDataError(str(exc)) from exc
            history = parse_chart_result(symbol, result)
            span.set_attribute("market.rows", len(history.points))
            return history

    async def search_symbols(self, query: str) -> list[SymbolQuote]:
        query = query.strip()
        if not query:
            return []
        with tracer.start_as_current_span("market_data.search_symbols"):
            try:
                payload = await self.client.search(query)
            except YahooFinanceError as exc:
                raise SymbolSearchError(f"Symbol search failed: {exc}") from exc
        return parse_search_quotes(payload)

    async def earnings_date(self, symbol: str) -> date | None:
        try:
            summary = await self.client.quote_summary(symbol, "calendarEvents")
        except YahooFinanceError as exc:
            raise DataUnavailableError(f"Earnings calendar unavailable for {symbol}: {exc}") from exc
        if not summary:
            return None
        earnings = ((summary.get("calendarEvents") or {}).get("earnings") or {}).get("earningsDate")
        if not isinstance(earnings, list) or not earnings:
            return None
        first = earnings[0]
        raw = first.get("raw") if isinstance(first, dict) else first
        return parse_epoch_date(raw)

    async def news_headlines(self, symbol: str) -> list[Headline]:
        try:
            payload = await self.client.search(symbol, quotes_count=0, news_count=self.NEWS_COUNT)
        except YahooFinanceError as exc:
            raise DataUnavailableError(f"Headlines unavailable for {symbol}: {exc}") from exc
        return parse_news(payload)


__all__ = [
    "Headline",
    "MarketDataProvider",
    "RawHistory",
    "SymbolQuote",
    "YahooMarketData",
    "parse_chart_result",
    "parse_news",
    "parse_search_quotes",
]
