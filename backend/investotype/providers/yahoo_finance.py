"""Yahoo Finance client used for price history, symbol search and symbol intel."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx

from investotype.config import AppSettings, get_settings

logger = logging.getLogger(__name__)


class YahooFinanceError(RuntimeError):
    """Raised when Yahoo Finance is unreachable or returns an error payload."""


def _epoch(day: date, at: time) -> int:
    return int(datetime.combine(day, at, tzinfo=timezone.utc).timestamp())


class YahooFinanceClient:
    """Thin async wrapper over the public chart, search and quoteSummary endpoints."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        headers = {"User-Agent": self.settings.yahoo_user_agent}
        attempts = self.settings.market_data_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.settings.market_data_timeout_seconds,
                )
            except httpx.TransportError as exc:
                last_error = exc
                logger.warning("Yahoo request to %s failed (attempt %d/%d): %s", url, attempt, attempts, exc)
                continue
            if response.status_code >= 400:
                raise YahooFinanceError(f"Yahoo request failed ({response.status_code}) for {url}")
            try:
                return response.json()
            except ValueError as exc:
                raise YahooFinanceError("Yahoo returned invalid JSON payload") from exc
        raise YahooFinanceError(f"Failed to reach Yahoo Finance: {last_error}") from last_error

    async def chart(self, symbol: str, start: date, end: date) -> dict[str, Any]:
        """Return the first chart result for ``symbol`` with dividend events."""

        url = f"{self.settings.yahoo_chart_url.rstrip('/')}/{quote(symbol, safe='')}"
        params = {
            "interval": "1d",
            "period1": _epoch(start, time.min),
            "period2": _epoch(end, time(23, 59, 59)),
            "events": "div,splits",
            "includeAdjustedClose": "true",
        }
        payload = await self._get_json(url, params)
        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise YahooFinanceError(f"Unexpected chart payload for {symbol}")
        error = chart.get("error")
        if error:
            description = error.get("description") if isinstance(error, dict) else error
            raise YahooFinanceError(f"Yahoo error for {symbol}: {description or 'unknown error'}")
        results = chart.get("result") or []
        if not results or not isinstance(results[0], dict):
            raise YahooFinanceError(f"No historical data for {symbol}")
        return results[0]

    async def search(self, query: str, *, quotes_count: int = 15, news_count: int = 0) -> dict[str, Any]:
        params = {"q": query, "quotesCount": quotes_count, "newsCount": news_count}
        payload = await self._get_json(self.settings.yahoo_search_url, params)
        if not isinstance(payload, dict):
            raise YahooFinanceError("Unexpected search payload")
        return payload

    async def quote_summary(self, symbol: str, modules: str) -> dict[str, Any] | None:
        url = f"{self.settings.yahoo_quote_summary_url.rstrip('/')}/{quote(symbol, safe='')}"
        payload = await self._get_json(url, {"modules": modules})
        results = (payload.get("quoteSummary") or {}).get("result") if isinstance(payload, dict) else None
        if not results:
            return None
        return results[0]


def parse_epoch_date(raw: Any) -> date | None:
    try:
        return datetime.fromtimestamp(float(raw), tz=timezone.utc).date()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def padded_window(start: date, end: date, settings: AppSettings) -> tuple[date, date]:
    """Extend a requested range so nearest-price lookups at the edges always hit a row."""

    return (
        start - timedelta(days=settings.market_fetch_backfill_days),
        end + timedelta(days=settings.market_fetch_forward_days),
    )


__all__ = ["YahooFinanceClient", "YahooFinanceError", "padded_window", "parse_epoch_date"]
