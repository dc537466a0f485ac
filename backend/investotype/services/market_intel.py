"""Cached earnings dates and headlines used to decorate holdings."""

from __future__ import annotations

import asyncio
import logging
from datetime import date

from investotype.config import AppSettings, get_settings
from investotype.core.cache import TTLCache
from investotype.core.errors import DataUnavailableError
from investotype.services.market_data import Headline, MarketDataProvider

logger = logging.getLogger(__name__)

MAX_HEADLINES = 5


class MarketIntel:
    """Optional enrichment. Lookup failures are logged and reported as "nothing known"."""

    def __init__(
        self,
        provider: MarketDataProvider,
        settings: AppSettings | None = None,
        *,
        earnings_cache: TTLCache[str, date | None] | None = None,
        news_cache: TTLCache[str, list[Headline]] | None = None,
    ) -> None:
        self.provider = provider
        settings = settings or get_settings()
        self._earnings: TTLCache[str, date | None] = earnings_cache or TTLCache(
            settings.earnings_cache_ttl_hours * 3600
        )
        self._news: TTLCache[str, list[Headline]] = news_cache or TTLCache(settings.news_cache_ttl_minutes * 60)

    async def earnings_date(self, symbol: str) -> date | None:
        found, cached = self._earnings.lookup(symbol)
        if found:
            return cached
        try:
            value = await self.provider.earnings_date(symbol)
        except DataUnavailableError as exc:
            logger.warning("Earnings date lookup failed for %s: %s", symbol, exc)
            return None
        self._earnings.set(symbol, value)
        return value

    async def headlines(self, symbol: str, *, as_of: date, limit: int = 3) -> list[Headline]:
        """Recent headlines published on or before ``as_of`` (undated items are kept)."""

        found, cached = self._news.lookup(symbol)
        if found and cached is not None:
            items = cached
        else:
            try:
                items = await self.provider.news_headlines(symbol)
            except DataUnavailableError as exc:
                logger.warning("Headline lookup failed for %s: %s", symbol, exc)
                return []
            items = items[:MAX_HEADLINES]
            self._news.set(symbol, items)
        visible = [item for item in items if item.date is None or item.date <= as_of]
        return visible[: max(1, min(MAX_HEADLINES, limit))]

    async def lookup(self, symbol: str, *, as_of: date, historical: bool, limit: int = 3) -> tuple[date | None, list[Headline]]:
        """Earnings date and headlines together; earnings are hidden for historical views."""

        earnings, headlines = await asyncio.gather(
            self.earnings_date(symbol),
            self.headlines(symbol, as_of=as_of, limit=limit),
        )
        return (None if historical else earnings), headlines


__all__ = ["MarketIntel"]
