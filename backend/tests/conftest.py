import asyncio
import inspect
import pathlib
import sys
from datetime import date, timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from investotype.core.errors import NoDataError, SymbolSearchError  # noqa: E402
from investotype.services.history import PricePoint  # noqa: E402
from investotype.services.market_data import Headline, RawHistory, SymbolQuote  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            funcargs = pyfuncitem.funcargs
            testargs = {arg: funcargs[arg] for arg in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**testargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


def daily_points(start: date, closes: list[float], dividends: dict[int, float] | None = None) -> list[PricePoint]:
    """One row per calendar day from ``start``; ``dividends`` maps day offsets to amounts."""

    dividends = dividends or {}
    return [
        PricePoint(
            date=start + timedelta(days=offset),
            close=close,
            adj_close=close,
            dividend=dividends.get(offset, 0.0),
        )
        for offset, close in enumerate(closes)
    ]


class StubMarketData:
    """In-memory ``MarketDataProvider`` recording every call it receives."""

    def __init__(
        self,
        histories: dict[str, list[PricePoint]] | None = None,
        *,
        currencies: dict[str, str] | None = None,
        quotes: dict[str, list[SymbolQuote]] | None = None,
        earnings: dict[str, date] | None = None,
        news: dict[str, list[Headline]] | None = None,
        search_fails: bool = False,
    ) -> None:
        self.histories = histories or {}
        self.currencies = currencies or {}
        self.quotes = quotes or {}
        self.earnings = earnings or {}
        self.news = news or {}
        self.search_fails = search_fails
        self.history_calls: list[tuple[str, date, date]] = []
        self.search_calls: list[str] = []
        self.earnings_calls: list[str] = []
        self.news_calls: list[str] = []

    async def daily_history(self, symbol: str, start: date, end: date) -> RawHistory:
        self.history_calls.append((symbol, start, end))
        if symbol not in self.histories:
            raise NoDataError(f"No historical data for {symbol}")
        points = [point for point in self.histories[symbol] if start <= point.date <= end]
        return RawHistory(points=points, currency=self.currencies.get(symbol, "USD"))

    async def search_symbols(self, query: str) -> list[SymbolQuote]:
        self.search_calls.append(query)
        if self.search_fails:
            raise SymbolSearchError("Symbol search failed: offline")
        return list(self.quotes.get(query, []))

    async def earnings_date(self, symbol: str) -> date | None:
        self.earnings_calls.append(symbol)
        return self.earnings.get(symbol)

    async def news_headlines(self, symbol: str) -> list[Headline]:
        self.news_calls.append(symbol)
        return list(self.news.get(symbol, []))


@pytest.fixture
def make_points():
    return daily_points


@pytest.fixture
def stub_market_data():
    return StubMarketData
