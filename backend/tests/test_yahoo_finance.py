"""Yahoo Finance client and payload parsing."""

from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest

from investotype.config import AppSettings
from investotype.core.errors import NoDataError, SymbolSearchError
from investotype.providers.yahoo_finance import YahooFinanceClient, YahooFinanceError, parse_epoch_date
from investotype.services.market_data import YahooMarketData, parse_chart_result, parse_news, parse_search_quotes


def _ts(day: date) -> int:
    return int(datetime(day.year, day.month, day.day, 14, 30, tzinfo=timezone.utc).timestamp())


CHART_RESULT = {
    "meta": {"currency": "eur"},
    "timestamp": [_ts(date(2024, 1, 2)), _ts(date(2024, 1, 3)), _ts(date(2024, 1, 4))],
    "indicators": {
        "quote": [{"close": [10.0, None, 12.0]}],
        "adjclose": [{"adjclose": [9.5, 11.0, None]}],
    },
    "events": {
        "dividends": {
            "a": {"amount": 0.2, "date": _ts(date(2024, 1, 4))},
            "b": {"amount": 0.1, "date": _ts(date(2024, 1, 4))},
        }
    },
}


class StubClient:
    """Replays queued responses; an exception instance in the queue is raised instead."""

    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, dict]] = []

    async def get(self, url: str, params=None, headers=None, timeout=None):
        self.calls.append((url, params))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        return None


def _client(*responses: object, retries: int = 1) -> tuple[YahooFinanceClient, StubClient]:
    stub = StubClient(list(responses))
    settings = AppSettings(market_data_retries=retries)
    return YahooFinanceClient(settings, client=stub), stub


def test_parse_chart_result():
    history = parse_chart_result("SAP.DE", CHART_RESULT)

    assert history.currency == "EUR"
    assert [point.date for point in history.points] == [date(2024, 1, 2), date(2024, 1, 4)]
    first, last = history.points
    assert first.adj_close == 9.5
    # missing adjusted close falls back to the close
    assert last.adj_close == 12.0
    assert last.dividend == pytest.approx(0.3)


def test_parse_chart_result_without_rows():
    with pytest.raises(NoDataError):
        parse_chart_result("X", {"timestamp": [_ts(date(2024, 1, 2))], "indicators": {"quote": [{"close": [None]}]}})
    with pytest.raises(NoDataError):
        parse_chart_result("X", {})


def test_parse_search_and_news():
    quotes = parse_search_quotes(
        {"quotes": [{"symbol": "aapl", "shortname": "Apple", "quoteType": "EQUITY", "exchDisp": "NASDAQ"}, {}]}
    )
    news = parse_news(
        {"news": [{"title": " Earnings beat ", "publisher": "Wire", "providerPublishTime": _ts(date(2024, 1, 3))}]}
    )

    assert [(q.symbol, q.exchange) for q in quotes] == [("AAPL", "NASDAQ")]
    assert news[0].title == "Earnings beat"
    assert news[0].date == date(2024, 1, 3)
    assert parse_news({}) == []


def test_parse_epoch_date():
    assert parse_epoch_date(_ts(date(2024, 2, 29))) == date(2024, 2, 29)
    assert parse_epoch_date("nope") is None
    assert parse_epoch_date(None) is None


async def test_chart_returns_first_result():
    client, stub = _client(httpx.Response(200, json={"chart": {"result": [CHART_RESULT], "error": None}}))

    result = await client.chart("SAP.DE", date(2024, 1, 1), date(2024, 1, 5))

    assert result == CHART_RESULT
    url, params = stub.calls[0]
    assert url.endswith("/SAP.DE")
    assert params["interval"] == "1d"
    assert params["events"] == "div,splits"


async def test_chart_error_payload():
    client, _ = _client(httpx.Response(200, json={"chart": {"result": None, "error": {"description": "Not Found"}}}))

    with pytest.raises(YahooFinanceError, match="Not Found"):
        await client.chart("NOPE", date(2024, 1, 1), date(2024, 1, 5))


async def test_http_errors_are_not_retried():
    client, stub = _client(httpx.Response(500, json={}), httpx.Response(200, json={}))

    with pytest.raises(YahooFinanceError):
        await client.search("apple")
    assert len(stub.calls) == 1


async def test_transport_errors_are_retried():
    client, stub = _client(httpx.ConnectError("boom"), httpx.Response(200, json={"quotes": []}))

    payload = await client.search("apple")

    assert payload == {"quotes": []}
    assert len(stub.calls) == 2


async def test_transport_errors_exhaust_retries():
    client, _ = _client(httpx.ConnectError("boom"), httpx.ConnectError("boom"))

    with pytest.raises(YahooFinanceError, match="Failed to reach"):
        await client.search("apple")


async def test_quote_summary_without_result():
    client, _ = _client(httpx.Response(200, json={"quoteSummary": {"result": []}}))

    assert await client.quote_summary("AAPL", "calendarEvents") is None


async def test_market_data_maps_provider_errors():
    client, _ = _client(httpx.Response(404, json={}), httpx.Response(503, json={}), retries=0)
    market = YahooMarketData(client, AppSettings())

    with pytest.raises(NoDataError):
        await market.daily_history("NOPE", date(2024, 1, 1), date(2024, 1, 5))
    with pytest.raises(SymbolSearchError):
        await market.search_symbols("apple")


async def test_market_data_earnings_date():
    summary = {
        "quoteSummary": {
            "result": [{"calendarEvents": {"earnings": {"earningsDate": [{"raw": _ts(date(2024, 4, 25))}]}}}]
        }
    }
    client, _ = _client(httpx.Response(200, json=summary))

    assert await YahooMarketData(client, AppSettings()).earnings_date("AAPL") == date(2024, 4, 25)
