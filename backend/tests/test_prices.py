"""History provider: padded fetches, FX conversion and synthetic assets."""

from __future__ import annotations

from datetime import date

import pytest

from investotype.config import AppSettings
from investotype.core.errors import FxUnavailableError, NoDataError
from investotype.services.assets import parse_asset_token
from investotype.services.prices import HistoryProvider

START = date(2024, 1, 1)
END = date(2024, 1, 10)
SETTINGS = AppSettings(market_fetch_backfill_days=7, market_fetch_forward_days=3, savings_apy=0.03)


async def test_market_history_fetches_padded_window(stub_market_data, make_points):
    provider = stub_market_data({"SPY": make_points(date(2023, 12, 20), [100.0] * 30)})

    history = await HistoryProvider(provider, SETTINGS).market_history("SPY", START, END)

    assert provider.history_calls == [("SPY", date(2023, 12, 25), date(2024, 1, 13))]
    assert history.dates[0] == date(2023, 12, 25)
    assert history.dates[-1] == date(2024, 1, 13)


async def test_market_history_converts_with_direct_pair(stub_market_data, make_points):
    provider = stub_market_data(
        {
            "SAP.DE": make_points(START, [100.0] * 10, {2: 2.0}),
            "EURUSD=X": make_points(date(2023, 12, 28), [1.1] * 20),
        },
        currencies={"SAP.DE": "EUR"},
    )
    prices = HistoryProvider(provider, SETTINGS)

    history = await prices.market_history("SAP.DE", START, END)

    assert history[0].close == pytest.approx(110.0)
    assert history[0].adj_close == pytest.approx(110.0)
    assert history[2].dividend == pytest.approx(2.2)

    await prices.market_history("SAP.DE", START, END)
    fx_calls = [call for call in provider.history_calls if call[0].endswith("=X")]
    assert len(fx_calls) == 1


async def test_market_history_converts_with_inverse_pair(stub_market_data, make_points):
    provider = stub_market_data(
        {
            "VOD.L": make_points(START, [2.0] * 10),
            "USDGBP=X": make_points(START, [0.8] * 10),
        },
        currencies={"VOD.L": "GBP"},
    )

    history = await HistoryProvider(provider, SETTINGS).market_history("VOD.L", START, END)

    assert history[0].close == pytest.approx(2.5)
    assert [call[0] for call in provider.history_calls] == ["VOD.L", "GBPUSD=X", "USDGBP=X"]


async def test_missing_fx_is_fatal(stub_market_data, make_points):
    provider = stub_market_data({"7203.T": make_points(START, [2_000.0] * 10)}, currencies={"7203.T": "JPY"})

    with pytest.raises(FxUnavailableError):
        await HistoryProvider(provider, SETTINGS).market_history("7203.T", START, END)


async def test_unknown_symbol_raises_no_data(stub_market_data):
    with pytest.raises(NoDataError):
        await HistoryProvider(stub_market_data(), SETTINGS).market_history("NOPE", START, END)


async def test_synthetic_assets_need_no_provider(stub_market_data):
    provider = stub_market_data()
    prices = HistoryProvider(provider, SETTINGS)

    cash = await prices.get_history(parse_asset_token("CASH"), START, END)
    savings = await prices.get_history(parse_asset_token("SAVINGS"), START, END)

    assert len(cash) == 10 and cash[-1].close == 1.0
    assert savings[-1].close > 1.0
    assert provider.history_calls == []


async def test_leveraged_asset_is_derived_from_base(stub_market_data, make_points):
    provider = stub_market_data({"SPY": make_points(date(2023, 12, 25), [100.0] * 8 + [110.0] * 12)})

    history = await HistoryProvider(provider, SETTINGS).get_history(parse_asset_token("LEVERAGE:SPY:2"), START, END)

    closes = [point.close for point in history]
    assert closes[0] == 1.0
    assert max(closes) == pytest.approx(1.2)
    assert provider.history_calls[0][0] == "SPY"
