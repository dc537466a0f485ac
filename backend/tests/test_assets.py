"""Asset token grammar, ticker detection and symbol resolution."""

from __future__ import annotations

import pytest

from investotype.core.errors import InputValidationError, InvalidAssetTokenError, NoMatchError
from investotype.services.assets import (
    AssetResolver,
    AssetType,
    is_likely_ticker,
    levenshtein,
    parse_asset_token,
    score_match,
)
from investotype.services.market_data import SymbolQuote

APPLE = SymbolQuote(symbol="AAPL", shortname="Apple Inc.", longname="Apple Inc.", quote_type="EQUITY")
APPLE_REIT = SymbolQuote(
    symbol="APLE",
    shortname="Apple Hospitality REIT Inc.",
    longname="Apple Hospitality REIT Inc.",
    quote_type="EQUITY",
)


def test_parse_leverage_token():
    asset = parse_asset_token("LEVERAGE:SPY:3")

    assert asset.id == "LEVERAGE:SPY:3"
    assert asset.type is AssetType.LEVERAGE
    assert asset.base_symbol == "SPY"
    assert asset.multiplier == 3
    assert asset.label == "3x Leverage on SPY"
    assert asset.symbol == "SPY"


@pytest.mark.parametrize(
    "token",
    ["LEVERAGE:SPY:6", "LEVERAGE:SPY:1", "LEVERAGE:SPY", "CALL:AAPL:9", "CALL:AAPL:x", "BOND:", "BOND:TLT:2", "A B"],
)
def test_parse_rejects_malformed_tokens(token):
    with pytest.raises(InvalidAssetTokenError):
        parse_asset_token(token)


def test_parse_synthetic_and_market_tokens():
    cash = parse_asset_token(" cash ")
    savings = parse_asset_token("SAVINGS", savings_apy=0.045)
    bond = parse_asset_token("bond:tlt")
    option = parse_asset_token("CALL:AAPL:2.5")
    market = parse_asset_token("brk.b")

    assert cash.type is AssetType.CASH and cash.label == "Cash (0% return)"
    assert savings.label == "Savings (4.5% APY)"
    assert cash.type.is_synthetic and savings.type.is_synthetic
    assert bond.base_symbol == "TLT" and bond.label == "Bond ETF TLT"
    assert option.label == "Call-like AAPL x2.5"
    assert market.id == "BRK.B" and market.type is AssetType.MARKET


def test_parse_is_pure():
    assert parse_asset_token("CALL:AAPL:3") == parse_asset_token("call:aapl:3")


def test_empty_token_rejected():
    with pytest.raises(InvalidAssetTokenError):
        parse_asset_token("   ")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("AAPL", True),
        ("BRK.B", True),
        ("^GSPC", True),
        ("brk.b", False),
        ("ABCDEFG", False),
        ("Apple Inc", False),
        ("apple", False),
    ],
)
def test_is_likely_ticker(raw, expected):
    assert is_likely_ticker(raw) is expected


def test_levenshtein():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("spy", "spy") == 0


def test_score_prefers_company_with_corporate_suffix():
    assert score_match("apple", APPLE) > score_match("apple", APPLE_REIT)


async def test_resolver_passes_tickers_through(stub_market_data):
    provider = stub_market_data()
    resolution = await AssetResolver(provider).resolve("MSFT")

    assert resolution.best.symbol == "MSFT"
    assert resolution.matches == []
    assert provider.search_calls == []


async def test_resolver_ranks_name_matches(stub_market_data):
    provider = stub_market_data(quotes={"apple": [APPLE_REIT, APPLE]})
    resolution = await AssetResolver(provider).resolve("apple")

    assert resolution.best.symbol == "AAPL"
    assert [quote.symbol for quote in resolution.matches] == ["AAPL", "APLE"]


async def test_resolver_errors(stub_market_data):
    resolver = AssetResolver(stub_market_data())

    with pytest.raises(InputValidationError):
        await resolver.resolve("  ")
    with pytest.raises(NoMatchError):
        await resolver.resolve("unknown company")


async def test_enrich_uses_provider_names(stub_market_data):
    spy = SymbolQuote(symbol="SPY", shortname="SPDR S&P 500", longname="SPDR S&P 500 ETF Trust", logo_url="spy.png")
    resolver = AssetResolver(stub_market_data(quotes={"SPY": [spy]}))

    market = await resolver.enrich(parse_asset_token("SPY"))
    leveraged = await resolver.enrich(parse_asset_token("LEVERAGE:SPY:2"))
    cash = await resolver.enrich(parse_asset_token("CASH"))

    assert market.display_name == "SPDR S&P 500 ETF Trust"
    assert market.logo_url == "spy.png"
    assert leveraged.display_name == "2x Leverage on SPY (SPDR S&P 500 ETF Trust)"
    assert leveraged.label == "2x Leverage on SPY"
    assert cash.display_name == "Cash (0% return)"


async def test_enrich_keeps_metadata_when_search_fails(stub_market_data):
    asset = parse_asset_token("QQQ")
    enriched = await AssetResolver(stub_market_data(search_fails=True)).enrich(asset)

    assert enriched == asset
