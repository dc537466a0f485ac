"""Asset token grammar, fuzzy symbol resolution and display metadata."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field, replace
from enum import Enum

from investotype.core.errors import DataUnavailableError, InputValidationError, InvalidAssetTokenError, NoMatchError
from investotype.services.market_data import MarketDataProvider, SymbolQuote

logger = logging.getLogger(__name__)

TICKER_PATTERN = re.compile(r"^[A-Z0-9^][A-Z0-9.^=/-]{0,24}$")
_TICKER_PUNCTUATION = (".", "-", "^", "=", "/")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

CORPORATE_SUFFIXES = frozenset({"inc", "corp", "corporation", "co", "company", "plc", "ltd", "limited"})
PREFERRED_QUOTE_TYPES = frozenset({"EQUITY", "ETF", "MUTUALFUND", "INDEX", "CRYPTOCURRENCY", "CURRENCY", "FUTURE"})
BOND_VOCABULARY = ("bond", "treasury", "fixed income")

MAX_LEVERAGE = 5.0
MAX_OPTION_MULTIPLIER = 8.0
MAX_MATCHES = 5


class AssetType(str, Enum):
    MARKET = "market"
    CASH = "cash"
    SAVINGS = "savings"
    BOND = "bond"
    LEVERAGE = "leverage"
    OPTION = "option"

    @property
    def is_synthetic(self) -> bool:
        return self in (AssetType.CASH, AssetType.SAVINGS)


@dataclass(frozen=True)
class AssetDescriptor:
    id: str
    type: AssetType
    label: str
    base_symbol: str | None = None
    multiplier: float | None = None
    display_name: str = ""
    logo_url: str = ""

    @property
    def symbol(self) -> str:
        """Symbol used for lookups: the token itself for synthetics, else the base ticker."""

        return self.base_symbol or self.id


@dataclass(frozen=True)
class Resolution:
    best: SymbolQuote
    matches: list[SymbolQuote] = field(default_factory=list)


def normalize_symbol(value: object) -> str:
    return str(value or "").strip().upper()


def normalize_text(value: object) -> str:
    text = _NON_ALNUM.sub(" ", str(value or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


def is_likely_ticker(raw: str) -> bool:
    """Heuristic for inputs that should bypass name search (``AAPL``, ``BRK.B``, ``^GSPC``)."""

    text = str(raw or "").strip()
    if not text or re.search(r"\s", text) or re.search(r"[a-z]", text):
        return False
    symbol = normalize_symbol(text)
    if not TICKER_PATTERN.match(symbol):
        return False
    if len(symbol) > 5 and not any(mark in symbol for mark in _TICKER_PUNCTUATION):
        return False
    return True


def levenshtein(a: str, b: str) -> int:
    s = normalize_text(a)
    t = normalize_text(b)
    if not s:
        return len(t)
    if not t:
        return len(s)
    previous = list(range(len(t) + 1))
    for i, s_char in enumerate(s, start=1):
        current = [i] + [0] * len(t)
        for j, t_char in enumerate(t, start=1):
            cost = 0 if s_char == t_char else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[-1]


def _parse_multiplier(raw: str, token: str, example: str) -> float:
    try:
        multiplier = float(raw)
    except ValueError:
        raise InvalidAssetTokenError(f"Invalid format for {token}. Use {example}.") from None
    if not math.isfinite(multiplier):
        raise InvalidAssetTokenError(f"Invalid format for {token}. Use {example}.")
    return multiplier


def _base_ticker(raw: str, token: str, example: str) -> str:
    if not raw or not TICKER_PATTERN.match(raw):
        raise InvalidAssetTokenError(f"Invalid format for {token}. Use {example}.")
    return raw


def _format_multiplier(multiplier: float) -> str:
    return f"{multiplier:g}"


def parse_asset_token(raw_token: str, *, savings_apy: float = 0.03) -> AssetDescriptor:
    """Parse an asset token. Pure: the same token always yields the same descriptor."""

    token = normalize_symbol(raw_token)
    if not token:
        raise InvalidAssetTokenError("Asset token cannot be empty.")

    if token == "CASH":
        label = "Cash (0% return)"
        return AssetDescriptor(id=token, type=AssetType.CASH, label=label, display_name=label)

    if token == "SAVINGS":
        label = f"Savings ({savings_apy * 100:.1f}% APY)"
        return AssetDescriptor(id=token, type=AssetType.SAVINGS, label=label, display_name=label)

    parts = token.split(":")

    if parts[0] == "BOND":
        example = "BOND:TICKER (example: BOND:TLT)"
        if len(parts) != 2:
            raise InvalidAssetTokenError(f"Invalid bond format. Use {example}.")
        base = _base_ticker(parts[1], token, example)
        label = f"Bond ETF {base}"
        return AssetDescriptor(id=token, type=AssetType.BOND, label=label, base_symbol=base, display_name=label)

    if parts[0] == "LEVERAGE":
        example = "LEVERAGE:TICKER:MULTIPLIER (example: LEVERAGE:SPY:2)"
        if len(parts) != 3:
            raise InvalidAssetTokenError(f"Invalid leverage format. Use {example}.")
        base = _base_ticker(parts[1], token, example)
        multiplier = _parse_multiplier(parts[2], token, example)
        if not 1 < multiplier <= MAX_LEVERAGE:
            raise InvalidAssetTokenError("Leverage multiplier must be > 1 and <= 5.")
        label = f"{_format_multiplier(multiplier)}x Leverage on {base}"
        return AssetDescriptor(
            id=token,
            type=AssetType.LEVERAGE,
            label=label,
            base_symbol=base,
            multiplier=multiplier,
            display_name=label,
        )

    if parts[0] == "CALL":
        example = "CALL:TICKER:MULTIPLIER (example: CALL:AAPL:3)"
        if len(parts) != 3:
            raise InvalidAssetTokenError(f"Invalid option format. Use {example}.")
        base = _base_ticker(parts[1], token, example)
        multiplier = _parse_multiplier(parts[2], token, example)
        if not 1 < multiplier <= MAX_OPTION_MULTIPLIER:
            raise InvalidAssetTokenError("Option multiplier must be > 1 and <= 8.")
        label = f"Call-like {base} x{_format_multiplier(multiplier)}"
        return AssetDescriptor(
            id=token,
            type=AssetType.OPTION,
            label=label,
            base_symbol=base,
            multiplier=multiplier,
            display_name=label,
        )

    if not TICKER_PATTERN.match(token):
        raise InvalidAssetTokenError(f"Invalid market ticker token: {token}")
    return AssetDescriptor(id=token, type=AssetType.MARKET, label=token, base_symbol=token, display_name=token)


def score_match(query: str, quote: SymbolQuote, prefer_bond: bool = False) -> int:
    """Rank a search hit against a free-text query; higher is better."""

    q = normalize_text(query)
    symbol = normalize_text(quote.symbol)
    shortname = normalize_text(quote.shortname)
    longname = normalize_text(quote.longname)
    combined = f"{symbol} {shortname} {longname}".strip()

    score = 0
    if symbol == q:
        score += 1200
    if symbol.startswith(q):
        score += 500
    if shortname.startswith(q) or longname.startswith(q):
        score += 340
    if q in combined:
        score += 220
    score -= levenshtein(q, symbol) * 10

    q_words = q.split()
    if len(q_words) == 1:
        long_words = longname.split()
        short_words = shortname.split()
        if long_words and long_words[0] == q_words[0]:
            score += 130 if len(long_words) > 1 and long_words[1] in CORPORATE_SUFFIXES else 25
        if short_words and short_words[0] == q_words[0]:
            score += 110 if len(short_words) > 1 and short_words[1] in CORPORATE_SUFFIXES else 20

    if quote.quote_type.upper() in PREFERRED_QUOTE_TYPES:
        score += 30

    if prefer_bond:
        names = f"{shortname} {longname}"
        if any(word in names for word in BOND_VOCABULARY):
            score += 140

    return score


class AssetResolver:
    """Resolves free text to symbols and decorates descriptors with display metadata."""

    def __init__(self, provider: MarketDataProvider) -> None:
        self.provider = provider

    async def resolve(self, query: str, *, prefer_bond: bool = False) -> Resolution:
        """Ticker-shaped input passes straight through; anything else goes to name search."""

        text = str(query or "").strip()
        if not text:
            raise InputValidationError("query is required")
        if is_likely_ticker(text):
            return Resolution(best=SymbolQuote(symbol=normalize_symbol(text)), matches=[])
        return await self.resolve_by_name(text, prefer_bond=prefer_bond)

    async def resolve_by_name(self, query: str, *, prefer_bond: bool = False) -> Resolution:
        quotes = await self.provider.search_symbols(query)
        if not quotes:
            raise NoMatchError(f'No matching investment found for "{query}".')
        # sorted() is stable, so equal scores keep the provider's order
        ranked = sorted(quotes, key=lambda quote: score_match(query, quote, prefer_bond), reverse=True)
        return Resolution(best=ranked[0], matches=ranked[:MAX_MATCHES])

    async def enrich(self, asset: AssetDescriptor) -> AssetDescriptor:
        """Attach the provider's long/short name and logo. Lookup failures keep parsed metadata."""

        if asset.type.is_synthetic:
            return asset
        lookup = asset.symbol
        try:
            quotes = await self.provider.search_symbols(lookup)
        except DataUnavailableError as exc:
            logger.warning("Metadata lookup failed for %s: %s", lookup, exc)
            return asset
        exact = next((quote for quote in quotes if quote.symbol == lookup), quotes[0] if quotes else None)
        if exact is None:
            return asset

        name = exact.longname or exact.shortname or lookup
        if asset.type in (AssetType.MARKET, AssetType.BOND):
            return replace(asset, label=name, display_name=name, logo_url=exact.logo_url)
        return replace(asset, display_name=f"{asset.label} ({name})", logo_url=exact.logo_url)


__all__ = [
    "AssetDescriptor",
    "AssetResolver",
    "AssetType",
    "Resolution",
    "TICKER_PATTERN",
    "is_likely_ticker",
    "levenshtein",
    "normalize_symbol",
    "normalize_text",
    "parse_asset_token",
    "score_match",
]
