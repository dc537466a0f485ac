"""Schemas for asset tokens, prices and symbol resolution."""

from __future__ import annotations

import datetime as dt

from pydantic import Field

from investotype.services.assets import AssetType

from .base import CamelModel


class AssetSchema(CamelModel):
    id: str
    type: AssetType
    label: str
    symbol: str
    base_symbol: str | None = None
    multiplier: float | None = None
    display_name: str = ""
    logo_url: str = ""


class AssetTokenRequest(CamelModel):
    token: str = Field(..., max_length=64, description="Asset token, e.g. SPY, CASH or LEVERAGE:SPY:3")


class AssetPriceRequest(AssetTokenRequest):
    date: dt.date | None = None


class ResolveAssetRequest(CamelModel):
    query: str = Field(..., max_length=128, description="Ticker or company name")
    prefer_bond: bool = False


class AssetCheckResponse(CamelModel):
    ok: bool
    asset: AssetSchema


class AssetPriceResponse(CamelModel):
    asset: AssetSchema
    date: dt.date
    price: float


class SymbolMatchSchema(CamelModel):
    symbol: str
    shortname: str = ""
    longname: str = ""
    logo_url: str = ""
    quote_type: str = ""
    exchange: str = ""


class ResolveAssetResponse(CamelModel):
    best: SymbolMatchSchema
    matches: list[SymbolMatchSchema]


__all__ = [
    "AssetCheckResponse",
    "AssetPriceRequest",
    "AssetPriceResponse",
    "AssetSchema",
    "AssetTokenRequest",
    "ResolveAssetRequest",
    "ResolveAssetResponse",
    "SymbolMatchSchema",
]
