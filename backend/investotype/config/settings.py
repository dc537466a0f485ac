"""Application configuration and environment helpers."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_CURRENCY = "USD"
DEFAULT_FEE_RATE = 0.001
DEFAULT_SAVINGS_APY = 0.03
DEFAULT_OPTION_DAILY_DECAY = 0.0006


class AppSettings(BaseSettings):
    """Configuration options for the simulator service."""

    app_name: str = Field(default="Investotype Portfolio Simulator")
    base_currency: str = Field(default=DEFAULT_BASE_CURRENCY)
    log_level: str = Field(default="INFO")

    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    fee_rate: float = Field(
        default=DEFAULT_FEE_RATE,
        ge=0.0,
        lt=1.0,
        description="Proportional fee charged on every executed trade leg.",
    )
    savings_apy: float = Field(default=DEFAULT_SAVINGS_APY, ge=0.0)
    option_daily_decay: float = Field(
        default=DEFAULT_OPTION_DAILY_DECAY,
        ge=0.0,
        description="Daily time decay subtracted from call-like synthetic returns.",
    )

    market_fetch_backfill_days: int = Field(default=7, ge=0)
    market_fetch_forward_days: int = Field(default=3, ge=0)

    yahoo_chart_url: str = Field(default="https://query1.finance.yahoo.com/v8/finance/chart")
    yahoo_search_url: str = Field(default="https://query1.finance.yahoo.com/v1/finance/search")
    yahoo_quote_summary_url: str = Field(
        default="https://query2.finance.yahoo.com/v10/finance/quoteSummary"
    )
    yahoo_user_agent: str = Field(default="Mozilla/5.0 investment-simulator")
    market_data_timeout_seconds: float = Field(default=15.0, gt=0)
    market_data_retries: int = Field(default=1, ge=0)

    earnings_cache_ttl_hours: float = Field(default=12.0, gt=0)
    news_cache_ttl_minutes: float = Field(default=30.0, gt=0)
    session_ttl_hours: float | None = Field(
        default=24.0,
        description="Idle sessions are evicted after this many hours; None keeps them forever.",
    )
    max_benchmarks: int = Field(default=8, ge=0)

    telemetry_enabled: bool = Field(default=False)
    telemetry_service_name: str = Field(default="investotype-simulator")
    telemetry_otlp_endpoint: str | None = Field(default=None)
    telemetry_otlp_insecure: bool = Field(default=True)
    telemetry_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    telemetry_metric_interval_ms: int = Field(default=10_000, gt=0)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    def dict_for_logging(self) -> dict[str, Any]:
        """Return a sanitized dict for logging purposes."""

        hidden = {"telemetry_otlp_endpoint"}
        return {k: ("***" if k in hidden and v else v) for k, v in self.model_dump().items()}


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> AppSettings:
    """Return cached application settings with optional overrides."""

    if overrides:
        return AppSettings(**overrides)
    return AppSettings()


__all__ = [
    "AppSettings",
    "DEFAULT_BASE_CURRENCY",
    "DEFAULT_FEE_RATE",
    "DEFAULT_OPTION_DAILY_DECAY",
    "DEFAULT_SAVINGS_APY",
    "get_settings",
]
