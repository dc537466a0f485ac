"""Simulation session aggregate, rebalance schedule and session storage."""

from __future__ import annotations

import calendar
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Protocol

from investotype.core.cache import TTLCache
from investotype.core.errors import InputValidationError
from investotype.services.assets import AssetDescriptor, AssetType
from investotype.services.history import History


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def add_months(day: date, months: int) -> date:
    """Shift by calendar months, clamping to the last day of shorter months."""

    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def build_schedule(start: date, end: date, frequency: Frequency) -> list[date]:
    """Rebalance dates from ``start`` while on or before ``end``.

    Monthly steps are anchored on the start day so Jan 31 -> Feb 29 -> Mar 31.
    """

    schedule: list[date] = []
    step = 0
    current = start
    while current <= end:
        schedule.append(current)
        step += 1
        if frequency is Frequency.DAILY:
            current = start + timedelta(days=step)
        elif frequency is Frequency.WEEKLY:
            current = start + timedelta(days=7 * step)
        else:
            current = add_months(start, step)
    if not schedule:
        raise InputValidationError("Could not create schedule.")
    return schedule


@dataclass
class Position:
    quantity: float = 0.0
    cost_basis: float = 0.0
    first_buy_price: float = 0.0
    realized_profit: float = 0.0

    @property
    def average_price(self) -> float:
        return self.cost_basis / self.quantity if self.quantity > 0 else 0.0


@dataclass(frozen=True)
class ClosedPosition:
    symbol: str
    first_buy_price: float
    realized_profit: float


@dataclass(frozen=True)
class Snapshot:
    date: date
    value: float


@dataclass(frozen=True)
class Decision:
    date: date
    allocation_mode: str
    per_asset_modes: dict[str, str]
    requested_inputs: dict[str, float]
    target_values: dict[str, float]
    target_weights: dict[str, float]
    actual_weights: dict[str, float]
    portfolio_value: float
    cash: float
    turnover: float
    fee: float
    concentration: float
    cash_ratio: float
    budget_used: float
    quantities: dict[str, float]


@dataclass(frozen=True)
class TradeRecord:
    date: date
    sell_symbol: str
    buy_symbol: str
    sold_units: float
    sold_value: float
    bought_units: float
    bought_value: float
    fee: float
    cash: float
    quantities: dict[str, float]


@dataclass
class Session:
    """All mutable state for one simulation run."""

    start_date: date
    end_date: date
    frequency: Frequency
    schedule: list[date]
    initial_cash: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    step_index: int = 0
    cash: float = 0.0
    fees_paid: float = 0.0
    total_dividends_received: float = 0.0
    dividend_accrued_through: date | None = None
    symbols: list[str] = field(default_factory=list)
    assets: dict[str, AssetDescriptor] = field(default_factory=dict)
    histories: dict[str, History] = field(default_factory=dict)
    positions: dict[str, Position] = field(default_factory=dict)
    closed_positions: dict[str, ClosedPosition] = field(default_factory=dict)
    benchmark_symbols: list[str] = field(default_factory=list)
    benchmark_histories: dict[str, History] = field(default_factory=dict)
    decisions: list[Decision] = field(default_factory=list)
    trades: list[TradeRecord] = field(default_factory=list)
    snapshots: list[Snapshot] = field(default_factory=list)
    turnover_series: list[float] = field(default_factory=list)
    concentration_series: list[float] = field(default_factory=list)
    cash_ratio_series: list[float] = field(default_factory=list)
    completed: bool = False
    last_accessed: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.dividend_accrued_through is None:
            self.dividend_accrued_through = self.start_date

    @property
    def current_date(self) -> date | None:
        if self.step_index < len(self.schedule):
            return self.schedule[self.step_index]
        return None

    @property
    def total_steps(self) -> int:
        return len(self.schedule)

    def is_cash(self, symbol: str) -> bool:
        asset = self.assets.get(symbol)
        return asset is not None and asset.type is AssetType.CASH

    def add_symbol(self, asset: AssetDescriptor, history: History) -> None:
        """Activate ``asset`` with a zero position, restoring history from a closed position."""

        closed = self.closed_positions.pop(asset.id, None)
        self.symbols.append(asset.id)
        self.assets[asset.id] = asset
        self.histories[asset.id] = history
        self.positions[asset.id] = Position(
            first_buy_price=closed.first_buy_price if closed else 0.0,
            realized_profit=closed.realized_profit if closed else 0.0,
        )

    def archive_symbol(self, symbol: str) -> None:
        position = self.positions.pop(symbol)
        self.symbols.remove(symbol)
        self.closed_positions[symbol] = ClosedPosition(
            symbol=symbol,
            first_buy_price=position.first_buy_price,
            realized_profit=position.realized_profit,
        )

    def quantities(self) -> dict[str, float]:
        return {symbol: self.positions[symbol].quantity for symbol in self.symbols}


class SessionStore(Protocol):
    def get(self, session_id: str) -> Session | None:
        ...

    def put(self, session: Session) -> None:
        ...

    def remove(self, session_id: str) -> None:
        ...

    def __contains__(self, session_id: object) -> bool:
        """Membership without refreshing the idle timer."""
        ...


class InMemorySessionStore:
    """Process-local store. Sessions idle for longer than ``ttl_seconds`` are dropped."""

    def __init__(self, ttl_seconds: float | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._sessions: TTLCache[str, Session] = TTLCache(ttl_seconds, clock=clock)

    def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id, refresh=True)
        if session is not None:
            session.last_accessed = time.time()
        return session

    def put(self, session: Session) -> None:
        self._sessions.set(session.id, session)

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def purge(self) -> list[str]:
        return self._sessions.purge()

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = [
    "ClosedPosition",
    "Decision",
    "Frequency",
    "InMemorySessionStore",
    "Position",
    "Session",
    "SessionStore",
    "Snapshot",
    "TradeRecord",
    "add_months",
    "build_schedule",
]
