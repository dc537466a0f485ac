"""Valuation, target resolution and order execution for simulation sessions.

Every mutating entry point validates and prices first, then applies. A raised
error therefore always leaves the session exactly as it was.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Union

from investotype.core.errors import (
    AlreadyCompletedError,
    BudgetExceededError,
    InputValidationError,
    InvalidTargetError,
    ScheduleExhaustedError,
)
from investotype.services.history import PriceQuote
from investotype.services.sessions import Decision, Session, Snapshot, TradeRecord

logger = logging.getLogger(__name__)

DUST_QUANTITY = 1e-10
DUST_BASIS = 1e-6
ZERO_TARGET = 1e-6
CASH_EPSILON = 1e-8
LEG_EPSILON = 1e-9
MIN_LEG_VALUE = 1e-12
MIN_PRICE = 1e-12
WEIGHT_SUM_SLACK = 1e-6
TRADE_TOLERANCE = 1e-6

TARGET_MODES = ("weight", "dollars", "units")
TRADE_MODES = ("dollars", "units")


# Allocation requests


@dataclass(frozen=True)
class TargetEntry:
    mode: str = "weight"
    value: float = 0.0


@dataclass(frozen=True)
class MixedAllocation:
    targets: dict[str, TargetEntry]
    mode = "mixed"


@dataclass(frozen=True)
class WeightAllocation:
    weights: dict[str, float]
    mode = "weight"


@dataclass(frozen=True)
class DollarAllocation:
    dollars: dict[str, float]
    mode = "dollars"


@dataclass(frozen=True)
class UnitAllocation:
    units: dict[str, float]
    mode = "units"


Allocation = Union[MixedAllocation, WeightAllocation, DollarAllocation, UnitAllocation]


def select_allocation(
    *,
    targets: dict[str, TargetEntry] | None = None,
    weights: dict[str, float] | None = None,
    dollars: dict[str, float] | None = None,
    units: dict[str, float] | None = None,
) -> Allocation:
    """Build the allocation from whichever single request shape was supplied."""

    supplied: list[Allocation] = []
    if targets is not None:
        supplied.append(MixedAllocation(dict(targets)))
    if weights is not None:
        supplied.append(WeightAllocation(dict(weights)))
    if dollars is not None:
        supplied.append(DollarAllocation(dict(dollars)))
    if units is not None:
        supplied.append(UnitAllocation(dict(units)))
    if not supplied:
        raise InvalidTargetError("Provide target data using targets (per asset), or weights/dollars/units.")
    if len(supplied) > 1:
        raise InvalidTargetError("Provide exactly one of targets, weights, dollars or units.")
    return supplied[0]


# Valuation


@dataclass(frozen=True)
class Valuation:
    date: date
    total: float
    cash: float
    pending_dividends: float
    prices: dict[str, PriceQuote]
    values: dict[str, float]

    def price(self, symbol: str) -> float:
        return self.prices[symbol].price

    def weight(self, symbol: str) -> float:
        return self.values.get(symbol, 0.0) / self.total if self.total > 0 else 0.0


def pending_dividends(session: Session, through: date) -> float:
    """Dividend cash owed for ex-dates after the watermark and on or before ``through``."""

    watermark = session.dividend_accrued_through or session.start_date
    if through <= watermark:
        return 0.0
    total = 0.0
    for symbol in session.symbols:
        quantity = session.positions[symbol].quantity
        if quantity <= 0 or session.is_cash(symbol):
            continue
        total += quantity * session.histories[symbol].dividends_between(watermark, through)
    return total


def value_at(session: Session, day: date) -> Valuation:
    """Price the session at ``day`` without mutating it. Pending dividends count as cash."""

    dividends = pending_dividends(session, day)
    cash = session.cash + dividends
    total = cash
    prices: dict[str, PriceQuote] = {}
    values: dict[str, float] = {}
    for symbol in session.symbols:
        quote = session.histories[symbol].require_nearest(day, "close", symbol=symbol)
        prices[symbol] = quote
        if session.is_cash(symbol):
            values[symbol] = cash
            continue
        value = session.positions[symbol].quantity * quote.price
        values[symbol] = value
        total += value
    return Valuation(date=day, total=total, cash=cash, pending_dividends=dividends, prices=prices, values=values)


def settle_dividends(session: Session, day: date) -> float:
    """Sweep pending dividends into cash and advance the watermark to ``day``."""

    watermark = session.dividend_accrued_through or session.start_date
    if day <= watermark:
        session.dividend_accrued_through = watermark
        return 0.0
    amount = pending_dividends(session, day)
    if amount > 0:
        session.cash += amount
        session.total_dividends_received += amount
    session.dividend_accrued_through = day
    return amount


# Target resolution


@dataclass(frozen=True)
class TargetPlan:
    allocation_mode: str
    per_asset_modes: dict[str, str]
    requested_inputs: dict[str, float]
    target_values: dict[str, float]
    budget_used: float


def target_tolerance(symbol_count: int, budget: float = 0.0) -> float:
    """Slack for rounding drift: at least 5 cents, growing with symbols and budget.

    Explicit dollar targets pass no budget so only the per-symbol slack applies.
    """

    return max(max(0.05, symbol_count * 0.02), abs(budget) * 0.001)


def round_cents(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def _checked_amount(symbol: str, raw: float, what: str) -> float:
    value = float(raw)
    if not math.isfinite(value) or value < 0:
        raise InvalidTargetError(f"Invalid {what} for {symbol}. Use a value >= 0.")
    return value


def _reject_unknown(session: Session, requested: dict[str, object]) -> None:
    unknown = sorted(set(requested) - set(session.symbols))
    if unknown:
        raise InvalidTargetError(f"Unknown symbols in targets: {', '.join(unknown)}")


def _fit_to_cap(values: dict[str, float], cap: float, tolerance: float, message: str) -> float:
    """Reject sums above cap + tolerance; scale sums just over the cap down to it."""

    total = sum(values.values())
    if total > cap + tolerance:
        raise BudgetExceededError(message)
    if total > cap and total > 0:
        scale = cap / total
        for symbol in values:
            values[symbol] *= scale
        return cap
    return total


def build_target_values(session: Session, valuation: Valuation, allocation: Allocation) -> TargetPlan:
    total = valuation.total
    cap = total + max(0.0, -session.cash)
    tolerance = target_tolerance(len(session.symbols), cap)

    if isinstance(allocation, MixedAllocation):
        _reject_unknown(session, allocation.targets)
        modes: dict[str, str] = {}
        inputs: dict[str, float] = {}
        values: dict[str, float] = {}
        for symbol in session.symbols:
            entry = allocation.targets.get(symbol) or TargetEntry()
            mode = str(entry.mode or "weight").lower()
            if mode not in TARGET_MODES:
                raise InvalidTargetError(f"Invalid target mode: {mode}. Use weight, dollars, or units.")
            value = _checked_amount(symbol, entry.value, "target value")
            if mode == "weight":
                if value > 1:
                    raise InvalidTargetError(f"Weight target for {symbol} must be <= 1.")
                values[symbol] = total * value
            elif mode == "dollars":
                values[symbol] = value
            else:
                values[symbol] = value * valuation.price(symbol)
            modes[symbol] = mode
            inputs[symbol] = value

        rounded_cap = round_cents(cap)
        budget_used = round_cents(sum(values.values()))
        if budget_used > rounded_cap:
            # slider-driven input: normalise overshoot instead of rejecting it
            scale = rounded_cap / budget_used if rounded_cap > 0 else 0.0
            values = {symbol: max(0.0, value * scale) for symbol, value in values.items()}
            budget_used = rounded_cap
        elif budget_used > rounded_cap - tolerance:
            budget_used = rounded_cap
        return TargetPlan("mixed", modes, inputs, values, budget_used)

    if isinstance(allocation, WeightAllocation):
        _reject_unknown(session, allocation.weights)
        weights: dict[str, float] = {}
        for symbol in session.symbols:
            weight = _checked_amount(symbol, allocation.weights.get(symbol, 0.0), "weight")
            if weight > 1:
                raise InvalidTargetError(f"Invalid weight for {symbol}. Use a value between 0 and 1.")
            weights[symbol] = weight
        if sum(weights.values()) > 1 + WEIGHT_SUM_SLACK:
            raise InvalidTargetError("Total weights cannot exceed 1.0")
        values = {symbol: total * weight for symbol, weight in weights.items()}
        return TargetPlan(
            "weight",
            {symbol: "weight" for symbol in session.symbols},
            weights,
            values,
            sum(values.values()),
        )

    if isinstance(allocation, DollarAllocation):
        _reject_unknown(session, allocation.dollars)
        dollars = {
            symbol: _checked_amount(symbol, allocation.dollars.get(symbol, 0.0), "dollar target")
            for symbol in session.symbols
        }
        values = dict(dollars)
        budget_used = _fit_to_cap(
            values,
            cap,
            target_tolerance(len(session.symbols)),
            "Total dollar targets cannot exceed current portfolio value.",
        )
        return TargetPlan("dollars", {symbol: "dollars" for symbol in session.symbols}, dollars, values, budget_used)

    if isinstance(allocation, UnitAllocation):
        _reject_unknown(session, allocation.units)
        units = {
            symbol: _checked_amount(symbol, allocation.units.get(symbol, 0.0), "unit target")
            for symbol in session.symbols
        }
        values = {symbol: quantity * valuation.price(symbol) for symbol, quantity in units.items()}
        budget_used = _fit_to_cap(
            values, cap, tolerance, "Total units implied value cannot exceed current portfolio value."
        )
        return TargetPlan("units", {symbol: "units" for symbol in session.symbols}, units, values, budget_used)

    raise InvalidTargetError(f"Unsupported allocation request: {type(allocation).__name__}")


# Execution


def ensure_open(session: Session) -> date:
    if session.completed:
        raise AlreadyCompletedError()
    day = session.current_date
    if day is None:
        raise ScheduleExhaustedError()
    return day


def _sell(session: Session, symbol: str, quantity: float, price: float, fee_rate: float) -> tuple[float, float]:
    """Reduce a position; realised P&L uses the proportional share of cost basis."""

    position = session.positions[symbol]
    value = quantity * price
    if position.quantity > 0:
        ratio = max(0.0, min(1.0, quantity / position.quantity))
        sold_basis = max(0.0, position.cost_basis * ratio)
        position.cost_basis = max(0.0, position.cost_basis - sold_basis)
        position.realized_profit += value - sold_basis
    position.quantity = max(0.0, position.quantity - quantity)
    fee = value * fee_rate
    session.cash += value - fee
    return value, fee


def _buy(session: Session, symbol: str, quantity: float, price: float, fee_rate: float) -> tuple[float, float]:
    position = session.positions[symbol]
    value = quantity * price
    if position.quantity <= DUST_QUANTITY and quantity > DUST_QUANTITY and position.first_buy_price <= 0:
        position.first_buy_price = price
    position.quantity += quantity
    position.cost_basis += value
    fee = value * fee_rate
    session.cash -= value + fee
    return value, fee


def _clean_dust(session: Session, symbols: list[str]) -> None:
    for symbol in symbols:
        position = session.positions[symbol]
        if position.quantity <= DUST_QUANTITY:
            position.quantity = 0.0
            position.cost_basis = 0.0
    if abs(session.cash) < CASH_EPSILON:
        session.cash = 0.0


def _post_trade_weights(session: Session, valuation: Valuation) -> tuple[float, dict[str, float]]:
    total = session.cash
    values: dict[str, float] = {}
    for symbol in session.symbols:
        if session.is_cash(symbol):
            values[symbol] = session.cash
            continue
        values[symbol] = session.positions[symbol].quantity * valuation.price(symbol)
        total += values[symbol]
    weights = {symbol: (value / total if total > 0 else 0.0) for symbol, value in values.items()}
    return total, weights


@dataclass(frozen=True)
class RebalanceResult:
    date: date
    reference: Valuation
    plan: TargetPlan
    decision: Decision
    dividends_settled: float
    archived: list[str] = field(default_factory=list)


def rebalance(session: Session, allocation: Allocation, *, fee_rate: float, skip_fees: bool = False) -> RebalanceResult:
    """Move the portfolio toward the requested targets at the current schedule date."""

    day = ensure_open(session)
    reference = value_at(session, day)
    plan = build_target_values(session, reference, allocation)
    rate = 0.0 if skip_fees else fee_rate
    total = reference.total

    target_weights = {
        symbol: (plan.target_values[symbol] / total if total > 0 else 0.0) for symbol in session.symbols
    }
    turnover = sum(abs(target_weights[symbol] - reference.weight(symbol)) for symbol in session.symbols) / 2
    turnover = min(1.0, max(0.0, turnover))

    settled = settle_dividends(session, day)

    # the cash bucket is the funding source itself, so it never trades
    legs = [
        (symbol, reference.price(symbol), plan.target_values[symbol] - reference.values[symbol])
        for symbol in session.symbols
        if not session.is_cash(symbol)
    ]

    fee_total = 0.0
    for symbol, price, delta in legs:
        if delta >= -LEG_EPSILON:
            continue
        sell_value = max(0.0, min(reference.values[symbol], -delta))
        if sell_value <= MIN_LEG_VALUE:
            continue
        _, fee = _sell(session, symbol, sell_value / max(price, MIN_PRICE), price, rate)
        fee_total += fee

    buys = [(symbol, price, delta) for symbol, price, delta in legs if delta > LEG_EPSILON]
    demand = sum(delta * (1 + rate) for _, _, delta in buys)
    available = max(0.0, session.cash)
    scale = max(0.0, available / demand) if demand > available + LEG_EPSILON else 1.0
    for symbol, price, delta in buys:
        buy_value = max(0.0, delta * scale)
        if buy_value <= MIN_LEG_VALUE:
            continue
        _, fee = _buy(session, symbol, buy_value / max(price, MIN_PRICE), price, rate)
        fee_total += fee

    _clean_dust(session, list(session.symbols))
    session.fees_paid += fee_total

    archived = [
        symbol
        for symbol in session.symbols
        if not session.is_cash(symbol)
        and plan.target_values[symbol] <= ZERO_TARGET
        and session.positions[symbol].quantity <= DUST_QUANTITY
        and session.positions[symbol].cost_basis <= DUST_BASIS
    ]
    for symbol in archived:
        session.archive_symbol(symbol)

    post_total, actual_weights = _post_trade_weights(session, reference)
    concentration = sum(weight**2 for weight in actual_weights.values())
    cash_ratio = session.cash / post_total if post_total > 0 else 0.0

    decision = Decision(
        date=day,
        allocation_mode=plan.allocation_mode,
        per_asset_modes=plan.per_asset_modes,
        requested_inputs=plan.requested_inputs,
        target_values=plan.target_values,
        target_weights=target_weights,
        actual_weights=actual_weights,
        portfolio_value=post_total,
        cash=session.cash,
        turnover=turnover,
        fee=fee_total,
        concentration=concentration,
        cash_ratio=cash_ratio,
        budget_used=plan.budget_used,
        quantities=session.quantities(),
    )
    session.decisions.append(decision)
    session.turnover_series.append(turnover)
    session.concentration_series.append(concentration)
    session.cash_ratio_series.append(cash_ratio)
    session.snapshots.append(Snapshot(date=day, value=post_total))
    session.step_index += 1

    logger.info(
        "Session %s rebalanced on %s: turnover=%.4f fee=%.2f value=%.2f",
        session.id,
        day.isoformat(),
        turnover,
        fee_total,
        post_total,
    )
    return RebalanceResult(
        date=day,
        reference=reference,
        plan=plan,
        decision=decision,
        dividends_settled=settled,
        archived=archived,
    )


@dataclass(frozen=True)
class TradeOrder:
    sell_symbol: str
    buy_symbol: str
    sell_mode: str = "dollars"
    buy_mode: str = "dollars"
    sell_amount: float = 0.0
    sell_units: float = 0.0
    buy_amount: float = 0.0
    buy_units: float = 0.0
    liquidate_all: bool = False


@dataclass(frozen=True)
class TradeResult:
    date: date
    order: TradeOrder
    record: TradeRecord
    portfolio_value: float


def _validate_order(session: Session, order: TradeOrder) -> None:
    if order.sell_symbol not in session.symbols or order.buy_symbol not in session.symbols:
        raise InputValidationError("Sell/Buy symbols must be in your current portfolio asset list.")
    amounts = (order.sell_amount, order.buy_amount, order.sell_units, order.buy_units)
    if any(not math.isfinite(amount) or amount < 0 for amount in amounts):
        raise InputValidationError("Trade amounts must be valid positive numbers.")
    if order.sell_mode not in TRADE_MODES or order.buy_mode not in TRADE_MODES:
        raise InputValidationError("sellMode and buyMode must be dollars or units.")


def trade(session: Session, order: TradeOrder, *, fee_rate: float) -> TradeResult:
    """Execute one sell-then-buy order at the current schedule date.

    Unlike :func:`rebalance` nothing is scaled: an order that does not fit is
    rejected. Fully sold symbols stay active.
    """

    day = ensure_open(session)
    _validate_order(session, order)
    reference = value_at(session, day)

    sell_symbol, buy_symbol = order.sell_symbol, order.buy_symbol
    sell_is_cash = session.is_cash(sell_symbol)
    buy_is_cash = session.is_cash(buy_symbol)

    sell_price = reference.price(sell_symbol)
    held = reference.cash if sell_is_cash else session.positions[sell_symbol].quantity
    if order.liquidate_all:
        sell_qty = held
    elif order.sell_mode == "units":
        sell_qty = order.sell_units
    else:
        sell_qty = order.sell_amount / max(sell_price, MIN_PRICE)
    sell_value = sell_qty * sell_price
    if sell_value > reference.values[sell_symbol] + TRADE_TOLERANCE:
        raise BudgetExceededError("Sell amount exceeds current position value.")
    sell_fee = 0.0 if sell_is_cash else sell_value * fee_rate
    cash_after_sell = reference.cash + (0.0 if sell_is_cash else sell_value - sell_fee)

    buy_price = reference.price(buy_symbol)
    buy_qty = order.buy_units if order.buy_mode == "units" else order.buy_amount / max(buy_price, MIN_PRICE)
    buy_value = buy_qty * buy_price
    buy_fee = 0.0 if buy_is_cash else buy_value * fee_rate
    if buy_value > 0 and buy_value + buy_fee > cash_after_sell + TRADE_TOLERANCE:
        raise BudgetExceededError("Not enough cash for this buy order after fees.")

    settle_dividends(session, day)

    fee_total = 0.0
    if sell_value > 0 and not sell_is_cash:
        _, fee = _sell(session, sell_symbol, sell_qty, sell_price, fee_rate)
        fee_total += fee
    if buy_value > 0 and not buy_is_cash:
        _, fee = _buy(session, buy_symbol, buy_qty, buy_price, fee_rate)
        fee_total += fee

    _clean_dust(session, [sell_symbol, buy_symbol])
    if -TRADE_TOLERANCE <= session.cash < 0:
        session.cash = 0.0
    session.fees_paid += fee_total

    record = TradeRecord(
        date=day,
        sell_symbol=sell_symbol,
        buy_symbol=buy_symbol,
        sold_units=sell_qty,
        sold_value=sell_value,
        bought_units=buy_qty,
        bought_value=buy_value,
        fee=fee_total,
        cash=session.cash,
        quantities=session.quantities(),
    )
    session.trades.append(record)
    portfolio_value, _ = _post_trade_weights(session, reference)
    logger.info(
        "Session %s traded %s -> %s on %s: sold=%.2f bought=%.2f fee=%.2f",
        session.id,
        sell_symbol,
        buy_symbol,
        day.isoformat(),
        sell_value,
        buy_value,
        fee_total,
    )
    return TradeResult(date=day, order=order, record=record, portfolio_value=portfolio_value)


# Preview


@dataclass(frozen=True)
class HoldingInsight:
    symbol: str
    quantity: float
    price: float
    value: float
    weight: float
    average_price: float
    first_buy_price: float
    realized_profit: float
    closed: bool = False


@dataclass(frozen=True)
class PreviewInsights:
    date: date
    since_date: date
    reference_value: float
    portfolio_value: float
    period_return: float
    cash: float
    holdings: list[HoldingInsight]


def preview_insights(session: Session, valuation: Valuation) -> PreviewInsights:
    """Per-holding breakdown at ``valuation.date`` relative to the last snapshot."""

    last = session.snapshots[-1] if session.snapshots else None
    since = last.date if last else session.start_date
    reference_value = last.value if last else session.initial_cash
    period_return = valuation.total / reference_value - 1 if reference_value > 0 else 0.0

    holdings: list[HoldingInsight] = []
    for symbol in session.symbols:
        position = session.positions[symbol]
        cash_bucket = session.is_cash(symbol)
        holdings.append(
            HoldingInsight(
                symbol=symbol,
                quantity=valuation.cash if cash_bucket else position.quantity,
                price=valuation.price(symbol),
                value=valuation.values[symbol],
                weight=valuation.weight(symbol),
                average_price=valuation.price(symbol) if cash_bucket else position.average_price,
                first_buy_price=position.first_buy_price,
                realized_profit=position.realized_profit,
            )
        )
    for symbol, closed in session.closed_positions.items():
        holdings.append(
            HoldingInsight(
                symbol=symbol,
                quantity=0.0,
                price=0.0,
                value=0.0,
                weight=0.0,
                average_price=0.0,
                first_buy_price=closed.first_buy_price,
                realized_profit=closed.realized_profit,
                closed=True,
            )
        )
    holdings.sort(key=lambda holding: holding.value, reverse=True)

    return PreviewInsights(
        date=valuation.date,
        since_date=since,
        reference_value=reference_value,
        portfolio_value=valuation.total,
        period_return=period_return,
        cash=valuation.cash,
        holdings=holdings,
    )


__all__ = [
    "Allocation",
    "DollarAllocation",
    "HoldingInsight",
    "MixedAllocation",
    "PreviewInsights",
    "RebalanceResult",
    "TargetEntry",
    "TargetPlan",
    "TradeOrder",
    "TradeResult",
    "UnitAllocation",
    "Valuation",
    "WeightAllocation",
    "build_target_values",
    "ensure_open",
    "pending_dividends",
    "preview_insights",
    "rebalance",
    "select_allocation",
    "settle_dividends",
    "target_tolerance",
    "trade",
    "value_at",
]
