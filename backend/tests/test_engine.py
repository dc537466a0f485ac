"""Rebalance and trade execution on in-memory sessions."""

from __future__ import annotations

import copy
from datetime import date, timedelta

import pytest

from investotype.core.errors import (
    AlreadyCompletedError,
    BudgetExceededError,
    InputValidationError,
    InvalidTargetError,
    ScheduleExhaustedError,
)
from investotype.services import engine
from investotype.services.assets import parse_asset_token
from investotype.services.history import History, PricePoint, calendar_history
from investotype.services.sessions import Frequency, Session, build_schedule

START = date(2020, 1, 1)
FEE = 0.001


def daily_points(start: date, closes: list[float], dividends: dict[int, float] | None = None) -> list[PricePoint]:
    dividends = dividends or {}
    return [
        PricePoint(start + timedelta(days=offset), close, close, dividends.get(offset, 0.0))
        for offset, close in enumerate(closes)
    ]


def make_session(
    closes: dict[str, list[float]],
    *,
    cash: float = 10_000.0,
    dividends: dict[str, dict[int, float]] | None = None,
) -> Session:
    length = max((len(series) for series in closes.values()), default=15)
    end = START + timedelta(days=length - 1)
    session = Session(
        start_date=START,
        end_date=end,
        frequency=Frequency.WEEKLY,
        schedule=build_schedule(START, end, Frequency.WEEKLY),
        initial_cash=cash,
        cash=cash,
    )
    session.add_symbol(parse_asset_token("CASH"), calendar_history(START, end))
    for symbol, series in closes.items():
        points = daily_points(START, series, (dividends or {}).get(symbol))
        session.add_symbol(parse_asset_token(symbol), History(points))
    return session


def flat(price: float, days: int = 15) -> list[float]:
    return [price] * days


def state(session: Session) -> dict:
    return copy.deepcopy(
        {
            "cash": session.cash,
            "step": session.step_index,
            "symbols": list(session.symbols),
            "positions": session.positions,
            "fees": session.fees_paid,
            "decisions": len(session.decisions),
            "trades": len(session.trades),
            "watermark": session.dividend_accrued_through,
        }
    )


def test_cash_only_session_values_at_initial_cash():
    session = make_session({}, cash=10_000.0)

    valuation = engine.value_at(session, START)

    assert session.schedule == [START, date(2020, 1, 8), date(2020, 1, 15)]
    assert valuation.total == 10_000.0
    assert valuation.price("CASH") == 1.0
    assert valuation.weight("CASH") == 1.0


def test_full_cash_weight_is_a_no_op():
    session = make_session({})

    result = engine.rebalance(session, engine.WeightAllocation({"CASH": 1.0}), fee_rate=FEE)

    assert result.decision.turnover == 0.0
    assert result.decision.fee == 0.0
    assert session.cash == 10_000.0
    assert session.step_index == 1
    assert session.snapshots[-1].value == 10_000.0


def test_dollar_overshoot_is_rejected_but_mixed_overshoot_is_scaled():
    session = make_session({"AAA": flat(100.0), "BBB": flat(50.0)})
    before = state(session)

    with pytest.raises(BudgetExceededError):
        engine.rebalance(session, engine.DollarAllocation({"AAA": 6_000, "BBB": 5_000}), fee_rate=FEE)
    assert state(session) == before

    targets = {
        "AAA": engine.TargetEntry("dollars", 6_000),
        "BBB": engine.TargetEntry("dollars", 5_000),
    }
    result = engine.rebalance(session, engine.MixedAllocation(targets), fee_rate=FEE)

    assert result.plan.budget_used == 10_000.0
    assert sum(result.plan.target_values.values()) == pytest.approx(10_000.0)
    assert result.plan.target_values["AAA"] == pytest.approx(6_000 * 10_000 / 11_000)
    assert session.cash >= 0


def test_dollar_targets_only_absorb_cent_drift():
    session = make_session({"AAA": flat(100.0), "BBB": flat(50.0)})
    before = state(session)

    # three symbols allow 6 cents of slack whatever the portfolio size
    with pytest.raises(BudgetExceededError):
        engine.rebalance(session, engine.DollarAllocation({"AAA": 6_000, "BBB": 4_009}), fee_rate=0.0)
    assert state(session) == before

    result = engine.rebalance(session, engine.DollarAllocation({"AAA": 6_000, "BBB": 4_000.04}), fee_rate=0.0)

    assert sum(result.plan.target_values.values()) == pytest.approx(10_000.0)
    assert session.cash >= 0


def test_unit_targets_keep_relative_slack():
    session = make_session({"AAA": flat(100.0)})

    result = engine.rebalance(session, engine.UnitAllocation({"AAA": 100.05}), fee_rate=0.0)

    assert result.plan.target_values["AAA"] == pytest.approx(10_000.0)
    assert session.positions["AAA"].quantity == pytest.approx(100.0)


def test_target_tolerance():
    assert engine.target_tolerance(3) == pytest.approx(0.06)
    assert engine.target_tolerance(1) == pytest.approx(0.05)
    assert engine.target_tolerance(3, 10_000) == pytest.approx(10.0)


def test_rebalance_conserves_value_net_of_fees():
    closes = {"AAA": [100.0] * 7 + [120.0] * 8, "BBB": [50.0] * 7 + [40.0] * 8}
    session = make_session(closes)

    first = engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5, "BBB": 0.5}), fee_rate=FEE)
    assert first.decision.portfolio_value + first.decision.fee == pytest.approx(10_000.0)
    assert session.cash >= 0
    assert session.fees_paid == pytest.approx(first.decision.fee)

    before = engine.value_at(session, date(2020, 1, 8)).total
    second = engine.rebalance(session, engine.WeightAllocation({"AAA": 0.2, "BBB": 0.3}), fee_rate=FEE)

    assert second.decision.portfolio_value + second.decision.fee == pytest.approx(before)
    assert 0.0 <= second.decision.turnover <= 1.0
    assert session.cash > 0
    assert all(position.quantity >= 0 for position in session.positions.values())


def test_buys_are_scaled_to_available_cash():
    session = make_session({"AAA": flat(100.0)})

    result = engine.rebalance(session, engine.WeightAllocation({"AAA": 1.0}), fee_rate=0.01)

    assert session.cash == pytest.approx(0.0, abs=1e-6)
    assert session.cash >= 0
    assert session.positions["AAA"].quantity == pytest.approx(10_000 / 1.01 / 100)
    assert result.decision.turnover == 1.0


def test_skip_fees():
    session = make_session({"AAA": flat(100.0)})

    result = engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5}), fee_rate=FEE, skip_fees=True)

    assert result.decision.fee == 0.0
    assert session.positions["AAA"].quantity == pytest.approx(50.0)
    assert session.cash == pytest.approx(5_000.0)


def test_unit_targets_and_mixed_modes():
    session = make_session({"AAA": flat(100.0), "BBB": flat(50.0)})

    targets = {"AAA": engine.TargetEntry("units", 20), "BBB": engine.TargetEntry("weight", 0.5)}
    result = engine.rebalance(session, engine.MixedAllocation(targets), fee_rate=0.0)

    assert result.plan.per_asset_modes == {"CASH": "weight", "AAA": "units", "BBB": "weight"}
    assert session.positions["AAA"].quantity == pytest.approx(20.0)
    assert session.positions["BBB"].quantity == pytest.approx(100.0)
    assert session.cash == pytest.approx(3_000.0)


@pytest.mark.parametrize(
    "allocation",
    [
        engine.WeightAllocation({"AAA": 0.7, "CASH": 0.5}),
        engine.WeightAllocation({"AAA": 1.5}),
        engine.WeightAllocation({"ZZZ": 0.1}),
        engine.DollarAllocation({"AAA": -5}),
        engine.MixedAllocation({"AAA": engine.TargetEntry("shares", 1)}),
    ],
)
def test_invalid_targets_leave_session_untouched(allocation):
    session = make_session({"AAA": flat(100.0)})
    before = state(session)

    with pytest.raises(InvalidTargetError):
        engine.rebalance(session, allocation, fee_rate=FEE)

    assert state(session) == before


def test_select_allocation_requires_exactly_one_shape():
    with pytest.raises(InvalidTargetError):
        engine.select_allocation()
    with pytest.raises(InvalidTargetError):
        engine.select_allocation(weights={"A": 1}, dollars={"A": 1})

    allocation = engine.select_allocation(units={"A": 2})
    assert isinstance(allocation, engine.UnitAllocation)
    assert allocation.mode == "units"


def test_zero_target_archives_sold_out_symbol():
    session = make_session({"AAA": flat(100.0), "BBB": flat(50.0)})
    engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5, "BBB": 0.5}), fee_rate=FEE)

    result = engine.rebalance(session, engine.WeightAllocation({"AAA": 1.0}), fee_rate=FEE)

    assert result.archived == ["BBB"]
    assert session.symbols == ["CASH", "AAA"]
    assert session.closed_positions["BBB"].first_buy_price == 50.0
    assert session.closed_positions["BBB"].realized_profit == pytest.approx(0.0)
    assert "CASH" in session.symbols


def test_liquidating_trade_does_not_archive():
    session = make_session({"AAA": flat(100.0)})
    engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5}), fee_rate=FEE)

    order = engine.TradeOrder(sell_symbol="AAA", buy_symbol="CASH", liquidate_all=True)
    result = engine.trade(session, order, fee_rate=FEE)

    assert session.positions["AAA"].quantity == 0.0
    assert session.positions["AAA"].cost_basis == 0.0
    assert "AAA" in session.symbols
    assert "AAA" not in session.closed_positions
    assert result.record.bought_value == 0.0
    assert session.step_index == 1

    engine.rebalance(session, engine.WeightAllocation({"CASH": 1.0}), fee_rate=FEE)

    assert "AAA" in session.closed_positions
    assert "AAA" not in session.symbols


def test_trade_from_cash_charges_fee_on_buy_leg_only():
    session = make_session({"AAA": flat(100.0)})

    order = engine.TradeOrder(sell_symbol="CASH", buy_symbol="AAA", sell_amount=1_000, buy_amount=1_000)
    result = engine.trade(session, order, fee_rate=FEE)

    assert result.record.fee == pytest.approx(1.0)
    assert session.cash == pytest.approx(8_999.0)
    assert session.positions["AAA"].quantity == pytest.approx(10.0)
    assert session.positions["AAA"].first_buy_price == 100.0
    assert result.portfolio_value == pytest.approx(9_999.0)
    assert session.trades[-1].quantities == {"CASH": 0.0, "AAA": pytest.approx(10.0)}


def test_trade_sell_then_buy_in_units():
    session = make_session({"AAA": flat(100.0), "BBB": flat(50.0)})
    engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5}), fee_rate=0.0)

    order = engine.TradeOrder(
        sell_symbol="AAA",
        buy_symbol="BBB",
        sell_mode="units",
        sell_units=10,
        buy_mode="units",
        buy_units=19,
    )
    engine.trade(session, order, fee_rate=FEE)

    assert session.positions["AAA"].quantity == pytest.approx(40.0)
    assert session.positions["BBB"].quantity == pytest.approx(19.0)
    assert session.positions["AAA"].realized_profit == pytest.approx(0.0)
    assert session.cash == pytest.approx(5_000 + 1_000 - 1.0 - 950 - 0.95)


@pytest.mark.parametrize(
    ("order", "error"),
    [
        (engine.TradeOrder(sell_symbol="CASH", buy_symbol="AAA", buy_amount=20_000), BudgetExceededError),
        (engine.TradeOrder(sell_symbol="AAA", buy_symbol="CASH", sell_amount=1), BudgetExceededError),
        (engine.TradeOrder(sell_symbol="ZZZ", buy_symbol="AAA"), InputValidationError),
        (engine.TradeOrder(sell_symbol="CASH", buy_symbol="AAA", buy_amount=-1), InputValidationError),
        (engine.TradeOrder(sell_symbol="CASH", buy_symbol="AAA", buy_mode="shares"), InputValidationError),
    ],
)
def test_rejected_trades_leave_session_untouched(order, error):
    session = make_session({"AAA": flat(100.0)})
    before = state(session)

    with pytest.raises(error):
        engine.trade(session, order, fee_rate=FEE)

    assert state(session) == before


def test_dividends_accrue_between_rebalances():
    session = make_session({"AAA": flat(100.0)}, dividends={"AAA": {3: 1.0, 10: 2.0}})
    engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5}), fee_rate=FEE, skip_fees=True)

    pending = engine.value_at(session, date(2020, 1, 8))
    assert pending.pending_dividends == pytest.approx(50.0)
    assert pending.cash == pytest.approx(5_050.0)
    assert session.cash == pytest.approx(5_000.0)

    result = engine.rebalance(session, engine.WeightAllocation({"AAA": 0.5}), fee_rate=FEE, skip_fees=True)

    assert result.dividends_settled == pytest.approx(50.0)
    assert session.total_dividends_received == pytest.approx(50.0)
    assert session.dividend_accrued_through == date(2020, 1, 8)
    assert engine.settle_dividends(session, date(2020, 1, 8)) == 0.0


def test_closed_and_exhausted_sessions_reject_orders():
    session = make_session({})
    for _ in session.schedule:
        engine.rebalance(session, engine.WeightAllocation({"CASH": 1.0}), fee_rate=FEE)

    with pytest.raises(ScheduleExhaustedError):
        engine.rebalance(session, engine.WeightAllocation({"CASH": 1.0}), fee_rate=FEE)

    session.completed = True
    with pytest.raises(AlreadyCompletedError):
        engine.trade(session, engine.TradeOrder(sell_symbol="CASH", buy_symbol="CASH"), fee_rate=FEE)


def test_preview_insights_lists_cash_and_closed_positions():
    session = make_session({"AAA": flat(100.0), "BBB": flat(50.0)})
    engine.rebalance(session, engine.WeightAllocation({"AAA": 0.6, "BBB": 0.2}), fee_rate=0.0)
    engine.rebalance(session, engine.WeightAllocation({"AAA": 0.6}), fee_rate=0.0)

    insights = engine.preview_insights(session, engine.value_at(session, date(2020, 1, 15)))

    assert [holding.symbol for holding in insights.holdings] == ["AAA", "CASH", "BBB"]
    cash = insights.holdings[1]
    assert cash.quantity == pytest.approx(4_000.0) and cash.price == 1.0
    assert insights.holdings[-1].closed
    assert insights.since_date == date(2020, 1, 8)
    assert insights.period_return == pytest.approx(0.0)
