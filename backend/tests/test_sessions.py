"""Rebalance schedules, the session aggregate and the in-memory store."""

from __future__ import annotations

from datetime import date

import pytest

from investotype.core.errors import InputValidationError
from investotype.services.assets import parse_asset_token
from investotype.services.history import calendar_history
from investotype.services.sessions import (
    Frequency,
    InMemorySessionStore,
    Session,
    add_months,
    build_schedule,
)


def test_weekly_schedule_includes_end_when_on_cadence():
    schedule = build_schedule(date(2020, 1, 1), date(2020, 1, 8), Frequency.WEEKLY)

    assert schedule == [date(2020, 1, 1), date(2020, 1, 8)]


def test_monthly_schedule_is_anchored_on_start_day():
    schedule = build_schedule(date(2020, 1, 31), date(2020, 6, 1), Frequency.MONTHLY)

    assert schedule == [
        date(2020, 1, 31),
        date(2020, 2, 29),
        date(2020, 3, 31),
        date(2020, 4, 30),
        date(2020, 5, 31),
    ]


@pytest.mark.parametrize("frequency", list(Frequency))
def test_schedule_is_strictly_increasing_within_range(frequency):
    start, end = date(2019, 11, 30), date(2020, 3, 15)
    schedule = build_schedule(start, end, frequency)

    assert schedule[0] == start
    assert schedule[-1] <= end
    assert all(earlier < later for earlier, later in zip(schedule, schedule[1:]))


def test_daily_schedule_counts_every_day():
    assert len(build_schedule(date(2020, 2, 1), date(2020, 2, 29), Frequency.DAILY)) == 29


def test_schedule_rejects_inverted_range():
    with pytest.raises(InputValidationError):
        build_schedule(date(2020, 2, 1), date(2020, 1, 1), Frequency.DAILY)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2021, 1, 31), 1) == date(2021, 2, 28)
    assert add_months(date(2020, 11, 30), 3) == date(2021, 2, 28)


def _session() -> Session:
    start, end = date(2020, 1, 1), date(2020, 1, 15)
    return Session(
        start_date=start,
        end_date=end,
        frequency=Frequency.WEEKLY,
        schedule=build_schedule(start, end, Frequency.WEEKLY),
        initial_cash=1_000.0,
        cash=1_000.0,
    )


def test_session_steps_through_schedule():
    session = _session()

    assert session.current_date == date(2020, 1, 1)
    assert session.total_steps == 3
    assert session.dividend_accrued_through == session.start_date

    session.step_index = 3
    assert session.current_date is None


def test_archived_symbol_keeps_history_and_restores_pnl():
    session = _session()
    history = calendar_history(session.start_date, session.end_date)
    session.add_symbol(parse_asset_token("CASH"), history)
    session.add_symbol(parse_asset_token("SAVINGS"), history)
    session.positions["SAVINGS"].first_buy_price = 1.0
    session.positions["SAVINGS"].realized_profit = 12.5

    session.archive_symbol("SAVINGS")

    assert session.symbols == ["CASH"]
    assert session.closed_positions["SAVINGS"].realized_profit == 12.5
    assert "SAVINGS" in session.histories
    assert session.is_cash("CASH") and not session.is_cash("SAVINGS")

    session.add_symbol(parse_asset_token("SAVINGS"), history)

    assert session.symbols == ["CASH", "SAVINGS"]
    assert "SAVINGS" not in session.closed_positions
    assert session.positions["SAVINGS"].quantity == 0.0
    assert session.positions["SAVINGS"].realized_profit == 12.5


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_store_evicts_idle_sessions():
    clock = FakeClock()
    store = InMemorySessionStore(60, clock=clock)
    session = _session()
    store.put(session)

    clock.now = 50
    assert store.get(session.id) is session
    clock.now = 100
    # the read at t=50 refreshed the idle timer
    assert store.get(session.id) is session
    clock.now = 200
    assert store.get(session.id) is None
    assert len(store) == 0


def test_store_remove():
    store = InMemorySessionStore()
    session = _session()
    store.put(session)
    store.remove(session.id)
    store.remove("missing")

    assert store.get(session.id) is None
