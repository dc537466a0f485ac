"""Read-only views rebuilt from a session's event log and price histories."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

import pandas as pd

from investotype.services.history import History
from investotype.services.sessions import Session, Snapshot


@dataclass(frozen=True)
class ReplayFrame:
    date: date
    prices: dict[str, float]


def _state_changes(session: Session) -> dict[date, tuple[float, dict[str, float]]]:
    """Post-event (cash, quantities) keyed by date; the last event of a day wins.

    Trades happen on the pending schedule date, so on any given day they
    precede the rebalance for that day.
    """

    events = [(trade.date, 0, trade.cash, trade.quantities) for trade in session.trades]
    events += [(decision.date, 1, decision.cash, decision.quantities) for decision in session.decisions]
    events.sort(key=lambda event: (event[0], event[1]))
    return {day: (cash, quantities) for day, _, cash, quantities in events}


def daily_timeline(session: Session, end: date) -> list[Snapshot]:
    """Calendar-day portfolio value from the start date to ``end`` using recorded holdings."""

    changes = _state_changes(session)
    cash = session.initial_cash
    quantities: dict[str, float] = {}
    points: list[Snapshot] = []
    current = session.start_date
    while current <= end:
        change = changes.get(current)
        if change is not None:
            cash, quantities = change
        value = cash
        for symbol, quantity in quantities.items():
            history = session.histories.get(symbol)
            if quantity <= 0 or history is None:
                continue
            quote = history.on_or_before(current, "close")
            if quote is not None:
                value += quantity * quote.price
        points.append(Snapshot(date=current, value=value))
        current += timedelta(days=1)
    return points


def replay_frames(session: Session) -> list[ReplayFrame]:
    """One frame per trading day in the session window with forward-filled closes.

    Symbols with no row yet on a given day report 0.
    """

    symbols = list(session.symbols)
    if not symbols:
        return []
    columns = {
        symbol: pd.Series(
            {pd.Timestamp(point.date): point.close for point in session.histories[symbol]},
            dtype=float,
        )
        for symbol in symbols
    }
    frame = pd.DataFrame(columns).sort_index().ffill().fillna(0.0)
    if frame.empty:
        return []
    window = frame.loc[pd.Timestamp(session.start_date) : pd.Timestamp(session.end_date)]
    return [
        ReplayFrame(date=timestamp.date(), prices={symbol: float(row[symbol]) for symbol in symbols})
        for timestamp, row in window.iterrows()
    ]


def rebased_series(history: History, anchor: date, dates: Iterable[date], base_value: float) -> list[Snapshot]:
    """Value of ``base_value`` invested at ``anchor`` and tracked on adjusted closes."""

    start = history.nearest(anchor, "adj_close")
    if start is None or not start.price > 0:
        return []
    points: list[Snapshot] = []
    for day in dates:
        quote = history.on_or_before(day, "adj_close")
        if quote is None or not quote.price > 0:
            continue
        points.append(Snapshot(date=day, value=base_value * quote.price / start.price))
    return points


__all__ = ["ReplayFrame", "daily_timeline", "rebased_series", "replay_frames"]
