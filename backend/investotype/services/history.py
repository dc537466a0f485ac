"""Daily price series, lookup helpers and synthetic series generation."""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterable, Iterator, Literal, NamedTuple, Sequence, overload

from investotype.core.errors import PriceUnavailableError

PriceField = Literal["close", "adj_close"]

MIN_SYNTHETIC_PRICE = 0.0001
MAX_DAILY_LOSS = -0.95
MAX_OPTION_DAILY_GAIN = 3.0


@dataclass(frozen=True)
class PricePoint:
    date: date
    close: float
    adj_close: float
    dividend: float = 0.0


class PriceQuote(NamedTuple):
    date: date
    price: float


class History(Sequence[PricePoint]):
    """Immutable, date-ordered price series for one asset.

    Dates are strictly increasing; non-trading days simply have no row.
    """

    def __init__(self, points: Iterable[PricePoint] = ()) -> None:
        self._points: tuple[PricePoint, ...] = tuple(points)
        self._dates: list[date] = [p.date for p in self._points]
        for previous, current in zip(self._dates, self._dates[1:]):
            if current <= previous:
                raise ValueError(f"History dates must be strictly increasing ({previous} -> {current})")

    @classmethod
    def from_rows(cls, points: Iterable[PricePoint]) -> "History":
        """Sort rows by date; a later row for the same date replaces the earlier one."""

        by_date: dict[date, PricePoint] = {}
        for point in points:
            by_date[point.date] = point
        return cls(by_date[d] for d in sorted(by_date))

    @overload
    def __getitem__(self, index: int) -> PricePoint: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[PricePoint]: ...

    def __getitem__(self, index):  # type: ignore[no-untyped-def]
        return self._points[index]

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[PricePoint]:
        return iter(self._points)

    def __repr__(self) -> str:
        if not self._points:
            return "History([])"
        return f"History({len(self)} rows, {self._dates[0]}..{self._dates[-1]})"

    @property
    def dates(self) -> list[date]:
        return list(self._dates)

    def on_or_before(self, day: date, field: PriceField = "close") -> PriceQuote | None:
        index = bisect_right(self._dates, day) - 1
        if index < 0:
            return None
        point = self._points[index]
        return PriceQuote(point.date, getattr(point, field))

    def on_or_after(self, day: date, field: PriceField = "close") -> PriceQuote | None:
        index = bisect_left(self._dates, day)
        if index >= len(self._points):
            return None
        point = self._points[index]
        return PriceQuote(point.date, getattr(point, field))

    def nearest(self, day: date, field: PriceField = "close") -> PriceQuote | None:
        return self.on_or_before(day, field) or self.on_or_after(day, field)

    def require_nearest(self, day: date, field: PriceField = "close", *, symbol: str = "") -> PriceQuote:
        quote = self.nearest(day, field)
        if quote is None or not quote.price > 0:
            raise PriceUnavailableError(f"No price found for {symbol or 'asset'} near {day.isoformat()}")
        return quote

    def dividends_between(self, after: date, through: date) -> float:
        """Per-share dividends with ex-date strictly after ``after`` and on or before ``through``."""

        if through <= after:
            return 0.0
        lo = bisect_right(self._dates, after)
        hi = bisect_right(self._dates, through)
        return sum(p.dividend for p in self._points[lo:hi] if p.dividend > 0)

    def return_between(self, start: date, end: date, field: PriceField = "close") -> float | None:
        to_point = self.on_or_before(end, field)
        from_point = self.nearest(start, field)
        if to_point is None or from_point is None:
            return None
        if not (from_point.price > 0 and to_point.price > 0):
            return None
        return to_point.price / from_point.price - 1

    def daily_return_at(self, day: date, field: PriceField = "close") -> float | None:
        index = bisect_right(self._dates, day) - 1
        if index <= 0:
            return None
        previous = getattr(self._points[index - 1], field)
        current = getattr(self._points[index], field)
        if not (previous > 0 and current > 0):
            return None
        return current / previous - 1

    def latest_dividend(self, day: date) -> PriceQuote | None:
        index = bisect_right(self._dates, day) - 1
        while index >= 0:
            point = self._points[index]
            if point.dividend > 0:
                return PriceQuote(point.date, point.dividend)
            index -= 1
        return None


def calendar_history(start: date, end: date, daily_growth: float = 0.0) -> History:
    """Gap-free synthetic series starting at 1 and compounding ``daily_growth``."""

    points: list[PricePoint] = []
    price = 1.0
    current = start
    while current <= end:
        points.append(PricePoint(date=current, close=price, adj_close=price))
        price *= 1 + daily_growth
        current += timedelta(days=1)
    return History(points)


def savings_daily_rate(apy: float) -> float:
    return (1 + apy) ** (1 / 365) - 1


def transformed_history(base: History, transform: Callable[[float], float]) -> History:
    """Rebase ``base`` to 1 and compound ``transform(daily adjusted return)``."""

    if not base:
        return History()
    price = 1.0
    points = [PricePoint(date=base[0].date, close=price, adj_close=price)]
    for previous, current in zip(base, base[1:]):
        base_return = current.adj_close / previous.adj_close - 1 if previous.adj_close > 0 else 0.0
        price *= 1 + transform(base_return)
        price = max(price, MIN_SYNTHETIC_PRICE)
        points.append(PricePoint(date=current.date, close=price, adj_close=price))
    return History(points)


def leverage_history(base: History, multiplier: float) -> History:
    return transformed_history(base, lambda r: max(MAX_DAILY_LOSS, r * multiplier))


def option_history(base: History, multiplier: float, daily_decay: float) -> History:
    """Call-like payoff model: leveraged daily move minus a constant time decay.

    A heuristic for the simulator, not an option pricing formula.
    """

    return transformed_history(
        base,
        lambda r: min(MAX_OPTION_DAILY_GAIN, max(MAX_DAILY_LOSS, r * multiplier - daily_decay)),
    )


__all__ = [
    "History",
    "PriceField",
    "PricePoint",
    "PriceQuote",
    "calendar_history",
    "leverage_history",
    "option_history",
    "savings_daily_rate",
    "transformed_history",
]
