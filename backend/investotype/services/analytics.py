"""Return statistics, behaviour metrics and the investor-type classifier."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

import numpy as np

from investotype.services.sessions import Session

DAYS_PER_YEAR = 365.25
TRADING_DAYS = 252
FLIP_THRESHOLD = 1e-4
NO_DECISION_TURNOVER_FACTOR = 0.65


def cagr(start_value: float, end_value: float, start: date, end: date) -> float:
    years = (end - start).days / DAYS_PER_YEAR
    if years <= 0 or start_value <= 0 or end_value <= 0:
        return 0.0
    return (end_value / start_value) ** (1 / years) - 1


def max_drawdown(values: Iterable[float]) -> float:
    peak = -math.inf
    worst = 0.0
    for value in values:
        peak = max(peak, value)
        if peak > 0:
            worst = max(worst, (peak - value) / peak)
    return worst


def population_std(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def simple_returns(values: Sequence[float]) -> list[float]:
    return [current / previous - 1 for previous, current in zip(values, values[1:]) if previous > 0]


def annualized_volatility(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    return population_std(simple_returns(values)) * math.sqrt(TRADING_DAYS)


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if values else 0.0


@dataclass(frozen=True)
class BehaviorMetrics:
    avg_turnover: float
    avg_concentration: float
    avg_cash_ratio: float
    annualized_volatility: float
    max_drawdown: float
    trade_activity: float = 0.0
    turnover_std: float = 0.0
    avg_top_weight: float = 0.0
    fee_intensity: float = 0.0
    decision_drift: float = 0.0
    direction_flip_rate: float = 0.0


def _drift_and_flips(weights_by_decision: list[dict[str, float]]) -> tuple[float, float]:
    if len(weights_by_decision) < 2:
        return 0.0, 0.0
    universe = list(dict.fromkeys(symbol for weights in weights_by_decision for symbol in weights))
    changes: dict[str, list[float]] = {symbol: [] for symbol in universe}
    drift_total = 0.0
    drift_steps = 0
    for previous, current in zip(weights_by_decision, weights_by_decision[1:]):
        step = 0.0
        for symbol in universe:
            delta = current.get(symbol, 0.0) - previous.get(symbol, 0.0)
            step += abs(delta)
            changes[symbol].append(delta)
        if universe:
            drift_total += step / len(universe)
            drift_steps += 1

    flips = 0
    checks = 0
    for deltas in changes.values():
        for a, b in zip(deltas, deltas[1:]):
            if abs(a) < FLIP_THRESHOLD or abs(b) < FLIP_THRESHOLD:
                continue
            checks += 1
            if (a > 0) != (b > 0):
                flips += 1

    drift = drift_total / drift_steps if drift_steps else 0.0
    return drift, (flips / checks if checks else 0.0)


def behavior_metrics(
    session: Session,
    *,
    final_value: float,
    final_weights: dict[str, float],
    volatility: float,
    drawdown: float,
) -> BehaviorMetrics:
    """Aggregate the per-rebalance series into classifier inputs.

    Sessions without any rebalance fall back to values derived from the final
    holdings so the classifier still gets a meaningful picture.
    """

    decisions = session.decisions
    activity = min(1.0, len(decisions) / max(1, len(session.schedule)))

    top_weights = [max(d.actual_weights.values(), default=0.0) for d in decisions]
    if top_weights:
        avg_top_weight = _mean(top_weights)
    else:
        avg_top_weight = max(final_weights.values(), default=0.0)

    fee_intensity = _mean([d.fee / max(1.0, d.portfolio_value) for d in decisions])
    drift, flip_rate = _drift_and_flips([d.actual_weights for d in decisions])

    if session.turnover_series:
        avg_turnover = _mean(session.turnover_series)
    else:
        avg_turnover = min(1.0, activity * NO_DECISION_TURNOVER_FACTOR)
    if session.concentration_series:
        avg_concentration = _mean(session.concentration_series)
    else:
        avg_concentration = sum(weight**2 for weight in final_weights.values())
    if session.cash_ratio_series:
        avg_cash_ratio = _mean(session.cash_ratio_series)
    else:
        avg_cash_ratio = session.cash / max(final_value, 1.0)

    return BehaviorMetrics(
        avg_turnover=avg_turnover,
        avg_concentration=avg_concentration,
        avg_cash_ratio=avg_cash_ratio,
        annualized_volatility=volatility,
        max_drawdown=drawdown,
        trade_activity=activity,
        turnover_std=population_std(session.turnover_series),
        avg_top_weight=avg_top_weight,
        fee_intensity=fee_intensity,
        decision_drift=drift,
        direction_flip_rate=flip_rate,
    )


# Classification
#
# Heuristic scoring: the coefficients below were picked by hand, not fitted.


@dataclass(frozen=True)
class LogisticCurve:
    midpoint: float
    steepness: float

    def percent(self, raw: float) -> int:
        p = 1 / (1 + math.exp(-self.steepness * (raw - self.midpoint)))
        return max(0, min(100, math.floor(p * 100 + 0.5)))


@dataclass(frozen=True)
class RiskWeights:
    volatility: float = 0.36
    drawdown: float = 0.28
    concentration: float = 0.16
    top_weight: float = 0.12
    fee_intensity: float = 0.06
    trade_activity: float = 0.10
    invested_share: float = 0.07


@dataclass(frozen=True)
class ControlWeights:
    turnover: float = 0.42
    concentration: float = 0.16
    top_weight: float = 0.16
    trade_activity: float = 0.20
    turnover_dispersion: float = 0.04
    decision_drift: float = 0.02


@dataclass(frozen=True)
class ReactivityWeights:
    turnover: float = 0.34
    drawdown: float = 0.30
    volatility: float = 0.16
    turnover_dispersion: float = 0.14
    fee_intensity: float = 0.04
    direction_flips: float = 0.06


@dataclass(frozen=True)
class ClassificationModel:
    """Axis weights, logistic curves and scaling factors used by :func:`classify_investor`.

    The values are empirical heuristics tuned on simulated behaviour, not derived
    from a model. Pass a modified instance to experiment with other calibrations.
    """

    risk: RiskWeights = field(default_factory=RiskWeights)
    control: ControlWeights = field(default_factory=ControlWeights)
    reactivity: ReactivityWeights = field(default_factory=ReactivityWeights)
    risk_curve: LogisticCurve = field(default_factory=lambda: LogisticCurve(0.23, 10.5))
    control_curve: LogisticCurve = field(default_factory=lambda: LogisticCurve(0.24, 9.5))
    reactivity_curve: LogisticCurve = field(default_factory=lambda: LogisticCurve(0.22, 10.5))
    fee_intensity_scale: float = 12.0
    control_dispersion_scale: float = 1.8
    reactivity_dispersion_scale: float = 1.9
    drift_scale: float = 2.2


@dataclass(frozen=True)
class Archetype:
    type: str
    recommendation: str


ARCHETYPES: dict[str, Archetype] = {
    "A-I-R": Archetype(
        "The Quant",
        "Keep your edge process-driven: use written rules, risk budgets, and periodic model validation "
        "to avoid overconfidence.",
    ),
    "A-I-E": Archetype(
        "Active Conviction Investor",
        "Strong initiative, but add emotional guardrails: pre-commit exits, cap concentration, and use "
        "cooldown windows after big swings.",
    ),
    "A-E-R": Archetype(
        "Tactical Trend Analyst",
        "You adapt quickly and stay analytical. Anchor with a core allocation so tactical moves do not "
        "dominate long-term outcomes.",
    ),
    "A-E-E": Archetype(
        "Aggressive Reactive Trader",
        "High upside mindset with high emotional risk. Enforce strict position sizing, loss limits, and "
        "profit-taking rules.",
    ),
    "C-I-R": Archetype(
        "Conservative Researcher",
        "Your discipline is a strength. Avoid excessive caution by defining clear conditions for gradually "
        "adding risk when trends improve.",
    ),
    "C-I-E": Archetype(
        "Defensive Active Allocator",
        "You care about safety but can react to stress. Use automation and preset allocations to reduce "
        "decision pressure.",
    ),
    "C-E-R": Archetype(
        "Passive Rational Allocator",
        "Excellent long-term temperament. Keep low-cost diversified exposure and rebalance on schedule, "
        "not headlines.",
    ),
    "C-E-E": Archetype(
        "Passive Emotional Allocator",
        "Simplicity and emotional protection matter most. Prefer hands-off index structures and avoid "
        "frequent discretionary trading.",
    ),
}


@dataclass(frozen=True)
class InvestorProfile:
    code: str
    type: str
    axes: dict[str, str]
    axis_scores: dict[str, int]
    recommendation: str


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def axis_scores(metrics: BehaviorMetrics, model: ClassificationModel) -> tuple[float, float, float]:
    """Raw (pre-logistic) risk, control and reactivity scores."""

    m = metrics
    fee = _clamp01(m.fee_intensity * model.fee_intensity_scale)
    top = _clamp01(m.avg_top_weight)
    activity = _clamp01(m.trade_activity)

    r = model.risk
    risk = (
        m.annualized_volatility * r.volatility
        + m.max_drawdown * r.drawdown
        + m.avg_concentration * r.concentration
        + top * r.top_weight
        + fee * r.fee_intensity
        + activity * r.trade_activity
        + (1 - _clamp01(m.avg_cash_ratio)) * r.invested_share
    )
    c = model.control
    control = (
        m.avg_turnover * c.turnover
        + m.avg_concentration * c.concentration
        + top * c.top_weight
        + activity * c.trade_activity
        + _clamp01(m.turnover_std * model.control_dispersion_scale) * c.turnover_dispersion
        + _clamp01(m.decision_drift * model.drift_scale) * c.decision_drift
    )
    x = model.reactivity
    reactivity = (
        m.avg_turnover * x.turnover
        + m.max_drawdown * x.drawdown
        + m.annualized_volatility * x.volatility
        + _clamp01(m.turnover_std * model.reactivity_dispersion_scale) * x.turnover_dispersion
        + fee * x.fee_intensity
        + _clamp01(m.direction_flip_rate) * x.direction_flips
    )
    return risk, control, reactivity


def classify_investor(metrics: BehaviorMetrics, model: ClassificationModel | None = None) -> InvestorProfile:
    model = model or ClassificationModel()
    risk_raw, control_raw, react_raw = axis_scores(metrics, model)

    aggressive = model.risk_curve.percent(risk_raw)
    internal = model.control_curve.percent(control_raw)
    emotional = model.reactivity_curve.percent(react_raw)

    risk_axis = "A" if aggressive >= 50 else "C"
    control_axis = "I" if internal >= 50 else "E"
    emotion_axis = "E" if emotional >= 50 else "R"
    code = f"{risk_axis}-{control_axis}-{emotion_axis}"
    archetype = ARCHETYPES[code]

    return InvestorProfile(
        code=code,
        type=archetype.type,
        axes={
            "risk": "Aggressive" if risk_axis == "A" else "Conservative",
            "control": "Internal/Active" if control_axis == "I" else "External/Passive",
            "reactivity": "Rational" if emotion_axis == "R" else "Emotional",
        },
        axis_scores={
            "riskAggressive": aggressive,
            "riskConservative": 100 - aggressive,
            "controlInternal": internal,
            "controlExternal": 100 - internal,
            "reactivityEmotional": emotional,
            "reactivityRational": 100 - emotional,
        },
        recommendation=archetype.recommendation,
    )


__all__ = [
    "ARCHETYPES",
    "Archetype",
    "BehaviorMetrics",
    "ClassificationModel",
    "ControlWeights",
    "InvestorProfile",
    "LogisticCurve",
    "ReactivityWeights",
    "RiskWeights",
    "annualized_volatility",
    "axis_scores",
    "behavior_metrics",
    "cagr",
    "classify_investor",
    "max_drawdown",
    "population_std",
    "simple_returns",
]
