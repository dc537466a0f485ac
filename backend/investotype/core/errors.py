"""Error taxonomy shared by the simulation engine and the HTTP layer."""

from __future__ import annotations


class SimulationError(RuntimeError):
    """Base class for every failure the simulator reports to callers."""

    status_code = 400


class InputValidationError(SimulationError):
    """Client input is malformed (dates, frequency, cash, targets)."""


class InvalidAssetTokenError(InputValidationError):
    """An asset token does not follow the token grammar."""


class InvalidTargetError(InputValidationError):
    """A rebalance target payload has the wrong shape or values."""


class BudgetExceededError(SimulationError):
    """Requested targets or trade legs exceed available value or cash."""


class NotFoundError(SimulationError):
    status_code = 404


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Simulation not found")
        self.session_id = session_id


class NoMatchError(NotFoundError):
    """Symbol search returned no candidates for a free-text query."""


class StateConflictError(SimulationError):
    status_code = 409


class AlreadyCompletedError(StateConflictError):
    def __init__(self) -> None:
        super().__init__("Simulation already completed.")


class ScheduleExhaustedError(StateConflictError):
    def __init__(self) -> None:
        super().__init__("No remaining rebalance dates. Finish simulation.")


class DataUnavailableError(SimulationError):
    """Required market data could not be fetched or was empty."""

    status_code = 503


class NoDataError(DataUnavailableError):
    pass


class FxUnavailableError(DataUnavailableError):
    pass


class PriceUnavailableError(DataUnavailableError):
    pass


class SymbolSearchError(DataUnavailableError):
    pass


__all__ = [
    "AlreadyCompletedError",
    "BudgetExceededError",
    "DataUnavailableError",
    "FxUnavailableError",
    "InputValidationError",
    "InvalidAssetTokenError",
    "InvalidTargetError",
    "NoDataError",
    "NoMatchError",
    "NotFoundError",
    "PriceUnavailableError",
    "ScheduleExhaustedError",
    "SessionNotFoundError",
    "SimulationError",
    "StateConflictError",
    "SymbolSearchError",
]
