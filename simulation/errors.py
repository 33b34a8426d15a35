"""Domain exceptions raised by the simulation services.

The HTTP layer maps each of these to a status code; the tick orchestrator
only treats ``SnapshotMissingError`` and storage failures as fatal.
"""

from __future__ import annotations


class SimulationError(Exception):
    """Base class for simulation lifecycle errors."""


class SnapshotMissingError(SimulationError):
    """The snapshot created for this tick is not visible inside the settlement transaction."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(f"Snapshot {snapshot_id} not found")
        self.snapshot_id = snapshot_id


class SimulationConflictError(SimulationError):
    """A simulation is already RUNNING."""


class InvalidSymbolError(SimulationError):
    """The symbol has no usable quote from the market-data provider."""

    def __init__(self, symbol: str, details: str | None = None) -> None:
        super().__init__(f"Invalid symbol {symbol}" + (f": {details}" if details else ""))
        self.symbol = symbol
        self.details = details


class SimulationNotFoundError(SimulationError):
    """No simulation matches the requested id (or none is RUNNING)."""


class ForbiddenError(SimulationError):
    """Caller identity does not match the simulation's creator."""


class InvalidParameterError(SimulationError):
    """A request parameter is outside its allowed range."""


class InsufficientHistoryError(SimulationError):
    """Too few historical closes to run a backtest."""

    def __init__(self, available: int, required: int) -> None:
        super().__init__(f"Insufficient data: {available} closes, at least {required} required")
        self.available = available
        self.required = required
