"""Portfolio state models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from models.simulation import BotType


class Portfolio(BaseModel):
    """One agent's holdings within a simulation.

    ``avg_buy_price`` is None while no position is open. ``total_value`` and
    ``roi`` are marked to the last price seen by settlement.
    """

    id: str
    simulation_id: str
    bot_type: BotType
    cash: float = Field(ge=0)
    shares: float = Field(default=0.0, ge=0)
    avg_buy_price: float | None = None
    total_value: float
    roi: float = 0.0

    @classmethod
    def seed(cls, portfolio_id: str, simulation_id: str, bot_type: BotType, start_capital: float) -> Portfolio:
        """Fresh portfolio: all cash, no shares, zero ROI."""
        return cls(
            id=portfolio_id,
            simulation_id=simulation_id,
            bot_type=bot_type,
            cash=start_capital,
            shares=0.0,
            avg_buy_price=None,
            total_value=start_capital,
            roi=0.0,
        )

    def value_at(self, price: float) -> float:
        return self.cash + self.shares * price
