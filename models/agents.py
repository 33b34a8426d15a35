"""Agent invocation payload."""

from __future__ import annotations

from pydantic import BaseModel, Field

from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig
from models.snapshot import MarketSnapshot

FIRST_DECISION = "Première décision de trading."


class AgentInvocation(BaseModel):
    """Everything an agent sees for one tick.

    ``history`` is the pre-rendered list of the bot's own last decisions
    (or the first-decision sentinel).
    """

    bot_type: BotType
    simulation: SimulationConfig
    snapshot: MarketSnapshot
    portfolio: Portfolio
    history: str = Field(default=FIRST_DECISION)

    @property
    def model_id(self) -> str | None:
        return self.simulation.model_id_for(self.bot_type)
