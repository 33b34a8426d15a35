"""Simulation lifecycle models: SimulationConfig and its enums."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class SimulationStatus(str, Enum):
    """Lifecycle states of a trading competition."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


class BotType(str, Enum):
    """The three competing agents. Each owns exactly one portfolio per simulation."""

    ALGO = "ALGO"
    CHEAP = "CHEAP"
    PREMIUM = "PREMIUM"


DEFAULT_DURATION_DAYS = 21
DEFAULT_WEIGHT_TECHNICAL = 60
MIN_START_CAPITAL = 1000.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SimulationConfig(BaseModel):
    """One trading competition instance.

    ``current_day`` is advanced once per successful tick; the status flips to
    COMPLETED when it reaches ``duration_days``. Rows are never deleted, only
    status-transitioned.
    """

    id: str
    symbol: str
    start_capital: float = Field(ge=MIN_START_CAPITAL)
    duration_days: int = Field(default=DEFAULT_DURATION_DAYS, ge=1)
    current_day: int = Field(default=0, ge=0)
    status: SimulationStatus = SimulationStatus.IDLE
    cheap_model_id: str
    premium_model_id: str
    algo_weight_technical: int = Field(default=DEFAULT_WEIGHT_TECHNICAL, ge=0, le=100)
    use_reddit: bool = False
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def model_id_for(self, bot_type: BotType) -> str | None:
        """Return the configured model id for an LLM-driven bot (None for ALGO)."""
        if bot_type is BotType.CHEAP:
            return self.cheap_model_id
        if bot_type is BotType.PREMIUM:
            return self.premium_model_id
        return None

    def advanced(self) -> SimulationConfig:
        """Return a copy moved forward by one day, COMPLETED once the duration is reached."""
        new_day = self.current_day + 1
        status = (
            SimulationStatus.COMPLETED
            if new_day >= self.duration_days
            else SimulationStatus.RUNNING
        )
        return self.model_copy(
            update={"current_day": new_day, "status": status, "updated_at": utcnow()}
        )
