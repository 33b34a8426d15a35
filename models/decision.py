"""Agent output and audit models: TradeDecision, BotDecision, ParseResult."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field

from models.simulation import BotType, utcnow


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class TradeDecision(BaseModel):
    """What an agent proposes for the current tick.

    Token/cost accounting is only filled by the LLM-driven agents.
    ``debug_data`` is an internal payload and never leaves the API in a
    redacted tick response.
    """

    action: TradeAction = TradeAction.HOLD
    quantity: int = Field(default=0, ge=0)
    reason: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    tokens: int = 0
    cost: float = 0.0
    debug_data: dict[str, Any] | None = None

    @classmethod
    def hold(cls, reason: str, confidence: float = 0.0, **extra: Any) -> TradeDecision:
        """Safe default used whenever an agent cannot produce a decision."""
        return cls(action=TradeAction.HOLD, quantity=0, reason=reason, confidence=confidence, **extra)


class BotDecision(BaseModel):
    """Immutable audit record of what an agent proposed and what actually happened.

    ``action``/``quantity``/``reason`` are the post-validation values: a
    rejected order is stored as HOLD with the rejection explained in
    ``reason``.
    """

    id: str
    snapshot_id: str
    bot_type: BotType
    action: TradeAction
    quantity: float = Field(ge=0)
    price: float
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    tokens: int = 0
    cost: float = 0.0
    debug_data: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Parser results
# ---------------------------------------------------------------------------

class ParsedOk(BaseModel):
    """Raw output parsed strictly and matched the decision schema."""

    decision: TradeDecision


class ParsedRecovered(BaseModel):
    """Output needed repair, regex fallback or sanitation to be usable."""

    decision: TradeDecision
    warning: str


class ParseFailed(BaseModel):
    """Nothing usable could be extracted; the caller must degrade to HOLD."""

    reason: str


ParseResult = Union[ParsedOk, ParsedRecovered, ParseFailed]
