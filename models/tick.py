"""Tick request/outcome models.

A tick always resolves to exactly one ``TickOutcome``; the HTTP layer only
maps it to a status code and a JSON body.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from models.decision import TradeAction
from models.simulation import BotType, SimulationStatus


class TickStatus(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    SKIPPED = "SKIPPED"
    NO_ACTIVE_SIMULATION = "NO_ACTIVE_SIMULATION"
    INVALID_SYMBOL = "INVALID_SYMBOL"
    SUCCESS = "SUCCESS"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TickRequest(BaseModel):
    """Credentials and flags presented by the scheduler.

    Any one of the three secret channels is sufficient.
    """

    bearer: str | None = None  # raw Authorization header value
    header_key: str | None = None  # x-cron-key header
    query_key: str | None = None  # ?key= parameter
    force: bool = False


class DecisionSummary(BaseModel):
    """Redacted view of a bot decision (no debug payload)."""

    bot_type: BotType
    action: TradeAction
    quantity: float
    reason: str

    def to_response(self) -> dict[str, Any]:
        return {
            "botType": self.bot_type.value,
            "action": self.action.value,
            "quantity": self.quantity,
            "reason": self.reason,
        }


class TickOutcome(BaseModel):
    kind: TickStatus
    reason: str | None = None
    day: int | None = None
    status: SimulationStatus | None = None
    decisions: list[DecisionSummary] = Field(default_factory=list)
    details: str | None = None

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def unauthorized(cls) -> TickOutcome:
        return cls(kind=TickStatus.UNAUTHORIZED)

    @classmethod
    def skipped(cls, reason: str) -> TickOutcome:
        return cls(kind=TickStatus.SKIPPED, reason=reason)

    @classmethod
    def no_active_simulation(cls) -> TickOutcome:
        return cls(kind=TickStatus.NO_ACTIVE_SIMULATION)

    @classmethod
    def invalid_symbol(cls, details: str | None = None) -> TickOutcome:
        return cls(kind=TickStatus.INVALID_SYMBOL, details=details)

    @classmethod
    def internal_error(cls, details: str) -> TickOutcome:
        return cls(kind=TickStatus.INTERNAL_ERROR, details=details)

    # ------------------------------------------------------------------
    # HTTP mapping
    # ------------------------------------------------------------------

    def http_status(self) -> int:
        return {
            TickStatus.UNAUTHORIZED: 401,
            TickStatus.INVALID_SYMBOL: 400,
            TickStatus.INTERNAL_ERROR: 500,
        }.get(self.kind, 200)

    def to_response(self) -> dict[str, Any]:
        if self.kind is TickStatus.UNAUTHORIZED:
            return {"error": "Unauthorized"}
        if self.kind is TickStatus.SKIPPED:
            return {"skipped": True, "reason": self.reason}
        if self.kind is TickStatus.NO_ACTIVE_SIMULATION:
            return {"message": "No active simulation"}
        if self.kind is TickStatus.INVALID_SYMBOL:
            body: dict[str, Any] = {"error": "Invalid symbol"}
            if self.details:
                body["details"] = self.details
            return body
        if self.kind is TickStatus.INTERNAL_ERROR:
            return {"error": "Internal server error", "details": self.details}
        return {
            "success": True,
            "day": self.day,
            "status": self.status.value if self.status else None,
            "decisions": [d.to_response() for d in self.decisions],
        }
