"""Abstract base class for trading agents.

Every agent (rule-based or LLM-driven) implements this protocol so the tick
orchestrator can invoke all three concurrently and interchangeably.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import ClassVar

from models.agents import AgentInvocation
from models.decision import TradeDecision
from models.simulation import BotType

logger = logging.getLogger(__name__)

AGENT_FAILURE_REASON = "Erreur lors de la prise de décision"


class TradingAgent(ABC):
    """Common interface for the competing bots.

    Lifecycle:
        1. ``__init__`` receives the shared dependencies (LLM client, model
           catalog); agents ignore the ones they do not use.
        2. ``invoke`` is called once per tick by the orchestrator.
    """

    bot_type: ClassVar[BotType]

    @abstractmethod
    async def decide(self, invocation: AgentInvocation) -> TradeDecision:
        """Propose a decision for the current snapshot and portfolio."""

    async def invoke(self, invocation: AgentInvocation) -> TradeDecision:
        """Agent boundary: run ``decide`` and turn any exception into a HOLD.

        One misbehaving agent must never abort the other agents' decisions
        for the tick, so this method does not raise.
        """
        try:
            return await self.decide(invocation)
        except Exception as exc:
            logger.exception("%s agent failed", invocation.bot_type.value)
            return TradeDecision.hold(f"{AGENT_FAILURE_REASON}: {exc}")
