"""Shared pipeline for the LLM-driven agents (CHEAP and PREMIUM).

prompt -> text-completion oracle -> ``DecisionParser`` -> ``TradeDecision``.
Any failure along the way yields a HOLD with the error in ``reason`` and in
``debug_data``; ``decide`` never raises.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

from agents.base import TradingAgent
from agents.parsing import FAILURE_REASON, DecisionParser
from api_client.llm.client import Completion, CompletionError, CompletionRequest, LLMClient
from api_client.llm.tracing import build_trace_entry
from models.agents import AgentInvocation
from models.decision import ParsedRecovered, ParseFailed, TradeDecision

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7


class LLMTradingAgent(TradingAgent):
    """Base for agents that delegate the decision to a completion model."""

    use_repair_library: bool = False

    def __init__(
        self,
        llm: LLMClient | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        **_: Any,
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._parser = DecisionParser(use_repair_library=self.use_repair_library)

    @abstractmethod
    def build_prompt(self, invocation: AgentInvocation) -> str:
        """Render the user prompt for this invocation."""

    @abstractmethod
    def max_tokens_for(self, model_id: str) -> int:
        """Completion budget for *model_id*."""

    async def complete(self, model_id: str, prompt: str) -> Completion:
        """One oracle call; subclasses may add model fallback."""
        assert self._llm is not None
        return await self._llm.complete(
            CompletionRequest(
                model=model_id,
                prompt=prompt,
                max_tokens=self.max_tokens_for(model_id),
                temperature=self._temperature,
            )
        )

    async def decide(self, invocation: AgentInvocation) -> TradeDecision:
        model_id = invocation.model_id or ""
        if self._llm is None or not model_id:
            return TradeDecision.hold(
                f"{FAILURE_REASON}: modèle non configuré",
                debug_data=build_trace_entry(model_id, error="No LLM client or model configured"),
            )

        completion: Completion | None = None
        try:
            prompt = self.build_prompt(invocation)
            completion = await self.complete(model_id, prompt)

            if not completion.content.strip():
                if completion.reasoning:
                    raise CompletionError("Model returned reasoning instead of content")
                raise CompletionError("Empty response from model")

            result = self._parser.parse(completion.content)
            if isinstance(result, ParseFailed):
                logger.warning("%s: unparseable output from %s: %s", self.bot_type.value, completion.model, result.reason)
                return TradeDecision.hold(
                    f"{FAILURE_REASON}: {result.reason}",
                    debug_data=build_trace_entry(model_id, completion, error=result.reason),
                )

            warning = result.warning if isinstance(result, ParsedRecovered) else None
            if warning:
                logger.info("%s: decision recovered (%s)", self.bot_type.value, warning)
            return result.decision.model_copy(
                update={
                    "tokens": completion.total_tokens,
                    "cost": completion.cost,
                    "debug_data": build_trace_entry(model_id, completion, warning=warning),
                }
            )

        except CompletionError as exc:
            logger.warning("%s decision failed: %s", self.bot_type.value, exc)
            return TradeDecision.hold(
                f"{FAILURE_REASON}: {exc}",
                debug_data=build_trace_entry(model_id, completion, error=str(exc)),
            )
        except Exception as exc:
            logger.exception("%s agent crashed", self.bot_type.value)
            return TradeDecision.hold(
                f"{FAILURE_REASON}: {exc}",
                debug_data=build_trace_entry(model_id, completion, error=repr(exc)),
            )
