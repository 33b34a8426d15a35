"""PREMIUM agent: stronger models, larger budget, json_repair before regex."""

from __future__ import annotations

from agents.llm_agent import LLMTradingAgent
from agents.prompts import build_premium_prompt
from agents.registry import register
from models.agents import AgentInvocation
from models.simulation import BotType

PREMIUM_MAX_TOKENS = 1500


@register(BotType.PREMIUM)
class PremiumAgent(LLMTradingAgent):
    use_repair_library = True

    def build_prompt(self, invocation: AgentInvocation) -> str:
        return build_premium_prompt(invocation.snapshot, invocation.portfolio, invocation.history)

    def max_tokens_for(self, model_id: str) -> int:
        return PREMIUM_MAX_TOKENS
