"""CHEAP agent: budget models, falling back through free models on HTTP 404."""

from __future__ import annotations

import logging
from typing import Any

from agents.llm_agent import DEFAULT_TEMPERATURE, LLMTradingAgent
from agents.prompts import build_cheap_prompt
from agents.registry import register
from api_client.llm.client import Completion, CompletionError, LLMClient
from api_client.llm.model_catalog import ModelCatalog, is_free_model
from models.agents import AgentInvocation
from models.simulation import BotType

logger = logging.getLogger(__name__)

FREE_MODEL_MAX_TOKENS = 2000  # thinking models burn most of it reasoning
PAID_MODEL_MAX_TOKENS = 200

# Statuses that mean "try another model": removed model or rate-limited.
_FALLBACK_STATUSES = frozenset({404, 429})


@register(BotType.CHEAP)
class CheapAgent(LLMTradingAgent):
    def __init__(
        self,
        llm: LLMClient | None = None,
        catalog: ModelCatalog | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        **_: Any,
    ) -> None:
        super().__init__(llm=llm, temperature=temperature)
        self._catalog = catalog

    def build_prompt(self, invocation: AgentInvocation) -> str:
        return build_cheap_prompt(invocation.snapshot, invocation.portfolio, invocation.history)

    def max_tokens_for(self, model_id: str) -> int:
        return FREE_MODEL_MAX_TOKENS if is_free_model(model_id) else PAID_MODEL_MAX_TOKENS

    async def complete(self, model_id: str, prompt: str) -> Completion:
        """Call *model_id*; on 404 walk the free-model list.

        Fallback stops at the first model that answers with anything other
        than 404/429; that answer (success or error) is final.
        """
        try:
            return await super().complete(model_id, prompt)
        except CompletionError as exc:
            if exc.status_code != 404 or self._catalog is None:
                raise
            logger.warning("Model %s not found, trying free fallbacks", model_id)
            last_error = exc

        for candidate in await self._catalog.fallback_candidates(model_id):
            try:
                completion = await super().complete(candidate, prompt)
            except CompletionError as exc:
                if exc.status_code in _FALLBACK_STATUSES:
                    last_error = exc
                    continue
                raise
            logger.info("Fell back from %s to %s", model_id, candidate)
            return completion

        raise last_error
