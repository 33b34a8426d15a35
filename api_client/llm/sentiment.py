"""News sentiment scoring through the text-completion oracle."""

from __future__ import annotations

import json
import logging
import re

from api_client.llm.client import CompletionError, CompletionRequest, LLMClient
from models.market import NewsItem, SentimentAssessment

logger = logging.getLogger(__name__)

NO_NEWS_REASON = "Aucune news disponible pour analyse"
NO_CLIENT_REASON = "Analyse de sentiment indisponible (clé API manquante)"
ERROR_REASON = "Erreur lors de l'analyse de sentiment"

SENTIMENT_MAX_TOKENS = 300
SENTIMENT_TEMPERATURE = 0.2

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class SentimentScorer:
    """Scores headlines in [-1, 1]; never raises.

    Missing client, no news and oracle failures all give a neutral score
    with a reason saying why.
    """

    def __init__(self, llm: LLMClient | None, model: str) -> None:
        self._llm = llm
        self._model = model

    async def score(self, symbol: str, news: list[NewsItem]) -> SentimentAssessment:
        if self._llm is None:
            return SentimentAssessment(score=0.0, reason=NO_CLIENT_REASON)
        if not news:
            return SentimentAssessment(score=0.0, reason=NO_NEWS_REASON)

        # Imported here: the prompt package sits with the agents.
        from agents.prompts import build_sentiment_prompt

        prompt = build_sentiment_prompt(symbol, [n.headline for n in news])
        try:
            completion = await self._llm.complete(
                CompletionRequest(
                    model=self._model,
                    prompt=prompt,
                    max_tokens=SENTIMENT_MAX_TOKENS,
                    temperature=SENTIMENT_TEMPERATURE,
                )
            )
            return parse_sentiment(completion.content)
        except (CompletionError, ValueError, TypeError) as exc:
            logger.warning("Sentiment analysis failed for %s: %s", symbol, exc)
            return SentimentAssessment(score=0.0, reason=ERROR_REASON)


def parse_sentiment(text: str) -> SentimentAssessment:
    """Extract ``{"score", "reason"}`` from *text*, clamping the score into [-1, 1].

    Raises ``ValueError`` when no JSON object with a numeric score is found.
    """
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        raise ValueError("no JSON object in sentiment response")
    obj = json.loads(match.group(0))
    if not isinstance(obj, dict):
        raise ValueError("sentiment response is not an object")
    score = obj.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float, str)):
        raise ValueError(f"invalid sentiment score: {score!r}")
    value = max(-1.0, min(1.0, float(score)))
    reason = obj.get("reason") if isinstance(obj.get("reason"), str) else ""
    return SentimentAssessment(score=value, reason=reason)
