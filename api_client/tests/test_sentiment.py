"""Tests for news sentiment scoring."""

import asyncio

import pytest

from api_client.llm.client import Completion, CompletionError
from api_client.llm.sentiment import (
    ERROR_REASON,
    NO_CLIENT_REASON,
    NO_NEWS_REASON,
    SENTIMENT_MAX_TOKENS,
    SentimentScorer,
    parse_sentiment,
)
from models.market import NewsItem

NEWS = [NewsItem(headline="Apple beats estimates"), NewsItem(headline="iPhone sales slow in China")]


def _run(coro):
    return asyncio.run(coro)


class ScriptedLLM:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    async def complete(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return Completion(model=request.model, content=self.content)


class TestParseSentiment:
    def test_plain_json(self):
        result = parse_sentiment('{"score": 0.4, "reason": "Résultats solides"}')
        assert result.score == pytest.approx(0.4)
        assert result.reason == "Résultats solides"

    def test_wrapped_in_prose(self):
        result = parse_sentiment('Analyse:\n```json\n{"score": -0.3, "reason": "Ventes en baisse"}\n```')
        assert result.score == pytest.approx(-0.3)

    @pytest.mark.parametrize("raw, expected", [("2.5", 1.0), ("-7", -1.0), ('"0.25"', 0.25)])
    def test_score_clamped(self, raw, expected):
        assert parse_sentiment(f'{{"score": {raw}}}').score == pytest.approx(expected)

    def test_missing_reason(self):
        assert parse_sentiment('{"score": 0.1}').reason == ""

    @pytest.mark.parametrize("raw", ["no json here", '{"reason": "x"}', '{"score": true}', ""])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_sentiment(raw)


class TestSentimentScorer:
    def test_scores_headlines(self):
        llm = ScriptedLLM('{"score": 0.2, "reason": "Mitigé"}')
        result = _run(SentimentScorer(llm, "google/gemini").score("AAPL", NEWS))

        assert result.score == pytest.approx(0.2)
        request = llm.requests[0]
        assert request.model == "google/gemini"
        assert request.max_tokens == SENTIMENT_MAX_TOKENS
        assert "Apple beats estimates" in request.prompt

    def test_without_client(self):
        result = _run(SentimentScorer(None, "m").score("AAPL", NEWS))
        assert result.score == 0.0
        assert result.reason == NO_CLIENT_REASON

    def test_without_news(self):
        llm = ScriptedLLM('{"score": 1}')
        result = _run(SentimentScorer(llm, "m").score("AAPL", []))
        assert result.reason == NO_NEWS_REASON
        assert llm.requests == []

    def test_oracle_error_is_neutral(self):
        llm = ScriptedLLM(error=CompletionError("HTTP 500", status_code=500))
        result = _run(SentimentScorer(llm, "m").score("AAPL", NEWS))
        assert result.score == 0.0
        assert result.reason == ERROR_REASON

    def test_garbage_output_is_neutral(self):
        result = _run(SentimentScorer(ScriptedLLM("je ne sais pas"), "m").score("AAPL", NEWS))
        assert result.score == 0.0
        assert result.reason == ERROR_REASON
