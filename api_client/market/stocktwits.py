"""Stocktwits symbol stream: bull/bear split of recent messages."""

from __future__ import annotations

from typing import Any

from api_client.market.base import HTTPProvider, MarketDataError
from models.market import StocktwitsSentiment


class StocktwitsClient(HTTPProvider):
    name = "stocktwits"

    async def get_sentiment(self, symbol: str) -> StocktwitsSentiment:
        data = await self._get_json(f"{self._config.stocktwits_base_url}/streams/symbol/{symbol}.json")
        if not isinstance(data, dict):
            raise MarketDataError(self.name, "unexpected payload")
        return self._parse(_sentiment, data)


def _sentiment(data: dict[str, Any]) -> StocktwitsSentiment:
    messages = data.get("messages") or []
    bulls = bears = 0
    for message in messages:
        sentiment = ((message.get("entities") or {}).get("sentiment") or {}).get("basic")
        if sentiment == "Bullish":
            bulls += 1
        elif sentiment == "Bearish":
            bears += 1

    total = bulls + bears
    return StocktwitsSentiment(
        bullish=round(bulls / total * 100) if total else 50,
        bearish=round(bears / total * 100) if total else 50,
        volume=len(messages),
        trending=bool((data.get("symbol") or {}).get("is_following")),
    )
