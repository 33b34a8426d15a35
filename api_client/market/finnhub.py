"""Finnhub: quote (mandatory), company news and daily candles via ``finnhub-python``."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import finnhub

from api_client.market.base import MarketDataError, SDKProvider
from models.config import ProviderConfig
from models.market import Candles, NewsItem

logger = logging.getLogger(__name__)


class FinnhubClient(SDKProvider):
    name = "finnhub"

    def __init__(self, config: ProviderConfig, client: Any = None) -> None:
        super().__init__(config)
        self._client = client or finnhub.Client(api_key=config.finnhub_api_key or "")

    async def get_quote(self, symbol: str) -> float:
        """Current price of *symbol*.

        Raises ``MarketDataError`` when the quote has no usable ``c`` field
        (Finnhub answers with ``c: 0`` for unknown symbols).
        """
        data = await self._call(self._client.quote, symbol)
        price = data.get("c") if isinstance(data, dict) else None
        if not isinstance(price, (int, float)) or price <= 0:
            raise MarketDataError(self.name, f"no price available for {symbol}")
        return float(price)

    async def get_news(self, symbol: str, now: datetime) -> list[NewsItem]:
        """Company news over the lookback window, at most ``max_news_items``."""
        since = now - timedelta(hours=self._config.news_lookback_hours)
        data = await self._call(
            self._client.company_news,
            symbol,
            _from=since.date().isoformat(),
            to=now.date().isoformat(),
        )
        return self._parse(self._news_items, data)

    def _news_items(self, data: Any) -> list[NewsItem]:
        if not isinstance(data, list):
            return []
        items = []
        for raw in data[: self._config.max_news_items]:
            if not isinstance(raw, dict) or not raw.get("headline"):
                continue
            items.append(
                NewsItem(
                    headline=raw["headline"],
                    summary=raw.get("summary") or "",
                    url=raw.get("url") or "",
                    source=raw.get("source") or "",
                    published_at=raw.get("datetime"),
                )
            )
        return items

    async def get_candles(self, symbol: str, now: datetime) -> Candles:
        """Daily candles over ``candle_lookback_days``; empty when the plan has no access."""
        start = now - timedelta(days=self._config.candle_lookback_days)
        data = await self._call(
            self._client.stock_candles,
            symbol,
            "D",
            int(start.timestamp()),
            int(now.timestamp()),
        )
        if not isinstance(data, dict) or data.get("s") != "ok" or not data.get("c"):
            if isinstance(data, dict) and data.get("error"):
                logger.info("Finnhub candles unavailable for %s: %s", symbol, data["error"])
            return Candles()
        return self._parse(_candles, data)


def _candles(data: dict[str, Any]) -> Candles:
    return Candles(
        closes=[float(c) for c in data["c"]],
        highs=[float(h) for h in data.get("h") or []],
        lows=[float(lo) for lo in data.get("l") or []],
        timestamps=[int(t) for t in data.get("t") or []],
    )
