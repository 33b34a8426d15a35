"""Market snapshot builder: one immutable observation per tick.

Sources are fetched concurrently:

(a) Finnhub quote, news and candles, with Yahoo Finance candles when
    Finnhub's history is too short for the indicators. Only the quote is
    mandatory;
(b) social sentiment (Reddit hype when the simulation asks for it,
    Stocktwits when the feature flag is on);
(c) the Fear & Greed index.

(b) and (c) degrade to None on any failure, malformed payloads included. The
persisted row is written with bounded retries on transient storage errors.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable

from api_client.llm.sentiment import SentimentScorer
from api_client.market.base import MarketDataError
from api_client.market.fear_greed import FearGreedClient
from api_client.market.finnhub import FinnhubClient
from api_client.market.reddit import RedditClient
from api_client.market.stocktwits import StocktwitsClient
from api_client.market.yahoo import YahooFinanceClient
from models.config import FeatureFlags
from models.market import Candles, FearGreed, NewsItem, StocktwitsSentiment
from models.simulation import SimulationConfig
from models.snapshot import MarketSnapshot
from simulation.calendar import hour_bucket
from simulation.indicators import MIN_HISTORY, calculate_indicators
from simulation.retry import DEFAULT_MAX_ATTEMPTS, exponential_backoff, with_retry
from simulation.store import TradingStore

logger = logging.getLogger(__name__)


class SnapshotBuilder:
    def __init__(
        self,
        store: TradingStore,
        finnhub: FinnhubClient,
        sentiment: SentimentScorer,
        yahoo: YahooFinanceClient | None = None,
        stocktwits: StocktwitsClient | None = None,
        fear_greed: FearGreedClient | None = None,
        reddit: RedditClient | None = None,
        features: FeatureFlags | None = None,
        write_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Callable[[int], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._finnhub = finnhub
        self._sentiment = sentiment
        self._yahoo = yahoo
        self._stocktwits = stocktwits
        self._fear_greed = fear_greed
        self._reddit = reddit
        self._features = features or FeatureFlags()
        self._write_attempts = write_attempts
        self._backoff = backoff or exponential_backoff()
        self._sleep = sleep

    async def build(self, simulation: SimulationConfig, now: datetime) -> MarketSnapshot:
        """Fetch, score, persist and return the snapshot for *simulation* at *now*.

        Raises ``MarketDataError`` if the quote cannot be fetched, and the
        last storage error if persisting fails after all attempts.
        """
        symbol = simulation.symbol
        (price, news, candles), (reddit_hype, stocktwits), fear_greed = await asyncio.gather(
            self._market_data(symbol, now),
            self._social(symbol, simulation.use_reddit),
            self._fear_greed_index(),
        )

        indicators = calculate_indicators(
            candles.closes,
            price,
            highs=candles.highs if candles.has_ranges else None,
            lows=candles.lows if candles.has_ranges else None,
        )
        sentiment = await self._sentiment.score(symbol, news)

        snapshot = MarketSnapshot(
            id=uuid.uuid4().hex,
            simulation_id=simulation.id,
            symbol=symbol,
            timestamp=hour_bucket(now),
            price=price,
            sentiment_score=sentiment.score,
            sentiment_reason=sentiment.reason,
            rsi=indicators.rsi,
            macd=indicators.macd,
            macd_signal=indicators.macd_signal,
            macd_histogram=indicators.macd_histogram,
            ema9=indicators.ema9,
            ema21=indicators.ema21,
            ema50=indicators.ema50,
            ema_trend=indicators.ema_trend.value,
            bollinger_upper=indicators.bollinger_upper,
            bollinger_middle=indicators.bollinger_middle,
            bollinger_lower=indicators.bollinger_lower,
            bollinger_width=indicators.bollinger_width,
            atr=indicators.atr,
            atr_percent=indicators.atr_percent,
            reddit_hype=reddit_hype,
            stocktwits_bulls=stocktwits.bullish if stocktwits else None,
            stocktwits_bears=stocktwits.bearish if stocktwits else None,
            fear_greed_index=fear_greed.value if fear_greed else None,
            fear_greed_label=fear_greed.label if fear_greed else None,
            headlines=[n.headline for n in news],
        )

        await with_retry(
            lambda: self._persist(snapshot),
            max_attempts=self._write_attempts,
            backoff=self._backoff,
            sleep=self._sleep,
        )
        logger.info("Market snapshot %s created for %s at $%.2f", snapshot.id, symbol, price)
        return snapshot

    async def _persist(self, snapshot: MarketSnapshot) -> None:
        self._store.insert_snapshot(snapshot)

    # ------------------------------------------------------------------
    # (a) price, news, candles
    # ------------------------------------------------------------------

    async def _market_data(self, symbol: str, now: datetime) -> tuple[float, list[NewsItem], Candles]:
        price, news, candles = await asyncio.gather(
            self._finnhub.get_quote(symbol),
            self._news(symbol, now),
            self._candles(symbol, now),
        )
        return price, news, candles

    async def _news(self, symbol: str, now: datetime) -> list[NewsItem]:
        try:
            return await self._finnhub.get_news(symbol, now)
        except MarketDataError as exc:
            logger.warning("News unavailable for %s: %s", symbol, exc)
            return []

    async def _candles(self, symbol: str, now: datetime) -> Candles:
        candles = Candles()
        try:
            candles = await self._finnhub.get_candles(symbol, now)
        except MarketDataError as exc:
            logger.warning("Finnhub candles unavailable for %s: %s", symbol, exc)

        if len(candles) >= MIN_HISTORY or self._yahoo is None:
            return candles

        try:
            fallback = await self._yahoo.get_candles(symbol, now)
        except MarketDataError as exc:
            logger.warning("Yahoo Finance candles unavailable for %s: %s", symbol, exc)
            return candles
        return fallback if len(fallback) > len(candles) else candles

    # ------------------------------------------------------------------
    # (b) social, (c) fear & greed
    # ------------------------------------------------------------------

    async def _social(self, symbol: str, use_reddit: bool) -> tuple[float | None, StocktwitsSentiment | None]:
        reddit, stocktwits = await asyncio.gather(
            self._reddit_hype(symbol) if use_reddit else _none(),
            self._stocktwits_sentiment(symbol) if self._features.stocktwits else _none(),
        )
        return reddit, stocktwits

    async def _reddit_hype(self, symbol: str) -> float | None:
        if self._reddit is None:
            return None
        try:
            return await self._reddit.get_hype(symbol)
        except Exception as exc:
            logger.warning("Reddit hype unavailable for %s: %s", symbol, exc)
            return None

    async def _stocktwits_sentiment(self, symbol: str) -> StocktwitsSentiment | None:
        if self._stocktwits is None:
            return None
        try:
            return await self._stocktwits.get_sentiment(symbol)
        except Exception as exc:
            logger.warning("Stocktwits unavailable for %s: %s", symbol, exc)
            return None

    async def _fear_greed_index(self) -> FearGreed | None:
        if self._fear_greed is None or not self._features.fear_greed:
            return None
        try:
            return await self._fear_greed.get_index()
        except Exception as exc:
            logger.warning("Fear & Greed index unavailable: %s", exc)
            return None


async def _none() -> None:
    return None
