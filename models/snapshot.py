"""Market snapshot and technical indicator models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from models.simulation import utcnow


class Trend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class RsiSignal(str, Enum):
    OVERSOLD = "OVERSOLD"
    OVERBOUGHT = "OVERBOUGHT"
    NEUTRAL = "NEUTRAL"


class BandPosition(str, Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    MIDDLE = "MIDDLE"


class TechnicalIndicators(BaseModel):
    """Indicator set computed from a close-price history.

    With fewer than 30 closes every numeric field is None, every signal is
    neutral and ``technical_score`` is 0. That is a normal degraded mode.
    """

    rsi: float | None = None
    rsi_signal: RsiSignal = RsiSignal.NEUTRAL

    macd: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    macd_trend: Trend = Trend.NEUTRAL

    ema9: float | None = None
    ema21: float | None = None
    ema50: float | None = None
    ema_trend: Trend = Trend.NEUTRAL

    bollinger_upper: float | None = None
    bollinger_middle: float | None = None
    bollinger_lower: float | None = None
    bollinger_position: BandPosition = BandPosition.MIDDLE
    bollinger_width: float | None = None

    atr: float | None = None
    atr_percent: float | None = None

    technical_score: float = Field(default=0.0, ge=-1.0, le=1.0)


class MarketSnapshot(BaseModel):
    """Immutable market observation that every agent reacts to within one tick.

    ``timestamp`` is the hour bucket used as the idempotence key.
    ``headlines`` travel with the in-memory snapshot for the LLM agents but
    are never persisted.
    """

    id: str
    simulation_id: str
    symbol: str
    timestamp: datetime
    created_at: datetime = Field(default_factory=utcnow)
    price: float = Field(gt=0)

    sentiment_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    sentiment_reason: str = ""

    rsi: float | None = None
    macd: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    ema9: float | None = None
    ema21: float | None = None
    ema50: float | None = None
    ema_trend: str | None = None
    bollinger_upper: float | None = None
    bollinger_middle: float | None = None
    bollinger_lower: float | None = None
    bollinger_width: float | None = None
    atr: float | None = None
    atr_percent: float | None = None

    reddit_hype: float | None = None
    stocktwits_bulls: int | None = None
    stocktwits_bears: int | None = None
    fear_greed_index: int | None = None
    fear_greed_label: str | None = None

    headlines: list[str] = Field(default_factory=list, exclude=True)
