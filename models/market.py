"""Provider data contracts: news, candles and social/sentiment signals.

These are the shapes the external data providers are expected to honour.
Provider clients in ``api_client.market`` convert raw payloads into them.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class NewsItem(BaseModel):
    """One company news headline."""

    headline: str
    summary: str = ""
    url: str = ""
    source: str = ""
    published_at: int | None = None  # Unix seconds, as published by the provider


class Candles(BaseModel):
    """Historical daily candles, oldest first."""

    closes: list[float] = Field(default_factory=list)
    highs: list[float] = Field(default_factory=list)
    lows: list[float] = Field(default_factory=list)
    timestamps: list[int] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.closes)

    @property
    def has_ranges(self) -> bool:
        """True when highs/lows line up with closes (required for ATR)."""
        return bool(self.highs) and len(self.highs) == len(self.closes) == len(self.lows)


class SentimentAssessment(BaseModel):
    """Score in [-1, 1] with a short natural-language justification."""

    score: float = Field(default=0.0, ge=-1.0, le=1.0)
    reason: str = ""


class StocktwitsSentiment(BaseModel):
    """Bull/bear split of recent Stocktwits messages, in percent."""

    bullish: int
    bearish: int
    volume: int = 0
    trending: bool = False

    def score(self) -> float:
        """Map the bullish share onto [-1, 1] (50% bulls is neutral)."""
        return (self.bullish - 50) / 50


class FearGreed(BaseModel):
    """Global market Fear & Greed index (0-100)."""

    value: int = Field(ge=0, le=100)
    label: str
    timestamp: datetime | None = None

    def score(self, contrarian: bool = False) -> float:
        """Map 0..100 onto [-1, 1]; ``contrarian`` flips the sign."""
        score = (self.value - 50) / 50
        return -score if contrarian else score


def fear_greed_label(value: float) -> str:
    if value <= 25:
        return "Extreme Fear"
    if value <= 45:
        return "Fear"
    if value <= 55:
        return "Neutral"
    if value <= 75:
        return "Greed"
    return "Extreme Greed"
