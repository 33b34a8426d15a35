"""Rule-based ALGO agent: a technical/sentiment blend with fixed sizing.

technicalScore = (rsiSub + macdSub) / 3 where rsiSub is +1 below RSI 30,
-1 above RSI 70, else 0, and macdSub is +1 for a positive MACD, -1 for a
non-positive one (0 when MACD is unavailable). The final score blends it
with the snapshot's sentiment:

    final = (technical * wT + sentiment * (100 - wT)) / 100

Above +0.3 the agent buys a third of what it can afford; below -0.3 it sells
half its shares. It is long-only and never proposes an unaffordable order.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel

from agents.base import TradingAgent
from agents.registry import register
from models.agents import AgentInvocation
from models.decision import TradeAction, TradeDecision
from models.portfolio import Portfolio
from models.simulation import BotType
from models.snapshot import MarketSnapshot

BUY_THRESHOLD = 0.3
SELL_THRESHOLD = -0.3
BUY_FRACTION_DIVISOR = 3
SELL_FRACTION_DIVISOR = 2


class AlgoScore(BaseModel):
    technical: float
    final: float
    signals: list[str]


def score_snapshot(snapshot: MarketSnapshot, weight_technical: int) -> AlgoScore:
    """Composite score of *snapshot* and the labels of the signals that fired."""
    signals: list[str] = []

    rsi_sub = 0
    if snapshot.rsi is not None:
        if snapshot.rsi < 30:
            rsi_sub = 1
            signals.append(f"RSI oversold ({snapshot.rsi:.0f})")
        elif snapshot.rsi > 70:
            rsi_sub = -1
            signals.append(f"RSI overbought ({snapshot.rsi:.0f})")

    macd_sub = 0
    if snapshot.macd is not None:
        if snapshot.macd > 0:
            macd_sub = 1
            signals.append("MACD positif")
        else:
            macd_sub = -1
            signals.append("MACD négatif")

    technical = (rsi_sub + macd_sub) / 3

    weight_sentiment = 100 - weight_technical
    sentiment = snapshot.sentiment_score
    if sentiment > 0:
        signals.append(f"Sentiment positif ({sentiment:.2f})")
    elif sentiment < 0:
        signals.append(f"Sentiment négatif ({sentiment:.2f})")

    final = (technical * weight_technical + sentiment * weight_sentiment) / (weight_technical + weight_sentiment)
    return AlgoScore(technical=technical, final=final, signals=signals)


def decide_algo(snapshot: MarketSnapshot, portfolio: Portfolio, weight_technical: int) -> TradeDecision:
    """Pure ALGO policy for one snapshot and portfolio."""
    score = score_snapshot(snapshot, weight_technical)
    price = snapshot.price
    confidence = min(abs(score.final), 1.0)
    summary = " | ".join(score.signals) or "aucun signal"

    if score.final > BUY_THRESHOLD and portfolio.cash >= price:
        quantity = math.floor(portfolio.cash / price / BUY_FRACTION_DIVISOR)
        if quantity > 0:
            return TradeDecision(
                action=TradeAction.BUY,
                quantity=quantity,
                reason=f"Score: {score.final:.2f} | {summary}",
                confidence=confidence,
            )

    if score.final < SELL_THRESHOLD and portfolio.shares > 0:
        quantity = math.floor(portfolio.shares / SELL_FRACTION_DIVISOR)
        if quantity > 0:
            return TradeDecision(
                action=TradeAction.SELL,
                quantity=quantity,
                reason=f"Score: {score.final:.2f} | {summary}",
                confidence=confidence,
            )

    return TradeDecision(
        action=TradeAction.HOLD,
        quantity=0,
        reason=f"Attente signal | Score: {score.final:.2f} | {summary}",
        confidence=confidence,
    )


@register(BotType.ALGO)
class AlgoAgent(TradingAgent):
    """Deterministic agent; ignores any LLM dependencies it is given."""

    def __init__(self, **_: Any) -> None:
        pass

    async def decide(self, invocation: AgentInvocation) -> TradeDecision:
        try:
            return decide_algo(
                invocation.snapshot,
                invocation.portfolio,
                invocation.simulation.algo_weight_technical,
            )
        except (ArithmeticError, ValueError) as exc:
            return TradeDecision.hold(f"Erreur de l'algorithme: {exc}")
