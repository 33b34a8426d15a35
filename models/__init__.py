"""Data models for the trading arena.

The tick engine, agents, store and HTTP server all import from models.
"""

from models.agents import AgentInvocation
from models.config import AppSettings, FeatureFlags, LLMConfig, ProviderConfig
from models.decision import (
    BotDecision,
    ParsedOk,
    ParsedRecovered,
    ParseFailed,
    ParseResult,
    TradeAction,
    TradeDecision,
)
from models.market import Candles, FearGreed, NewsItem, SentimentAssessment, StocktwitsSentiment
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig, SimulationStatus
from models.snapshot import BandPosition, MarketSnapshot, RsiSignal, TechnicalIndicators, Trend
from models.tick import DecisionSummary, TickOutcome, TickRequest, TickStatus

__all__ = [
    # agents
    "AgentInvocation",
    # config
    "AppSettings",
    "FeatureFlags",
    "LLMConfig",
    "ProviderConfig",
    # decision
    "BotDecision",
    "ParsedOk",
    "ParsedRecovered",
    "ParseFailed",
    "ParseResult",
    "TradeAction",
    "TradeDecision",
    # market
    "Candles",
    "FearGreed",
    "NewsItem",
    "SentimentAssessment",
    "StocktwitsSentiment",
    # portfolio
    "Portfolio",
    # simulation
    "BotType",
    "SimulationConfig",
    "SimulationStatus",
    # snapshot
    "BandPosition",
    "MarketSnapshot",
    "RsiSignal",
    "TechnicalIndicators",
    "Trend",
    # tick
    "DecisionSummary",
    "TickOutcome",
    "TickRequest",
    "TickStatus",
]
