"""Request/response bodies for the HTTP API.

The wire format is camelCase; the domain models stay snake_case. Response
models are built from domain objects with ``from_domain`` and serialised by
alias.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api_client.llm.model_catalog import ModelInfo
from models.decision import BotDecision, TradeAction
from models.portfolio import Portfolio
from models.simulation import (
    DEFAULT_DURATION_DAYS,
    MIN_START_CAPITAL,
    BotType,
    SimulationConfig,
    SimulationStatus,
)
from models.snapshot import MarketSnapshot
from simulation.backtest import MIN_DATA_POINTS, BacktestRequest, BacktestResult
from simulation.history import (
    DebugDecision,
    DecisionEntry,
    RoiPoint,
    SimulationHistory,
    SimulationStatusView,
    Winner,
)
from simulation.lifecycle import StartRequest


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Requests
# ============================================================================


class StartBody(CamelModel):
    symbol: str = Field(..., min_length=1, description="Ticker, e.g. AAPL")
    start_capital: float = Field(..., ge=MIN_START_CAPITAL, description="Initial cash per bot")
    duration_days: int = Field(DEFAULT_DURATION_DAYS, ge=1)
    cheap_model_id: str = Field(..., min_length=1)
    premium_model_id: str = Field(..., min_length=1)
    use_reddit: bool = False

    def to_request(self) -> StartRequest:
        return StartRequest(**self.model_dump())


class StopBody(CamelModel):
    simulation_id: str = Field(..., min_length=1)


class AlgoConfigBody(CamelModel):
    weight_technical: float = Field(..., ge=0, le=100)


class BacktestBody(CamelModel):
    symbol: str = Field("NVDA", min_length=1)
    days: int = Field(180, ge=MIN_DATA_POINTS, le=3650, description="Calendar days of history")
    weight_technical: int = Field(70, ge=0, le=100)

    def to_request(self) -> BacktestRequest:
        return BacktestRequest(**self.model_dump())


# ============================================================================
# Responses
# ============================================================================


class PortfolioOut(CamelModel):
    bot_type: BotType
    cash: float
    shares: float
    avg_buy_price: float | None
    total_value: float
    roi: float

    @classmethod
    def from_domain(cls, portfolio: Portfolio) -> PortfolioOut:
        return cls.model_validate(portfolio.model_dump())


class SimulationOut(CamelModel):
    id: str
    symbol: str
    start_capital: float
    duration_days: int
    current_day: int
    status: SimulationStatus
    cheap_model_id: str
    premium_model_id: str
    algo_weight_technical: int
    use_reddit: bool
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, simulation: SimulationConfig) -> SimulationOut:
        return cls.model_validate(simulation.model_dump())


class DecisionOut(CamelModel):
    bot_type: BotType
    action: TradeAction
    quantity: float
    price: float
    reason: str
    confidence: float
    tokens: int
    cost: float
    created_at: datetime

    @classmethod
    def from_domain(cls, decision: BotDecision) -> DecisionOut:
        return cls.model_validate(decision.model_dump(exclude={"debug_data"}))


class SnapshotOut(CamelModel):
    id: str
    symbol: str
    timestamp: datetime
    price: float
    sentiment_score: float
    sentiment_reason: str
    rsi: float | None
    macd: float | None
    macd_signal: float | None
    macd_histogram: float | None
    ema9: float | None
    ema21: float | None
    ema50: float | None
    ema_trend: str | None
    bollinger_upper: float | None
    bollinger_middle: float | None
    bollinger_lower: float | None
    bollinger_width: float | None
    atr: float | None
    atr_percent: float | None
    reddit_hype: float | None
    stocktwits_bulls: int | None
    stocktwits_bears: int | None
    fear_greed_index: int | None
    fear_greed_label: str | None
    decisions: list[DecisionOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, snapshot: MarketSnapshot, decisions: list[BotDecision]) -> SnapshotOut:
        return cls.model_validate(
            {**snapshot.model_dump(), "decisions": [DecisionOut.from_domain(d) for d in decisions]}
        )


class StartResponse(CamelModel):
    success: bool = True
    simulation: SimulationOut
    portfolios: list[PortfolioOut]


class StopResponse(CamelModel):
    success: bool = True
    simulation: SimulationOut


class ActiveSimulationOut(SimulationOut):
    portfolios: list[PortfolioOut]
    latest_snapshot: SnapshotOut | None


class StatusResponse(CamelModel):
    active: bool
    simulation: ActiveSimulationOut | None = None

    @classmethod
    def from_view(cls, view: SimulationStatusView | None) -> StatusResponse:
        if view is None:
            return cls(active=False)
        latest = (
            SnapshotOut.from_domain(view.latest_snapshot, view.latest_decisions)
            if view.latest_snapshot
            else None
        )
        return cls(
            active=True,
            simulation=ActiveSimulationOut.model_validate(
                {
                    **view.simulation.model_dump(),
                    "portfolios": [PortfolioOut.from_domain(p) for p in view.portfolios],
                    "latest_snapshot": latest,
                }
            ),
        )


class WinnerOut(CamelModel):
    bot_type: BotType
    roi: float
    total_value: float

    @classmethod
    def from_domain(cls, winner: Winner) -> WinnerOut:
        return cls.model_validate(winner.model_dump())


class DecisionEntryOut(CamelModel):
    day: int
    timestamp: datetime
    bot_type: BotType
    action: TradeAction
    quantity: float
    price: float
    reason: str
    confidence: float

    @classmethod
    def from_domain(cls, entry: DecisionEntry) -> DecisionEntryOut:
        return cls.model_validate(entry.model_dump())


class HistoryItemOut(SimulationOut):
    winner: WinnerOut | None
    portfolios: list[PortfolioOut]
    roi_history: list[dict[str, float | int | str]]
    decisions: list[DecisionEntryOut]

    @classmethod
    def from_history(cls, item: SimulationHistory) -> HistoryItemOut:
        return cls.model_validate(
            {
                **item.simulation.model_dump(),
                "winner": WinnerOut.from_domain(item.winner) if item.winner else None,
                "portfolios": [PortfolioOut.from_domain(p) for p in item.portfolios],
                "roi_history": [_roi_point(p) for p in item.roi_history],
                "decisions": [DecisionEntryOut.from_domain(d) for d in item.decisions],
            }
        )


class HistoryResponse(CamelModel):
    history: list[HistoryItemOut]


class AlgoConfigResponse(CamelModel):
    algo_weight_technical: int


class BacktestTradeOut(CamelModel):
    day: int
    date: str
    action: TradeAction
    price: float
    quantity: int
    value: float
    score: float
    rsi: float | None


class BacktestPointOut(CamelModel):
    day: int
    date: str
    price: float
    algo_value: float
    algo_roi: float
    buy_hold_value: float
    buy_hold_roi: float


class AlgoSummaryOut(CamelModel):
    roi: float
    final_value: float
    win_rate: float
    max_drawdown: float
    total_trades: int
    buy_trades: int
    sell_trades: int


class BuyHoldSummaryOut(CamelModel):
    roi: float
    final_value: float
    shares: int


class BacktestResponse(CamelModel):
    success: bool = True
    symbol: str
    days: int
    data_points: int
    weight_technical: int
    initial_capital: float
    algo: AlgoSummaryOut
    buy_hold: BuyHoldSummaryOut
    trades: list[BacktestTradeOut]
    history: list[BacktestPointOut]

    @classmethod
    def from_result(cls, result: BacktestResult) -> BacktestResponse:
        return cls.model_validate(result.model_dump())


class DebugDecisionOut(CamelModel):
    id: str
    bot_type: BotType
    action: TradeAction
    quantity: float
    price: float
    reason: str
    confidence: float
    tokens: int
    cost: float
    created_at: datetime
    debug_data: dict[str, Any] | None
    timestamp: datetime
    snapshot_price: float
    rsi: float | None
    macd: float | None
    sentiment_score: float
    sentiment_reason: str

    @classmethod
    def from_domain(cls, decision: DebugDecision) -> DebugDecisionOut:
        return cls.model_validate(decision.model_dump())


class DebugDecisionsResponse(CamelModel):
    decisions: list[DebugDecisionOut]


class ModelOut(CamelModel):
    id: str
    name: str
    prompt_price: float | None
    completion_price: float | None
    context_length: int | None

    @classmethod
    def from_domain(cls, model: ModelInfo) -> ModelOut:
        return cls.model_validate(model.model_dump())


class ModelsResponse(CamelModel):
    models: list[ModelOut]


def _roi_point(point: RoiPoint) -> dict[str, float | int | str]:
    """Flatten a point into the chart row shape: ``{day, price, timestamp, ALGO, CHEAP, PREMIUM, BUYHOLD}``."""
    return {"day": point.day, "price": point.price, "timestamp": point.timestamp.isoformat(), **point.roi}
