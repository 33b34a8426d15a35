"""ALGO backtest over historical daily closes.

Replays the ALGO policy day by day on Yahoo Finance candles: each day's
indicators come from the closes up to that day, and the headline sentiment
the live bot would see is stood in for by short-term price momentum. Orders
go through the same validation and settlement as a live tick. The run is
compared with a Buy & Hold portfolio that spends the capital on day one.

Nothing is persisted.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Sequence

from pydantic import BaseModel, Field

from agents.algo import decide_algo, score_snapshot
from api_client.market.yahoo import YahooFinanceClient
from models.decision import TradeAction
from models.market import Candles
from models.portfolio import Portfolio
from models.simulation import BotType, utcnow
from models.snapshot import MarketSnapshot
from simulation.broker import settle, validate_order
from simulation.errors import InsufficientHistoryError
from simulation.indicators import calculate_indicators

logger = logging.getLogger(__name__)

INITIAL_CAPITAL = 10_000.0
MIN_DATA_POINTS = 15
WARMUP_DAYS = 15
MOMENTUM_LOOKBACK = 5
MOMENTUM_SCALE = 10.0

_BACKTEST_ID = "backtest"


class BacktestRequest(BaseModel):
    symbol: str = Field(default="NVDA", min_length=1)
    days: int = Field(default=180, ge=MIN_DATA_POINTS, le=3650)
    weight_technical: int = Field(default=70, ge=0, le=100)


class BacktestTrade(BaseModel):
    day: int
    date: str
    action: TradeAction
    price: float
    quantity: int
    value: float
    score: float
    rsi: float | None


class BacktestPoint(BaseModel):
    day: int
    date: str
    price: float
    algo_value: float
    algo_roi: float
    buy_hold_value: float
    buy_hold_roi: float


class AlgoSummary(BaseModel):
    roi: float
    final_value: float
    win_rate: float
    max_drawdown: float
    total_trades: int
    buy_trades: int
    sell_trades: int


class BuyHoldSummary(BaseModel):
    roi: float
    final_value: float
    shares: int


class BacktestResult(BaseModel):
    symbol: str
    days: int
    data_points: int
    weight_technical: int
    initial_capital: float
    algo: AlgoSummary
    buy_hold: BuyHoldSummary
    trades: list[BacktestTrade]
    history: list[BacktestPoint]


def momentum_sentiment(closes: Sequence[float]) -> float:
    """Stand-in sentiment in [-1, 1]: scaled change against the close ``MOMENTUM_LOOKBACK`` bars back."""
    if len(closes) <= MOMENTUM_LOOKBACK:
        return 0.0
    reference = closes[-MOMENTUM_LOOKBACK]
    if reference <= 0:
        return 0.0
    momentum = (closes[-1] - reference) / reference * MOMENTUM_SCALE
    return max(-1.0, min(1.0, momentum))


def run_backtest(
    candles: Candles,
    symbol: str,
    weight_technical: int,
    days: int,
    initial_capital: float = INITIAL_CAPITAL,
) -> BacktestResult:
    """Replay the ALGO policy over *candles* (oldest first).

    Raises ``InsufficientHistoryError`` with fewer than ``MIN_DATA_POINTS`` closes.
    """
    closes = candles.closes
    if len(closes) < MIN_DATA_POINTS:
        raise InsufficientHistoryError(len(closes), MIN_DATA_POINTS)

    dates = [_date(candles, i) for i in range(len(closes))]
    with_ranges = candles.has_ranges

    bh_shares = math.floor(initial_capital / closes[0])
    bh_cash = initial_capital - bh_shares * closes[0]

    portfolio = Portfolio.seed(_BACKTEST_ID, _BACKTEST_ID, BotType.ALGO, initial_capital)
    trades: list[BacktestTrade] = []
    history: list[BacktestPoint] = []

    start = min(WARMUP_DAYS, math.floor(len(closes) * 0.3))
    for i in range(start, len(closes)):
        price = closes[i]
        window = closes[: i + 1]
        indicators = calculate_indicators(
            window,
            price,
            highs=candles.highs[: i + 1] if with_ranges else None,
            lows=candles.lows[: i + 1] if with_ranges else None,
        )
        snapshot = MarketSnapshot(
            id=f"{_BACKTEST_ID}-{i}",
            simulation_id=_BACKTEST_ID,
            symbol=symbol,
            timestamp=_timestamp(candles, i),
            price=price,
            sentiment_score=momentum_sentiment(window),
            rsi=indicators.rsi,
            macd=indicators.macd,
            macd_signal=indicators.macd_signal,
            macd_histogram=indicators.macd_histogram,
        )

        order = validate_order(decide_algo(snapshot, portfolio, weight_technical), portfolio, price)
        if order.action is not TradeAction.HOLD:
            portfolio = settle(portfolio, order.action, order.quantity, price, initial_capital)
            trades.append(
                BacktestTrade(
                    day=i,
                    date=dates[i],
                    action=order.action,
                    price=price,
                    quantity=order.quantity,
                    value=portfolio.value_at(price),
                    score=score_snapshot(snapshot, weight_technical).final,
                    rsi=indicators.rsi,
                )
            )

        algo_value = portfolio.value_at(price)
        bh_value = bh_cash + bh_shares * price
        history.append(
            BacktestPoint(
                day=i,
                date=dates[i],
                price=price,
                algo_value=algo_value,
                algo_roi=_roi(algo_value, initial_capital),
                buy_hold_value=bh_value,
                buy_hold_roi=_roi(bh_value, initial_capital),
            )
        )

    final_price = closes[-1]
    final_algo = portfolio.value_at(final_price)
    final_bh = bh_cash + bh_shares * final_price
    buys = [t for t in trades if t.action is TradeAction.BUY]

    logger.info(
        "Backtest %s (%d closes, weight %d): ALGO %.2f%% vs Buy & Hold %.2f%%",
        symbol, len(closes), weight_technical,
        _roi(final_algo, initial_capital), _roi(final_bh, initial_capital),
    )
    return BacktestResult(
        symbol=symbol,
        days=days,
        data_points=len(closes),
        weight_technical=weight_technical,
        initial_capital=initial_capital,
        algo=AlgoSummary(
            roi=_roi(final_algo, initial_capital),
            final_value=final_algo,
            win_rate=win_rate(trades, final_price),
            max_drawdown=max_drawdown([p.algo_value for p in history], initial_capital),
            total_trades=len(trades),
            buy_trades=len(buys),
            sell_trades=len(trades) - len(buys),
        ),
        buy_hold=BuyHoldSummary(roi=_roi(final_bh, initial_capital), final_value=final_bh, shares=bh_shares),
        trades=trades,
        history=history,
    )


def win_rate(trades: list[BacktestTrade], final_price: float) -> float:
    """Share (%) of buys exited higher, at the next sell or else at *final_price*."""
    wins = 0
    buys = 0
    for i, trade in enumerate(trades):
        if trade.action is not TradeAction.BUY:
            continue
        buys += 1
        exit_price = next((t.price for t in trades[i + 1:] if t.action is TradeAction.SELL), final_price)
        if exit_price > trade.price:
            wins += 1
    return wins / buys * 100 if buys else 0.0


def max_drawdown(values: list[float], initial_capital: float) -> float:
    """Largest peak-to-trough fall (%) of *values*."""
    peak = values[0] if values else initial_capital
    worst = 0.0
    for value in values:
        peak = max(peak, value)
        if peak > 0:
            worst = max(worst, (peak - value) / peak * 100)
    return worst


class BacktestService:
    """Fetches history from Yahoo Finance and runs ``run_backtest``."""

    def __init__(
        self,
        yahoo: YahooFinanceClient,
        clock: Callable[[], datetime] = utcnow,
        initial_capital: float = INITIAL_CAPITAL,
    ) -> None:
        self._yahoo = yahoo
        self._clock = clock
        self._initial_capital = initial_capital

    async def run(self, request: BacktestRequest) -> BacktestResult:
        """Raises ``MarketDataError`` if the history cannot be fetched."""
        symbol = request.symbol.strip().upper()
        candles = await self._yahoo.get_candles(symbol, self._clock(), days=request.days)
        return run_backtest(
            candles,
            symbol,
            request.weight_technical,
            request.days,
            initial_capital=self._initial_capital,
        )


def _roi(value: float, initial_capital: float) -> float:
    return (value / initial_capital - 1) * 100


def _timestamp(candles: Candles, i: int) -> datetime:
    if i < len(candles.timestamps):
        return datetime.fromtimestamp(candles.timestamps[i], tz=timezone.utc)
    return utcnow()


def _date(candles: Candles, i: int) -> str:
    if i < len(candles.timestamps):
        return _timestamp(candles, i).date().isoformat()
    return ""
