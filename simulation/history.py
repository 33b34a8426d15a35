"""Read models for the status and history endpoints.

The ROI history is a derived view: each bot's portfolio is replayed from the
starting capital through the decisions recorded on every snapshot, and
marked to that snapshot's price. The persisted Portfolio rows remain the
source of truth for current balances.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from models.decision import BotDecision, TradeAction
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig
from models.snapshot import MarketSnapshot
from simulation.broker import settle
from simulation.store import TradingStore

logger = logging.getLogger(__name__)

BUY_AND_HOLD = "BUYHOLD"
HISTORY_LIMIT = 20
DEBUG_DECISIONS_LIMIT = 500


class RoiPoint(BaseModel):
    """One chart point: ROI (%) of every bot and of Buy & Hold after a tick."""

    day: int
    timestamp: datetime
    price: float
    roi: dict[str, float] = Field(default_factory=dict)


class DecisionEntry(BaseModel):
    day: int
    timestamp: datetime
    bot_type: BotType
    action: TradeAction
    quantity: float
    price: float
    reason: str
    confidence: float


class Winner(BaseModel):
    bot_type: BotType
    roi: float
    total_value: float


class SimulationHistory(BaseModel):
    simulation: SimulationConfig
    portfolios: list[Portfolio]
    winner: Winner | None = None
    roi_history: list[RoiPoint] = Field(default_factory=list)
    decisions: list[DecisionEntry] = Field(default_factory=list)


class SimulationStatusView(BaseModel):
    simulation: SimulationConfig
    portfolios: list[Portfolio]
    latest_snapshot: MarketSnapshot | None = None
    latest_decisions: list[BotDecision] = Field(default_factory=list)


class DebugDecision(BaseModel):
    """A decision with its internal debug payload and the snapshot it was taken on."""

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
    debug_data: dict[str, Any] | None = None
    timestamp: datetime
    snapshot_price: float
    rsi: float | None = None
    macd: float | None = None
    sentiment_score: float
    sentiment_reason: str


def replay_roi(
    simulation: SimulationConfig,
    snapshots: list[MarketSnapshot],
    decisions_by_snapshot: dict[str, list[BotDecision]],
) -> list[RoiPoint]:
    """Rebuild the per-tick ROI series for every bot plus Buy & Hold.

    Buy & Hold uses the first snapshot's price as its baseline.
    """
    if not snapshots:
        return []

    books = {
        bot_type: Portfolio.seed(bot_type.value, simulation.id, bot_type, simulation.start_capital)
        for bot_type in BotType
    }
    baseline = snapshots[0].price

    points: list[RoiPoint] = []
    for day, snap in enumerate(snapshots, start=1):
        for decision in decisions_by_snapshot.get(snap.id, []):
            if decision.action is TradeAction.HOLD:
                continue
            books[decision.bot_type] = settle(
                books[decision.bot_type],
                decision.action,
                int(decision.quantity),
                decision.price,
                simulation.start_capital,
            )

        roi = {
            bot_type.value: (book.value_at(snap.price) / simulation.start_capital - 1) * 100
            for bot_type, book in books.items()
        }
        roi[BUY_AND_HOLD] = (snap.price / baseline - 1) * 100
        points.append(RoiPoint(day=day, timestamp=snap.timestamp, price=snap.price, roi=roi))
    return points


def pick_winner(portfolios: list[Portfolio]) -> Winner | None:
    """Highest ROI; ties go to the first bot in ``BotType`` order."""
    if not portfolios:
        return None
    best = portfolios[0]
    for portfolio in portfolios[1:]:
        if portfolio.roi > best.roi:
            best = portfolio
    return Winner(bot_type=best.bot_type, roi=best.roi, total_value=best.total_value)


class HistoryReader:
    """Assembles status and history views from the store."""

    def __init__(self, store: TradingStore) -> None:
        self._store = store

    def status(self) -> SimulationStatusView | None:
        simulation = self._store.get_running_simulation()
        if simulation is None:
            return None
        latest = self._store.latest_snapshot(simulation.id)
        return SimulationStatusView(
            simulation=simulation,
            portfolios=_ordered(self._store.get_portfolios(simulation.id)),
            latest_snapshot=latest,
            latest_decisions=self._store.decisions_for_snapshot(latest.id) if latest else [],
        )

    def history(self, limit: int = HISTORY_LIMIT) -> list[SimulationHistory]:
        return [self.simulation_history(sim) for sim in self._store.list_finished_simulations(limit=limit)]

    def simulation_history(self, simulation: SimulationConfig) -> SimulationHistory:
        snapshots = self._store.list_snapshots(simulation.id)
        by_snapshot = {snap.id: self._store.decisions_for_snapshot(snap.id) for snap in snapshots}
        portfolios = _ordered(self._store.get_portfolios(simulation.id))

        entries = [
            DecisionEntry(
                day=day,
                timestamp=snap.timestamp,
                bot_type=d.bot_type,
                action=d.action,
                quantity=d.quantity,
                price=d.price,
                reason=d.reason,
                confidence=d.confidence,
            )
            for day, snap in enumerate(snapshots, start=1)
            for d in by_snapshot[snap.id]
        ]
        entries.sort(key=lambda e: (e.day, e.timestamp), reverse=True)

        logger.debug("Replayed %d snapshots for simulation %s", len(snapshots), simulation.id)
        return SimulationHistory(
            simulation=simulation,
            portfolios=portfolios,
            winner=pick_winner(portfolios),
            roi_history=replay_roi(simulation, snapshots, by_snapshot),
            decisions=entries,
        )

    def debug_decisions(self, limit: int = DEBUG_DECISIONS_LIMIT) -> list[DebugDecision]:
        """Last *limit* decisions of the running simulation, newest first, with debug payloads."""
        simulation = self._store.get_running_simulation()
        if simulation is None:
            return []
        snapshots = {snap.id: snap for snap in self._store.list_snapshots(simulation.id)}
        entries = []
        for d in self._store.decisions_for_simulation(simulation.id, limit=limit):
            snap = snapshots.get(d.snapshot_id)
            if snap is None:
                logger.warning("Decision %s references unknown snapshot %s", d.id, d.snapshot_id)
                continue
            entries.append(
                DebugDecision(
                    id=d.id,
                    bot_type=d.bot_type,
                    action=d.action,
                    quantity=d.quantity,
                    price=d.price,
                    reason=d.reason,
                    confidence=d.confidence,
                    tokens=d.tokens,
                    cost=d.cost,
                    created_at=d.created_at,
                    debug_data=d.debug_data,
                    timestamp=snap.timestamp,
                    snapshot_price=snap.price,
                    rsi=snap.rsi,
                    macd=snap.macd,
                    sentiment_score=snap.sentiment_score,
                    sentiment_reason=snap.sentiment_reason,
                )
            )
        return entries


def _ordered(portfolios: dict[BotType, Portfolio]) -> list[Portfolio]:
    return [portfolios[b] for b in BotType if b in portfolios]
