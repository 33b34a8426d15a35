"""Order validation and portfolio settlement.

The broker fills orders completely at the snapshot price or not at all.
Validation is a pure function of the proposed order and the portfolio's
pre-tick cash/shares; a rejected order is downgraded to HOLD with the
rejection spelled out in the reason. Every proposal produces exactly one
``BotDecision`` audit row, and HOLD never touches the portfolio.
"""

from __future__ import annotations

import logging
import uuid

from pydantic import BaseModel

from models.decision import BotDecision, TradeAction, TradeDecision
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig
from simulation.errors import SnapshotMissingError
from simulation.store import Cursor, TradingStore

logger = logging.getLogger(__name__)


class OrderValidation(BaseModel):
    """Post-validation order: what will actually be executed."""

    action: TradeAction
    quantity: int
    reason: str
    skipped: bool = False


def validate_order(decision: TradeDecision, portfolio: Portfolio, price: float) -> OrderValidation:
    """Check *decision* against the portfolio's cash and shares at *price*.

    * BUY costing more than the available cash -> HOLD ("fonds insuffisants").
    * SELL of more shares than held, or with no shares -> HOLD ("actions insuffisantes").
    * BUY/SELL of zero shares -> HOLD ("quantité invalide").
    """
    action = decision.action
    quantity = decision.quantity

    if action is TradeAction.HOLD:
        return OrderValidation(action=TradeAction.HOLD, quantity=0, reason=decision.reason)

    if quantity <= 0:
        return OrderValidation(
            action=TradeAction.HOLD,
            quantity=0,
            reason=f"Ordre {action.value} ignoré: quantité invalide ({quantity}). {decision.reason}".strip(),
            skipped=True,
        )

    if action is TradeAction.BUY:
        cost = quantity * price
        if cost > portfolio.cash:
            return OrderValidation(
                action=TradeAction.HOLD,
                quantity=0,
                reason=(
                    f"Achat de {quantity} actions ignoré: fonds insuffisants "
                    f"({cost:.2f}$ requis > {portfolio.cash:.2f}$ disponibles)"
                ),
                skipped=True,
            )
    elif quantity > portfolio.shares or portfolio.shares == 0:
        return OrderValidation(
            action=TradeAction.HOLD,
            quantity=0,
            reason=(
                f"Vente de {quantity} actions ignorée: actions insuffisantes "
                f"({portfolio.shares:g} détenues)"
            ),
            skipped=True,
        )

    return OrderValidation(action=action, quantity=quantity, reason=decision.reason)


def settle(
    portfolio: Portfolio,
    action: TradeAction,
    quantity: int,
    price: float,
    start_capital: float,
) -> Portfolio:
    """Apply an executed BUY/SELL to *portfolio* and return the new state.

    BUY updates the weighted average cost basis; a partial SELL leaves it
    unchanged and a SELL that closes the position clears it.
    """
    if action is TradeAction.HOLD:
        return portfolio

    if action is TradeAction.BUY:
        new_shares = portfolio.shares + quantity
        new_cash = portfolio.cash - quantity * price
        previous_cost = (portfolio.avg_buy_price or 0.0) * portfolio.shares
        new_avg = (previous_cost + price * quantity) / new_shares
    else:
        new_shares = portfolio.shares - quantity
        new_cash = portfolio.cash + quantity * price
        new_avg = portfolio.avg_buy_price if new_shares > 0 else None

    total_value = new_cash + new_shares * price
    return portfolio.model_copy(
        update={
            "cash": new_cash,
            "shares": new_shares,
            "avg_buy_price": new_avg,
            "total_value": total_value,
            "roi": (total_value / start_capital - 1) * 100,
        }
    )


class Broker:
    """Settles one tick's decisions inside the caller's transaction.

    One ``Broker`` per store. ``settle_tick`` must run on the cursor of an
    open transaction so that the three decision/portfolio pairs commit or
    roll back together.
    """

    def __init__(self, store: TradingStore) -> None:
        self._store = store

    def settle_tick(
        self,
        cur: Cursor,
        simulation: SimulationConfig,
        snapshot_id: str,
        decisions: dict[BotType, TradeDecision],
        portfolios: dict[BotType, Portfolio],
    ) -> list[BotDecision]:
        """Validate, record and settle each bot's decision.

        Raises ``SnapshotMissingError`` if the tick's snapshot is not visible
        in the transaction; the caller's transaction then rolls back.
        """
        snapshot = self._store.get_snapshot(snapshot_id, cur=cur)
        if snapshot is None:
            raise SnapshotMissingError(snapshot_id)

        recorded: list[BotDecision] = []
        for bot_type, proposal in decisions.items():
            portfolio = portfolios[bot_type]
            order = validate_order(proposal, portfolio, snapshot.price)
            if order.skipped:
                logger.warning(
                    "%s: %s order downgraded to HOLD (%s)",
                    bot_type.value, proposal.action.value, order.reason,
                )

            record = BotDecision(
                id=uuid.uuid4().hex,
                snapshot_id=snapshot.id,
                bot_type=bot_type,
                action=order.action,
                quantity=order.quantity,
                price=snapshot.price,
                reason=order.reason,
                confidence=proposal.confidence,
                tokens=proposal.tokens,
                cost=proposal.cost,
                debug_data=proposal.debug_data,
            )
            self._store.insert_decision(record, cur=cur)

            if order.action is not TradeAction.HOLD:
                updated = settle(
                    portfolio,
                    order.action,
                    order.quantity,
                    snapshot.price,
                    simulation.start_capital,
                )
                self._store.save_portfolio(updated, cur=cur)
                portfolios[bot_type] = updated
                logger.info(
                    "%s: %s %d @ %.2f -> cash %.2f, shares %g, roi %.2f%%",
                    bot_type.value, order.action.value, order.quantity, snapshot.price,
                    updated.cash, updated.shares, updated.roi,
                )

            recorded.append(record)

        return recorded
