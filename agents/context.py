"""Renders a bot's own recent decisions into prompt context."""

from __future__ import annotations

import logging

import duckdb

from models.agents import FIRST_DECISION
from models.decision import BotDecision
from models.simulation import BotType
from simulation.store import TradingStore

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 3
HISTORY_UNAVAILABLE = "Historique indisponible."


def format_history(decisions: list[BotDecision]) -> str:
    """Number *decisions* (oldest first) as ``N. ACTION qty actions à price$ - reason``."""
    if not decisions:
        return FIRST_DECISION
    return "\n".join(
        f"{i}. {d.action.value} {d.quantity:g} actions à {d.price:g}$ - {d.reason}"
        for i, d in enumerate(decisions, start=1)
    )


def load_history(
    store: TradingStore,
    simulation_id: str,
    bot_type: BotType,
    limit: int = HISTORY_LIMIT,
) -> str:
    """The bot's last *limit* decisions in this simulation, oldest to newest."""
    try:
        recent = store.recent_decisions(simulation_id, bot_type, limit=limit)
    except duckdb.Error as exc:
        logger.warning("Could not load %s history for %s: %s", bot_type.value, simulation_id, exc)
        return HISTORY_UNAVAILABLE
    return format_history(list(reversed(recent)))
