"""Agent registry: maps each ``BotType`` to its ``TradingAgent`` subclass.

Usage::

    from agents.registry import create_agents

    agents = create_agents(llm=client, catalog=catalog)
"""

from __future__ import annotations

from typing import Any, Type

from agents.base import TradingAgent
from models.simulation import BotType

# ---------------------------------------------------------------------------
# Registry mapping
# ---------------------------------------------------------------------------
_REGISTRY: dict[BotType, Type[TradingAgent]] = {}


def register(bot_type: BotType):
    """Decorator to register a ``TradingAgent`` subclass for *bot_type*."""

    def _decorator(cls: Type[TradingAgent]) -> Type[TradingAgent]:
        if bot_type in _REGISTRY:
            raise ValueError(f"Agent for '{bot_type.value}' is already registered.")
        cls.bot_type = bot_type
        _REGISTRY[bot_type] = cls
        return cls

    return _decorator


def create_agent(bot_type: BotType, **dependencies: Any) -> TradingAgent:
    """Instantiate the agent registered for *bot_type*.

    *dependencies* are passed as keyword arguments to the agent's
    constructor (``llm``, ``catalog``...). Raises ``KeyError`` if nothing
    is registered for *bot_type*.
    """
    _ensure_builtins_loaded()

    if bot_type not in _REGISTRY:
        available = ", ".join(sorted(b.value for b in _REGISTRY)) or "(none)"
        raise KeyError(f"No agent registered for '{bot_type.value}'. Available: {available}.")
    return _REGISTRY[bot_type](**dependencies)


def create_agents(**dependencies: Any) -> dict[BotType, TradingAgent]:
    """One agent per ``BotType``, sharing the same dependencies."""
    return {bot_type: create_agent(bot_type, **dependencies) for bot_type in BotType}


def _ensure_builtins_loaded() -> None:
    """Import built-in agent modules so their ``@register`` calls execute."""
    import agents.algo  # noqa: F401
    import agents.cheap  # noqa: F401
    import agents.premium  # noqa: F401
