"""Prompt templates for the LLM-driven agents and the sentiment scorer.

Prompts are loaded from .txt template files in this package directory and
rendered via Jinja2.
"""

from __future__ import annotations

import math
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from models.portfolio import Portfolio
from models.snapshot import MarketSnapshot

# ---------------------------------------------------------------------------
# Jinja2 environment: templates live next to this __init__.py
# ---------------------------------------------------------------------------

_TEMPLATE_DIR = Path(__file__).resolve().parent
_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)

MAX_PROMPT_HEADLINES = 5
SUGGESTED_BUY_FRACTION = 0.3
PREMIUM_REASON_WORD_LIMIT = 40


def _fmt(value: float | None, digits: int = 2) -> str:
    return "N/A" if value is None else f"{value:.{digits}f}"


def _market_fields(snapshot: MarketSnapshot) -> dict[str, str]:
    return {
        "price": f"{snapshot.price:.2f}",
        "rsi": _fmt(snapshot.rsi),
        "macd": _fmt(snapshot.macd, 4),
        "sentiment_score": f"{snapshot.sentiment_score:.2f}",
        "sentiment_reason": snapshot.sentiment_reason or "N/A",
    }


def build_cheap_prompt(snapshot: MarketSnapshot, portfolio: Portfolio, history: str) -> str:
    """Prompt for the CHEAP agent: headlines plus explicit affordable quantities."""
    max_buy = math.floor(portfolio.cash / snapshot.price) if snapshot.price > 0 else 0
    tmpl = _env.get_template("cheap.txt")
    return tmpl.render(
        history=history,
        headlines=snapshot.headlines[:MAX_PROMPT_HEADLINES],
        cash=f"{portfolio.cash:.2f}",
        shares=f"{portfolio.shares:g}",
        max_buy_quantity=max_buy,
        suggested_buy_quantity=math.floor(max_buy * SUGGESTED_BUY_FRACTION),
        **_market_fields(snapshot),
    )


def build_premium_prompt(snapshot: MarketSnapshot, portfolio: Portfolio, history: str) -> str:
    """Prompt for the PREMIUM agent: long-only rules and a word-limited reason."""
    tmpl = _env.get_template("premium.txt")
    return tmpl.render(
        history=history,
        cash=f"{portfolio.cash:.2f}",
        shares=f"{portfolio.shares:g}",
        reason_word_limit=PREMIUM_REASON_WORD_LIMIT,
        **_market_fields(snapshot),
    )


def build_sentiment_prompt(symbol: str, headlines: list[str]) -> str:
    """Prompt asking the sentiment oracle for ``{"score", "reason"}`` on *headlines*."""
    tmpl = _env.get_template("sentiment.txt")
    return tmpl.render(symbol=symbol, headlines=headlines)
