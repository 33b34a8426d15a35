"""Yahoo Finance daily bars via ``yfinance``: secondary source of candles."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import pandas as pd
import yfinance as yf

from api_client.market.base import MarketDataError, SDKProvider
from models.config import ProviderConfig
from models.market import Candles

logger = logging.getLogger(__name__)


class YahooFinanceClient(SDKProvider):
    name = "yahoo"

    def __init__(self, config: ProviderConfig, download: Callable[..., pd.DataFrame] | None = None) -> None:
        super().__init__(config)
        self._download = download or yf.download

    async def get_candles(self, symbol: str, now: datetime, days: int | None = None) -> Candles:
        """Daily candles for the last *days* (default ``candle_lookback_days``), oldest first.

        Bars without a close are dropped; missing highs/lows fall back to the close.
        """
        days = days or self._config.candle_lookback_days
        start = now - timedelta(days=days)
        df = await self._call(
            self._download,
            symbol,
            start=start.date().isoformat(),
            end=(now + timedelta(days=1)).date().isoformat(),
            interval="1d",
            progress=False,
            auto_adjust=False,
        )
        if df is None or df.empty:
            raise MarketDataError(self.name, f"no history for {symbol}")

        candles = self._parse(_candles, df)
        logger.debug("Yahoo Finance: %d candles for %s", len(candles), symbol)
        return candles


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    # yfinance uses MultiIndex (Price, Ticker) columns even for a single ticker
    if isinstance(df.columns, pd.MultiIndex):
        matches = [c for c in df.columns if c[0] == name]
        if not matches:
            raise KeyError(name)
        return df[matches[0]]
    return df[name]


def _candles(df: pd.DataFrame) -> Candles:
    closes = _column(df, "Close")
    highs = _column(df, "High") if _has(df, "High") else closes
    lows = _column(df, "Low") if _has(df, "Low") else closes

    candles = Candles()
    for ts, close, high, low in zip(df.index, closes, highs, lows):
        if pd.isna(close):
            continue
        candles.closes.append(float(close))
        candles.highs.append(float(close if pd.isna(high) else high))
        candles.lows.append(float(close if pd.isna(low) else low))
        candles.timestamps.append(_epoch(ts))
    return candles


def _has(df: pd.DataFrame, name: str) -> bool:
    if isinstance(df.columns, pd.MultiIndex):
        return any(c[0] == name for c in df.columns)
    return name in df.columns


def _epoch(ts: Any) -> int:
    ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.timestamp())
