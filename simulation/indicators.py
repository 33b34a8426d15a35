"""Technical indicators computed from a closing-price history.

All smoothing follows the conventional definitions: EMAs are seeded with the
simple average of their first window, RSI and ATR use Wilder smoothing, and
Bollinger bands use the population standard deviation.

``calculate_indicators`` is pure: the same history and price always produce
the same ``TechnicalIndicators``.
"""

from __future__ import annotations

from typing import Sequence

import pandas as pd

from models.snapshot import BandPosition, RsiSignal, TechnicalIndicators, Trend

MIN_HISTORY = 30

RSI_PERIOD = 14
MACD_FAST, MACD_SLOW, MACD_SIGNAL = 12, 26, 9
EMA_FAST, EMA_MID, EMA_SLOW = 9, 21, 50
BOLLINGER_PERIOD, BOLLINGER_STDDEV = 20, 2.0
ATR_PERIOD = 14

# Composite score weights
WEIGHT_RSI = 0.25
WEIGHT_MACD = 0.25
WEIGHT_EMA = 0.30
WEIGHT_BOLLINGER = 0.20


def calculate_indicators(
    closes: Sequence[float],
    current_price: float,
    highs: Sequence[float] | None = None,
    lows: Sequence[float] | None = None,
) -> TechnicalIndicators:
    """Compute the full indicator set for *closes* (oldest first).

    Returns a neutral, all-None set when fewer than 30 closes are available.
    ATR is only computed when *highs* and *lows* line up with *closes*.
    """
    if len(closes) < MIN_HISTORY:
        return TechnicalIndicators()

    series = pd.Series([float(c) for c in closes], dtype=float)

    rsi = _rsi(series, RSI_PERIOD)
    rsi_signal = rsi_signal_for(rsi)

    macd_line, signal_line, histogram = _macd(series)
    macd = _last(macd_line)
    macd_signal = _last(signal_line)
    macd_histogram = _last(histogram)
    macd_trend = macd_trend_for(histogram)

    ema9 = _last(_ema(series, EMA_FAST))
    ema21 = _last(_ema(series, EMA_MID))
    ema50 = _last(_ema(series, EMA_SLOW)) if len(series) >= EMA_SLOW else None
    ema_trend = ema_trend_for(ema9, ema21, ema50)

    upper, middle, lower = _bollinger(series)
    position = bollinger_position_for(current_price, upper, lower)
    width = (upper - lower) / middle if upper and lower and middle else None

    atr = None
    atr_percent = None
    if highs is not None and lows is not None and len(highs) == len(lows) == len(closes):
        atr = _atr(
            pd.Series([float(h) for h in highs], dtype=float),
            pd.Series([float(lo) for lo in lows], dtype=float),
            series,
            ATR_PERIOD,
        )
        if atr and current_price > 0:
            atr_percent = atr / current_price * 100

    score = composite_score(
        rsi=rsi,
        rsi_signal=rsi_signal,
        macd_trend=macd_trend,
        ema_trend=ema_trend,
        bollinger_position=position,
    )

    return TechnicalIndicators(
        rsi=rsi,
        rsi_signal=rsi_signal,
        macd=macd,
        macd_signal=macd_signal,
        macd_histogram=macd_histogram,
        macd_trend=macd_trend,
        ema9=ema9,
        ema21=ema21,
        ema50=ema50,
        ema_trend=ema_trend,
        bollinger_upper=upper,
        bollinger_middle=middle,
        bollinger_lower=lower,
        bollinger_position=position,
        bollinger_width=width,
        atr=atr,
        atr_percent=atr_percent,
        technical_score=score,
    )


# ------------------------------------------------------------------
# Categorical signals
# ------------------------------------------------------------------

def rsi_signal_for(rsi: float | None) -> RsiSignal:
    if rsi is None:
        return RsiSignal.NEUTRAL
    if rsi < 30:
        return RsiSignal.OVERSOLD
    if rsi > 70:
        return RsiSignal.OVERBOUGHT
    return RsiSignal.NEUTRAL


def macd_trend_for(histogram: pd.Series) -> Trend:
    """BULLISH on an upward zero-cross or a rising positive histogram; BEARISH mirrors it.

    Needs two histogram points; with fewer the trend is NEUTRAL.
    """
    if len(histogram) < 2:
        return Trend.NEUTRAL
    current = float(histogram.iloc[-1])
    previous = float(histogram.iloc[-2])

    if current > 0 and previous <= 0:
        return Trend.BULLISH
    if current < 0 and previous >= 0:
        return Trend.BEARISH
    if current > 0 and current > previous:
        return Trend.BULLISH
    if current < 0 and current < previous:
        return Trend.BEARISH
    return Trend.NEUTRAL


def ema_trend_for(ema9: float | None, ema21: float | None, ema50: float | None) -> Trend:
    if ema9 is None or ema21 is None:
        return Trend.NEUTRAL
    if ema9 > ema21 and (ema50 is None or ema21 > ema50):
        return Trend.BULLISH
    if ema9 < ema21 and (ema50 is None or ema21 < ema50):
        return Trend.BEARISH
    return Trend.NEUTRAL


def bollinger_position_for(price: float, upper: float | None, lower: float | None) -> BandPosition:
    if upper is None or lower is None:
        return BandPosition.MIDDLE
    if price > upper:
        return BandPosition.ABOVE
    if price < lower:
        return BandPosition.BELOW
    return BandPosition.MIDDLE


def composite_score(
    rsi: float | None,
    rsi_signal: RsiSignal,
    macd_trend: Trend,
    ema_trend: Trend,
    bollinger_position: BandPosition,
) -> float:
    """Weighted directional score in [-1, 1].

    Only indicators carrying a signal contribute their weight; the sum is
    normalised by the weights actually included.
    """
    score = 0.0
    weights = 0.0

    if rsi is not None:
        if rsi_signal is RsiSignal.OVERSOLD:
            score += WEIGHT_RSI
        elif rsi_signal is RsiSignal.OVERBOUGHT:
            score -= WEIGHT_RSI
        weights += WEIGHT_RSI

    if macd_trend is not Trend.NEUTRAL:
        score += WEIGHT_MACD if macd_trend is Trend.BULLISH else -WEIGHT_MACD
        weights += WEIGHT_MACD

    if ema_trend is not Trend.NEUTRAL:
        score += WEIGHT_EMA if ema_trend is Trend.BULLISH else -WEIGHT_EMA
        weights += WEIGHT_EMA

    if bollinger_position is not BandPosition.MIDDLE:
        score += WEIGHT_BOLLINGER if bollinger_position is BandPosition.BELOW else -WEIGHT_BOLLINGER
        weights += WEIGHT_BOLLINGER

    if 0 < weights < 1:
        score = score / weights

    return max(-1.0, min(1.0, score))


# ------------------------------------------------------------------
# Series math
# ------------------------------------------------------------------

def _seeded_smoothing(values: pd.Series, period: int, alpha: float) -> pd.Series:
    """Exponential smoothing seeded with the mean of the first *period* values.

    The result is indexed like *values*, starting at position ``period - 1``.
    """
    if len(values) < period:
        return pd.Series(dtype=float)
    seed = float(values.iloc[:period].mean())
    seeded = pd.Series([seed, *values.iloc[period:].tolist()], index=values.index[period - 1:], dtype=float)
    return seeded.ewm(alpha=alpha, adjust=False).mean()


def _ema(values: pd.Series, period: int) -> pd.Series:
    return _seeded_smoothing(values, period, alpha=2.0 / (period + 1))


def _wilder(values: pd.Series, period: int) -> pd.Series:
    return _seeded_smoothing(values, period, alpha=1.0 / period)


def _rsi(closes: pd.Series, period: int) -> float | None:
    deltas = closes.diff().iloc[1:]
    if len(deltas) < period:
        return None
    avg_gain = _last(_wilder(deltas.clip(lower=0), period))
    avg_loss = _last(_wilder((-deltas).clip(lower=0), period))
    if avg_gain is None or avg_loss is None:
        return None
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def _macd(closes: pd.Series) -> tuple[pd.Series, pd.Series, pd.Series]:
    """MACD line, signal line and histogram, each indexed by close position."""
    fast = _ema(closes, MACD_FAST)
    slow = _ema(closes, MACD_SLOW)
    macd_line = (fast - slow).dropna()
    signal_line = _ema(macd_line, MACD_SIGNAL)
    histogram = (macd_line - signal_line).dropna()
    return macd_line, signal_line, histogram


def _bollinger(closes: pd.Series) -> tuple[float | None, float | None, float | None]:
    if len(closes) < BOLLINGER_PERIOD:
        return None, None, None
    window = closes.iloc[-BOLLINGER_PERIOD:]
    middle = float(window.mean())
    deviation = float(window.std(ddof=0))
    return (
        middle + BOLLINGER_STDDEV * deviation,
        middle,
        middle - BOLLINGER_STDDEV * deviation,
    )


def _atr(highs: pd.Series, lows: pd.Series, closes: pd.Series, period: int) -> float | None:
    previous_close = closes.shift(1)
    true_range = pd.concat(
        [
            highs - lows,
            (highs - previous_close).abs(),
            (lows - previous_close).abs(),
        ],
        axis=1,
    ).max(axis=1, skipna=False).iloc[1:]
    return _last(_wilder(true_range, period))


def _last(values: pd.Series) -> float | None:
    if len(values) == 0:
        return None
    value = values.iloc[-1]
    return None if pd.isna(value) else float(value)
