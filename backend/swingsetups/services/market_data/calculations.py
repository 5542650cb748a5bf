"""
Technical Indicator Calculations

Pure NumPy implementations of the indicators the analysis payload exposes.
NO LLM INVOLVEMENT - All math is deterministic.
"""

import numpy as np
from typing import Optional

from swingsetups.schemas.market import VolumeClass


# =============================================================================
# MOVING AVERAGES
# =============================================================================


def sma(data: np.ndarray, period: int) -> np.ndarray:
    """Simple Moving Average."""
    result = np.full(len(data), np.nan)
    if len(data) < period:
        return result

    window = np.cumsum(np.insert(data.astype(float), 0, 0.0))
    result[period - 1 :] = (window[period:] - window[:-period]) / period
    return result


def ema(data: np.ndarray, period: int) -> np.ndarray:
    """Exponential Moving Average, seeded with the SMA of the first period."""
    result = np.full(len(data), np.nan)
    if len(data) < period:
        return result

    multiplier = 2 / (period + 1)
    result[period - 1] = np.mean(data[:period])
    for i in range(period, len(data)):
        result[i] = (data[i] - result[i - 1]) * multiplier + result[i - 1]

    return result


# =============================================================================
# MOMENTUM / VOLATILITY
# =============================================================================


def rsi(closes: np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index (Wilder smoothing)."""
    result = np.full(len(closes), np.nan)
    if len(closes) < period + 1:
        return result

    deltas = np.diff(closes)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = np.mean(gains[:period])
    avg_loss = np.mean(losses[:period])

    def _value(g: float, l: float) -> float:
        if l == 0:
            return 100.0
        return 100 - (100 / (1 + g / l))

    result[period] = _value(avg_gain, avg_loss)
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result[i + 1] = _value(avg_gain, avg_loss)

    return result


def atr(
    highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14
) -> np.ndarray:
    """Average True Range (EMA of true range)."""
    if len(closes) < 2:
        return np.full(len(closes), np.nan)

    prev_close = np.concatenate(([closes[0]], closes[:-1]))
    tr = np.maximum.reduce([
        highs - lows,
        np.abs(highs - prev_close),
        np.abs(lows - prev_close),
    ])
    tr[0] = highs[0] - lows[0]

    return ema(tr, period)


# =============================================================================
# VOLUME
# =============================================================================


def classify_volume(volumes: np.ndarray, lookback: int = 20) -> tuple[VolumeClass, Optional[float]]:
    """
    Latest volume against the median of the last `lookback` daily volumes.

    >= 1.5x -> ABOVE_AVERAGE, <= 0.7x -> BELOW_AVERAGE, otherwise AVERAGE.
    Fewer than 5 bars -> UNKNOWN.
    """
    if len(volumes) < 5:
        return VolumeClass.UNKNOWN, None

    window = volumes[-lookback:]
    median = float(np.median(window))
    if median <= 0:
        return VolumeClass.UNKNOWN, None

    ratio = float(volumes[-1]) / median
    if ratio >= 1.5:
        return VolumeClass.ABOVE_AVERAGE, round(ratio, 2)
    if ratio <= 0.7:
        return VolumeClass.BELOW_AVERAGE, round(ratio, 2)
    return VolumeClass.AVERAGE, round(ratio, 2)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_last_valid(arr: np.ndarray) -> Optional[float]:
    """Get last non-NaN value from array."""
    valid = arr[~np.isnan(arr)]
    return round(float(valid[-1]), 4) if len(valid) > 0 else None
