"""
MarketLens — Core Indicators

The two leaf measurements every other engine builds on:

  calculate_volatility          population std of simple returns, scaled ×1200
  calculate_technical_strength  unsmoothed 14-point RSI on the latest window

Plus the small numeric helpers shared by the engines (swing detection,
guarded ratios, zero-padded price denominators, half-up rounding).
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

VOLATILITY_SCALE = 1200.0
STRENGTH_MIN_HISTORY = 40
STRENGTH_WINDOW = 14
STRENGTH_NEUTRAL = 50
PRICE_PADDING = 0.0001


def as_prices(history: Sequence[float]) -> np.ndarray:
    """Copy a price history into a float array (the caller's list is never touched)."""
    return np.array(history, dtype=float)


def calculate_volatility(history: Sequence[float]) -> float:
    """Scaled population standard deviation of bar-to-bar simple returns.

    Returns 0.0 for fewer than two prices and for a constant history.
    """
    h = as_prices(history)
    if h.size < 2:
        return 0.0
    returns = np.diff(h) / pad_zero(h[:-1])
    return float(np.std(returns) * VOLATILITY_SCALE)


def calculate_technical_strength(history: Sequence[float]) -> int:
    """RSI-like 0-100 strength score over the last 14 prices.

    Gains and losses are plain sums (no Wilder smoothing). A window with
    gains and no losses scores 100; a flat window scores 0.
    """
    if len(history) < STRENGTH_MIN_HISTORY:
        return STRENGTH_NEUTRAL

    deltas = np.diff(as_prices(history)[-STRENGTH_WINDOW:])
    gains = float(deltas[deltas > 0].sum())
    losses = float(-deltas[deltas < 0].sum())

    if losses == 0 and gains > 0:
        return 100
    rsi = 100 - 100 / (1 + gains / (losses or 1.0))
    return round_half_up(rsi)


# ──────────────────────────────────────────────
# Shared helpers
# ──────────────────────────────────────────────

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is zero."""
    return numerator / denominator if denominator else 0.0


def pad_zero(value):
    """Price denominator with zeros replaced by PRICE_PADDING (scalar or array)."""
    if isinstance(value, np.ndarray):
        return np.where(value == 0, PRICE_PADDING, value)
    return value or PRICE_PADDING


def find_swings(data: np.ndarray, order: int) -> tuple[list[tuple[int, float]], list[tuple[int, float]]]:
    """Symmetric-window swing highs and lows.

    A bar is a swing high when it equals the max of the ``order`` bars on
    either side (inclusive), a swing low when it equals the min. Returns
    (highs, lows) as lists of (index, value) in chronological order.
    """
    highs: list[tuple[int, float]] = []
    lows: list[tuple[int, float]] = []
    for i in range(order, len(data) - order):
        window = data[i - order:i + order + 1]
        value = float(data[i])
        if value == window.max():
            highs.append((i, value))
        if value == window.min():
            lows.append((i, value))
    return highs, lows


# ──────────────────────────────────────────────
# Price-delta volume proxies
# ──────────────────────────────────────────────

VOLUME_RECENT_BARS = 20
VOLUME_BASELINE_BARS = 100


def volume_ratio(history: Sequence[float]) -> float:
    """Recent vs. baseline mean absolute bar delta.

    Recent is the last 20 bars, baseline the 80 bars before them. Returns 1.0
    when there is no baseline movement to compare against.
    """
    h = as_prices(history)
    recent = float(np.abs(np.diff(h[-VOLUME_RECENT_BARS:])).sum()) / VOLUME_RECENT_BARS
    baseline_bars = VOLUME_BASELINE_BARS - VOLUME_RECENT_BARS
    baseline = float(np.abs(np.diff(h[-VOLUME_BASELINE_BARS:-VOLUME_RECENT_BARS])).sum()) / baseline_bars
    return recent / baseline if baseline > 0 else 1.0


def bar_pressure(history: Sequence[float], bars: int = VOLUME_RECENT_BARS) -> tuple[int, int]:
    """(up bars, down bars) among the last ``bars`` prices."""
    deltas = np.diff(as_prices(history)[-bars:])
    return int(np.sum(deltas > 0)), int(np.sum(deltas < 0))
