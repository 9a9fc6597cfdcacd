"""
MarketLens — Technical Analysis Engine

Pure domain logic for the classic indicator suite on a close-only series:
RSI, MACD, Bollinger Bands, moving averages, stochastic, ATR, ADX,
Ichimoku, pivot support/resistance, Fibonacci proximity and RSI/price
divergence. Each reading feeds a confluence score and an overall strength.

Uses the `ta` library for EMA, MACD, Bollinger and stochastic series on
pandas Series built from the price history.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from ta.momentum import StochasticOscillator
from ta.trend import MACD, EMAIndicator
from ta.volatility import BollingerBands

from marketlens.engines.indicators import as_prices, calculate_technical_strength, pad_zero
from marketlens.engines.rules import Rule, RuleBook
from marketlens.models import (
    ADXReading,
    ATRReading,
    BollingerReading,
    Divergence,
    FibonacciReading,
    IchimokuReading,
    MACDReading,
    MovingAverages,
    StochasticReading,
    SupportResistance,
    TechnicalAnalysisResult,
)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

TA_MIN_HISTORY = 200
MAX_SIGNALS = 8

MACD_FAST, MACD_SLOW, MACD_SIGNAL = 12, 26, 9
BB_WINDOW, BB_DEV = 20, 2
SQUEEZE_RATIO = 0.7
STOCH_WINDOW, STOCH_SMOOTH = 14, 3
ATR_WINDOW = 14
ADX_WINDOW = 14
ADX_STRONG = 25.0
PIVOT_BARS = 50
NEAR_LEVEL_PCT = 0.005
FIB_TOLERANCE = 0.02
DIVERGENCE_LOOKBACK = 20

# (level, label, confluence weight), first match within tolerance wins
FIB_LEVELS = (
    (0.236, "FIB 23.6%", 2),
    (0.382, "FIB 38.2%", 2),
    (0.500, "FIB 50%", 3),
    (0.618, "FIB 61.8% GOLDEN", 4),
    (0.786, "FIB 78.6%", 3),
)


@dataclass
class _Readings:
    rsi: int
    macd: MACDReading
    macd_prev_histogram: float
    bollinger: BollingerReading
    averages: MovingAverages
    stochastic: StochasticReading
    atr: ATRReading
    adx: ADXReading
    ichimoku: IchimokuReading
    levels: SupportResistance
    fibonacci: FibonacciReading
    fib_weight: int
    divergence: Divergence

    @property
    def macd_bull_cross(self) -> bool:
        return self.macd.histogram > 0 and self.macd_prev_histogram <= 0

    @property
    def macd_bear_cross(self) -> bool:
        return self.macd.histogram < 0 and self.macd_prev_histogram >= 0

    @property
    def adx_up(self) -> bool:
        return self.adx.trend == "STRONG" and self.adx.direction == "BULLISH"

    @property
    def adx_down(self) -> bool:
        return self.adx.trend == "STRONG" and self.adx.direction == "BEARISH"


# Signal labels in reporting order; weight is the confluence contribution.
CONFLUENCE_RULES = RuleBook([
    Rule("RSI EXTREME OVERBOUGHT", lambda r: r.rsi > 75, -2),
    Rule("RSI OVERBOUGHT", lambda r: 70 < r.rsi <= 75, -1),
    Rule("RSI EXTREME OVERSOLD", lambda r: r.rsi < 25, 2),
    Rule("RSI OVERSOLD", lambda r: 25 <= r.rsi < 30, 1),
    Rule("MACD BULLISH CROSS", lambda r: r.macd_bull_cross, 3),
    Rule("MACD BEARISH CROSS", lambda r: r.macd_bear_cross, -3),
    Rule(None, lambda r: not (r.macd_bull_cross or r.macd_bear_cross) and r.macd.trend == "BULLISH", 1),
    Rule(None, lambda r: not (r.macd_bull_cross or r.macd_bear_cross) and r.macd.trend == "BEARISH", -1),
    Rule("BB UPPER BREACH", lambda r: r.bollinger.position == "OVERBOUGHT", -2),
    Rule("BB LOWER BREACH", lambda r: r.bollinger.position == "OVERSOLD", 2),
    Rule("BB SQUEEZE - BREAKOUT IMMINENT", lambda r: r.bollinger.squeeze, 2),
    Rule("MA GOLDEN ALIGNMENT", lambda r: r.averages.alignment == "BULLISH", 4),
    Rule("MA DEATH ALIGNMENT", lambda r: r.averages.alignment == "BEARISH", -4),
    Rule("STOCH OVERBOUGHT", lambda r: r.stochastic.signal == "OVERBOUGHT", -1),
    Rule("STOCH OVERSOLD", lambda r: r.stochastic.signal == "OVERSOLD", 1),
    Rule("STOCH BULLISH CROSS", lambda r: r.stochastic.d < r.stochastic.k < 20, 2),
    Rule("STOCH BEARISH CROSS", lambda r: r.stochastic.d > r.stochastic.k > 80, -2),
    Rule("VOLATILITY EXPANSION", lambda r: r.atr.trend == "EXPANDING", 1),
    Rule("VOLATILITY CONTRACTION", lambda r: r.atr.trend == "CONTRACTING"),
    Rule("ADX STRONG UPTREND", lambda r: r.adx_up, 3),
    Rule("ADX STRONG DOWNTREND", lambda r: r.adx_down, -3),
    Rule("ICHIMOKU BULLISH", lambda r: r.ichimoku.signal == "BULLISH", 3),
    Rule("ICHIMOKU BEARISH", lambda r: r.ichimoku.signal == "BEARISH", -3),
    Rule("NEAR KEY LEVEL", lambda r: r.levels.near_level),
    Rule(lambda r: f"AT {r.fibonacci.level}", lambda r: r.fibonacci.near_level, lambda r: r.fib_weight),
    Rule("BEARISH DIVERGENCE", lambda r: r.divergence.type == "BEARISH DIVERGENCE", -4),
    Rule("BULLISH DIVERGENCE", lambda r: r.divergence.type == "BULLISH DIVERGENCE", 4),
])

# Adjustments applied to RSI to form the overall strength.
STRENGTH_RULES = RuleBook([
    Rule(None, lambda r: r.macd.trend == "BULLISH", 12),
    Rule(None, lambda r: r.macd.trend == "BEARISH", -12),
    Rule(None, lambda r: r.averages.alignment == "BULLISH", 18),
    Rule(None, lambda r: r.averages.alignment == "BEARISH", -18),
    Rule(None, lambda r: r.bollinger.position == "OVERSOLD", 8),
    Rule(None, lambda r: r.bollinger.position == "OVERBOUGHT", -8),
    Rule(None, lambda r: r.adx_up, 10),
    Rule(None, lambda r: r.adx_down, -10),
    Rule(None, lambda r: r.ichimoku.signal == "BULLISH", 10),
    Rule(None, lambda r: r.ichimoku.signal == "BEARISH", -10),
])


class TAEngine:
    """Close-only technical analysis engine.

    Usage:
        engine = TAEngine()
        technicals = engine.analyze(history)
        technicals.overall_strength, technicals.signals
    """

    def analyze(self, history: Sequence[float]) -> TechnicalAnalysisResult:
        """Compute the full indicator suite.

        Args:
            history: Prices, most recent last (minimum 200 for a reading).

        Returns:
            TechnicalAnalysisResult; all-neutral defaults for short histories.
        """
        if len(history) < TA_MIN_HISTORY:
            return TechnicalAnalysisResult()

        h = as_prices(history)
        close = pd.Series(h)
        last = float(h[-1])

        # ── RSI ──
        rsi = calculate_technical_strength(h)

        # ── MACD (12, 26, 9) ──
        macd_values = MACD(close, window_slow=MACD_SLOW, window_fast=MACD_FAST).macd().to_numpy()[MACD_SLOW:]
        macd_value = float(macd_values[-1])
        macd_signal = self._ema(macd_values[-MACD_SIGNAL:], MACD_SIGNAL)
        histogram = macd_value - macd_signal
        prev_histogram = float(macd_values[-1]) - self._ema(macd_values[-MACD_SIGNAL - 1:-1], MACD_SIGNAL)
        macd = MACDReading(
            value=macd_value,
            signal=macd_signal,
            histogram=histogram,
            trend=self._sign_trend(histogram),
        )

        # ── Bollinger Bands (20, 2) with squeeze ──
        bands = BollingerBands(close, window=BB_WINDOW, window_dev=BB_DEV)
        upper = float(bands.bollinger_hband().iloc[-1])
        middle = float(bands.bollinger_mavg().iloc[-1])
        lower = float(bands.bollinger_lband().iloc[-1])
        prior = BollingerBands(pd.Series(h[-100:-20]), window=BB_WINDOW, window_dev=BB_DEV)
        prior_widths = (prior.bollinger_hband() - prior.bollinger_lband()).dropna()
        average_width = float(prior_widths.sum()) / 80
        if last > upper:
            position = "OVERBOUGHT"
        elif last < lower:
            position = "OVERSOLD"
        else:
            position = "NEUTRAL"
        bollinger = BollingerReading(
            upper=upper,
            middle=middle,
            lower=lower,
            position=position,
            squeeze=(upper - lower) < average_width * SQUEEZE_RATIO,
        )

        # ── Moving Averages ──
        ma20, ma50, ma200 = float(h[-20:].mean()), float(h[-50:].mean()), float(h[-200:].mean())
        if ma20 > ma50 > ma200 and last > ma20:
            alignment = "BULLISH"
        elif ma20 < ma50 < ma200 and last < ma20:
            alignment = "BEARISH"
        else:
            alignment = "MIXED"
        averages = MovingAverages(ma20=ma20, ma50=ma50, ma200=ma200, alignment=alignment)

        fibonacci, fib_weight = self._fibonacci(h)
        readings = _Readings(
            rsi=rsi,
            macd=macd,
            macd_prev_histogram=prev_histogram,
            bollinger=bollinger,
            averages=averages,
            stochastic=self._stochastic(close),
            atr=self._atr(h),
            adx=self._adx(h),
            ichimoku=self._ichimoku(h),
            levels=self._pivot_levels(h),
            fibonacci=fibonacci,
            fib_weight=fib_weight,
            divergence=self._divergence(h),
        )

        confluence = CONFLUENCE_RULES.evaluate(readings)
        strength = rsi + STRENGTH_RULES.evaluate(readings).score

        return TechnicalAnalysisResult(
            rsi=rsi,
            macd=macd,
            bollinger_bands=bollinger,
            moving_averages=averages,
            support_resistance=readings.levels,
            divergence=readings.divergence,
            stochastic=readings.stochastic,
            atr=readings.atr,
            adx=readings.adx,
            ichimoku=readings.ichimoku,
            fibonacci=readings.fibonacci,
            overall_strength=max(0.0, min(100.0, strength)),
            signals=confluence.labels[:MAX_SIGNALS],
            confluence=confluence.score,
        )

    # ──────────────────────────────────────────
    # Indicator Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _ema(values: Sequence[float], period: int) -> float:
        """EMA seeded with the first value, read at the last value."""
        series = EMAIndicator(pd.Series(values, dtype=float), window=period, fillna=True).ema_indicator()
        return float(series.iloc[-1])

    @staticmethod
    def _sign_trend(value: float) -> str:
        if value > 0:
            return "BULLISH"
        if value < 0:
            return "BEARISH"
        return "NEUTRAL"

    @staticmethod
    def _stochastic(close: pd.Series) -> StochasticReading:
        """Stochastic %K (14) with a 3-point %D; a flat window reads 50."""
        oscillator = StochasticOscillator(
            high=close, low=close, close=close,
            window=STOCH_WINDOW, smooth_window=STOCH_SMOOTH,
        )
        k_values = oscillator.stoch().iloc[STOCH_WINDOW - 1:].fillna(50.0)
        k = float(k_values.iloc[-1])
        d = float(k_values.iloc[-STOCH_SMOOTH:].mean())
        if k > 80:
            signal = "OVERBOUGHT"
        elif k < 20:
            signal = "OVERSOLD"
        else:
            signal = "NEUTRAL"
        return StochasticReading(k=k, d=d, signal=signal)

    @staticmethod
    def _atr(h: np.ndarray) -> ATRReading:
        true_ranges = np.abs(np.diff(h))
        value = float(true_ranges[-ATR_WINDOW:].sum()) / ATR_WINDOW
        previous = float(true_ranges[-ATR_WINDOW * 2:-ATR_WINDOW].sum()) / ATR_WINDOW
        if value > previous * 1.2:
            trend = "EXPANDING"
        elif value < previous * 0.8:
            trend = "CONTRACTING"
        else:
            trend = "STABLE"
        return ATRReading(value=value, trend=trend)

    @staticmethod
    def _adx(h: np.ndarray) -> ADXReading:
        """Simplified ADX: directional imbalance over the last 14 closes."""
        deltas = np.diff(h[-ADX_WINDOW:])
        positive = float(deltas[deltas > 0].sum())
        negative = float(-deltas[deltas < 0].sum())
        value = abs(positive - negative) / (positive + negative + 0.0001) * 100
        if positive > negative:
            direction = "BULLISH"
        elif negative > positive:
            direction = "BEARISH"
        else:
            direction = "NEUTRAL"
        return ADXReading(value=value, trend="STRONG" if value > ADX_STRONG else "WEAK", direction=direction)

    @staticmethod
    def _ichimoku(h: np.ndarray) -> IchimokuReading:
        last = float(h[-1])
        tenkan = (h[-9:].max() + h[-9:].min()) / 2
        kijun = (h[-26:].max() + h[-26:].min()) / 2
        senkou_a = (tenkan + kijun) / 2
        senkou_b = (h[-52:].max() + h[-52:].min()) / 2
        top, bottom = max(senkou_a, senkou_b), min(senkou_a, senkou_b)

        if last > top:
            cloud = "ABOVE"
        elif last < bottom:
            cloud = "BELOW"
        else:
            cloud = "INSIDE"

        if cloud == "ABOVE" and tenkan > kijun:
            signal = "BULLISH"
        elif cloud == "BELOW" and tenkan < kijun:
            signal = "BEARISH"
        else:
            signal = "NEUTRAL"
        return IchimokuReading(signal=signal, cloud=cloud)

    @staticmethod
    def _pivot_levels(h: np.ndarray) -> SupportResistance:
        recent = h[-PIVOT_BARS:]
        last = float(h[-1])
        high, low = float(recent.max()), float(recent.min())
        pivot = (high + low + last) / 3
        resistance = 2 * pivot - low
        support = 2 * pivot - high
        scale = pad_zero(last)
        near = abs(last - resistance) / scale < NEAR_LEVEL_PCT or abs(last - support) / scale < NEAR_LEVEL_PCT
        return SupportResistance(support=support, resistance=resistance, near_level=near)

    @staticmethod
    def _fibonacci(h: np.ndarray) -> tuple[FibonacciReading, int]:
        recent = h[-PIVOT_BARS:]
        last = float(h[-1])
        high = float(recent.max())
        fib_range = high - float(recent.min())
        tolerance = fib_range * FIB_TOLERANCE
        for ratio, label, weight in FIB_LEVELS:
            if abs(last - (high - fib_range * ratio)) < tolerance:
                return FibonacciReading(level=label, near_level=True), weight
        return FibonacciReading(), 0

    @staticmethod
    def _divergence(h: np.ndarray) -> Divergence:
        """RSI vs. price against the reading 20 points back."""
        rsi_now = calculate_technical_strength(h)
        rsi_then = calculate_technical_strength(h[:len(h) - DIVERGENCE_LOOKBACK + 1])
        last, then = h[-1], h[-DIVERGENCE_LOOKBACK]
        if last > then and rsi_now < rsi_then:
            return Divergence(detected=True, type="BEARISH DIVERGENCE")
        if last < then and rsi_now > rsi_then:
            return Divergence(detected=True, type="BULLISH DIVERGENCE")
        return Divergence()
