"""
MarketLens — Manipulation Detection Engine

Flags institutional footprints on a close-only series: HFT stop hunts,
liquidity grabs, order-flow imbalance, Wyckoff springs/upthrusts, VSA and
absorption. Each rule adds to a severity score and an institutional
footprint score.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import structlog

from marketlens.engines.indicators import VOLATILITY_SCALE, as_prices, calculate_volatility, pad_zero
from marketlens.engines.rules import Rule, RuleBook
from marketlens.models import ManipulationResult

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

MANIPULATION_MIN_HISTORY = 30
RECENT_BARS = 30
EXTENDED_BARS = 60
PROFILE_BINS = 10
FLOW_PADDING = 0.0001


@dataclass
class _ManipulationContext:
    last: float
    prev: float
    third_last: float
    tenth_last: float
    volatility: float
    stop_hunt_move: float
    move: float
    vol_10: float
    vol_30: float
    vol_60: float
    vol_prior_30: float
    vol_last_5: float
    high: float
    low: float
    range: float
    average: float
    order_flow_delta: float
    large_moves: int
    profile_peak: float
    profile_mean: float
    first_quarter_mean: float
    last_quarter_mean: float
    first_quarter_vol: float
    last_quarter_vol: float
    whipsaws: int
    tested_below: bool
    tested_above: bool
    average_spread: float


# Graduated stop hunts, the largest multiple wins.
STOP_HUNT_RULES = RuleBook([
    Rule("EXTREME HFT STOP HUNT (6σ)", lambda c: c.stop_hunt_move > c.volatility * 6.0, 5, 25),
    Rule("CRITICAL HFT STOP HUNT (4.5σ)", lambda c: c.stop_hunt_move > c.volatility * 4.5, 4, 20),
    Rule("HFT STOP HUNT (3σ)", lambda c: c.stop_hunt_move > c.volatility * 3.0, 3, 15),
], first_match=True)

MANIPULATION_RULES = RuleBook([
    Rule("CASCADING VOLATILITY EXPANSION",
         lambda c: c.vol_10 > c.vol_30 * 2.0 and c.vol_30 > c.vol_60 * 1.5, 2, 12),
    Rule("LIQUIDITY GRAB - UPSIDE",
         lambda c: c.last > c.high * 0.998 and c.prev < c.high * 0.995 and c.third_last < c.average, 4, 25),
    Rule("LIQUIDITY GRAB - DOWNSIDE",
         lambda c: c.last < c.low * 1.002 and c.prev > c.low * 1.005 and c.third_last > c.average, 4, 25),
    Rule(lambda c: f"ORDER FLOW IMBALANCE {'BULLISH' if c.order_flow_delta > 0 else 'BEARISH'}",
         lambda c: abs(c.order_flow_delta) > 0.7, 3, 20),
    Rule("INSTITUTIONAL FOOTPRINT", lambda c: c.large_moves > RECENT_BARS * 0.15, 2, 30),
    Rule("SMART MONEY DIVERGENCE",
         lambda c: (c.last > c.tenth_last) != (c.vol_30 > c.vol_prior_30), 3, 20),
    Rule("VOLUME PROFILE TRAP", lambda c: c.profile_peak > c.profile_mean * 3.5, 2),
    Rule("WYCKOFF ACCUMULATION",
         lambda c: c.last_quarter_vol > c.first_quarter_vol * 2.5
         and abs(c.last_quarter_mean - c.first_quarter_mean) < c.range * 0.1, 3, 25),
    Rule("WHIPSAW TRAP", lambda c: c.whipsaws > RECENT_BARS * 0.4, 2),
    Rule("SPRING DETECTED (WYCKOFF)", lambda c: c.tested_below, 4, 30),
    Rule("UPTHRUST DETECTED (WYCKOFF)", lambda c: c.tested_above, 4, 30),
    Rule("NO DEMAND / NO SUPPLY (VSA)",
         lambda c: c.move < c.average_spread * 0.3 and abs(c.last - c.average) > c.range * 0.4, 3, 20),
    Rule("ABSORPTION PATTERN",
         lambda c: c.move > c.range * 0.05 and c.vol_last_5 < c.volatility * 0.5, 3, 25),
])


class ManipulationEngine:
    """Institutional manipulation detector.

    Usage:
        result = ManipulationEngine().analyze(history)
        if result.detected: ...
    """

    def analyze(self, history: Sequence[float]) -> ManipulationResult:
        if len(history) < MANIPULATION_MIN_HISTORY:
            return ManipulationResult()

        ctx = self._measure(as_prices(history))
        stop_hunt = STOP_HUNT_RULES.evaluate(ctx)
        main = MANIPULATION_RULES.evaluate(ctx)

        severity = int(stop_hunt.score + main.score)
        footprint = int(stop_hunt.secondary + main.secondary)
        indicators = stop_hunt.labels + main.labels

        detected = severity > 0
        if detected:
            kind = indicators[0] if indicators else "INSTITUTIONAL MANIPULATION"
        else:
            kind = "ORGANIC FLOW"

        if detected:
            log.debug("manipulation_engine.detected", type=kind, severity=severity, footprint=footprint)

        return ManipulationResult(
            detected=detected,
            type=kind,
            severity=severity,
            indicators=indicators,
            institutional_footprint=footprint,
        )

    @staticmethod
    def _measure(h: np.ndarray) -> _ManipulationContext:
        last, prev = float(h[-1]), float(h[-2])
        recent = h[-RECENT_BARS:]
        high, low = float(recent.max()), float(recent.min())
        rng = high - low

        deltas = np.diff(recent)
        buy = float(deltas[deltas > 0].sum())
        sell = float(-deltas[deltas <= 0].sum())

        profile_peak = profile_mean = 0.0
        if rng > 0:
            bin_size = rng / PROFILE_BINS
            bins = np.minimum(PROFILE_BINS - 1, np.floor((recent - low) / bin_size).astype(int))
            profile = np.bincount(bins, minlength=PROFILE_BINS)
            profile_peak = float(profile.max())
            profile_mean = float(profile.mean())

        first_quarter, last_quarter = recent[:7], recent[-7:]

        signs = np.sign(deltas)
        whipsaws = int(np.sum((signs[1:] != signs[:-1]) & (np.abs(deltas[:-1]) > rng * 0.02)))

        # Last four bars; the final bar can never test against itself
        last_5 = h[-5:]
        tested_below = any(p < low * 1.001 and last > p for p in last_5[1:])
        tested_above = any(p > high * 0.999 and last < p for p in last_5[1:])

        return _ManipulationContext(
            last=last,
            prev=prev,
            third_last=float(h[-3]),
            tenth_last=float(h[-10]),
            volatility=calculate_volatility(h),
            stop_hunt_move=abs(last - prev) / pad_zero(prev) * VOLATILITY_SCALE,
            move=abs(last - prev),
            vol_10=calculate_volatility(h[-10:]),
            vol_30=calculate_volatility(recent),
            vol_60=calculate_volatility(h[-EXTENDED_BARS:]),
            vol_prior_30=calculate_volatility(h[-EXTENDED_BARS:-RECENT_BARS]),
            vol_last_5=calculate_volatility(last_5),
            high=high,
            low=low,
            range=rng,
            average=float(recent.mean()),
            order_flow_delta=(buy - sell) / (buy + sell + FLOW_PADDING),
            large_moves=int(np.sum(np.abs(deltas) > rng * 0.04)),
            profile_peak=profile_peak,
            profile_mean=profile_mean,
            first_quarter_mean=float(first_quarter.mean()),
            last_quarter_mean=float(last_quarter.mean()),
            first_quarter_vol=calculate_volatility(first_quarter),
            last_quarter_vol=calculate_volatility(last_quarter),
            whipsaws=whipsaws,
            tested_below=tested_below,
            tested_above=tested_above,
            average_spread=float(np.mean(np.abs(deltas))),
        )
