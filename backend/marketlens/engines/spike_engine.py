"""
MarketLens — Spike Detection Engine

Early-warning spike detector. Ordered rules accumulate a spike probability
from multi-timeframe volatility expansion, momentum, volatility clustering,
price derivatives (acceleration, jerk, snap), consolidation breakouts,
BOOM/CRASH deep scans and price dispersion.

Severity is read off the final probability alone:

  >90 EXTREME   >75 CRITICAL   >55 HIGH   >35 MEDIUM   else LOW
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import structlog

from marketlens.engines.indicators import (
    as_prices,
    calculate_technical_strength,
    calculate_volatility,
    pad_zero,
)
from marketlens.engines.rules import Rule, RuleBook
from marketlens.models import SpikeResult

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

SPIKE_MIN_HISTORY = 50
PROBABILITY_CAP = 99.9
CLUSTER_START = 20
CLUSTER_STEP = 5
DIRECTION_DEADBAND = 0.003

SEVERITY_TIERS = ((90.0, "EXTREME"), (75.0, "CRITICAL"), (55.0, "HIGH"), (35.0, "MEDIUM"))


def classify_severity(probability: float) -> str:
    for threshold, severity in SEVERITY_TIERS:
        if probability > threshold:
            return severity
    return "LOW"


@dataclass
class _SpikeContext:
    last: float
    vol_10: float
    vol_30: float
    vol_50: float
    vol_100: float
    momentum: tuple[float, float, float]
    momentum_pct: tuple[float, float, float]
    average: float
    cluster_latest: Optional[float]
    cluster_mean: float
    cluster_std: float
    accel: tuple[float, float, float]
    jerk: tuple[float, float]
    snap: tuple[float, float]
    consolidation_vol: float
    consolidation_mean: float
    consolidation_range: float
    dispersion_10: float
    dispersion_30: float
    boom: bool = False
    crash: bool = False
    tight_ratio: float = math.inf
    breakout: float = 0.0
    tight_range: float = 0.0
    rsi: int = 50
    is_spike: bool = False
    prediction: str = "NEUTRAL"
    time_to_spike: Optional[int] = None

    @property
    def synthetic(self) -> bool:
        return self.boom or self.crash

    def cluster_above(self, sigmas: float) -> bool:
        return self.cluster_latest is not None and self.cluster_latest > self.cluster_mean + self.cluster_std * sigmas


def _spike(ctx: _SpikeContext) -> None:
    ctx.is_spike = True


def _predict(prediction: str, bars: int, spike: bool = False):
    def apply(ctx: _SpikeContext) -> None:
        ctx.prediction = prediction
        ctx.time_to_spike = bars
        if spike:
            ctx.is_spike = True
    return apply


def _snap(ctx: _SpikeContext) -> None:
    ctx.is_spike = True
    ctx.prediction = "IMMINENT"
    ctx.time_to_spike = max(1, math.floor(5 / abs(ctx.snap[0])))


SPIKE_RULES = RuleBook([
    # ── Volatility expansion ──
    Rule("SHORT-TERM VOL SURGE", lambda c: c.vol_10 > c.vol_30 * 2.2, 28, then=_spike),
    Rule("CRITICAL VOL EXPANSION", lambda c: c.vol_10 > c.vol_50 * 3.5, 35, then=_spike),
    Rule("EXTREME VOL BREAKOUT", lambda c: c.vol_10 > c.vol_100 * 5.0, 40, then=_spike),
    # ── Momentum ──
    Rule("STRONG 3-BAR MOMENTUM", lambda c: c.momentum_pct[0] > 0.4, 18, then=_spike),
    Rule("EXPLOSIVE 5-BAR MOMENTUM", lambda c: c.momentum_pct[1] > 0.7, 25, then=_spike),
    Rule("PARABOLIC 10-BAR MOMENTUM", lambda c: c.momentum_pct[2] > 1.2, 30, then=_spike),
    # ── Volatility clustering ──
    Rule("VOLATILITY CLUSTERING (2σ)", lambda c: c.cluster_above(2), 20, then=_spike),
    Rule("EXTREME VOL CLUSTER (3σ)", lambda c: c.cluster_above(3), 30, then=_spike),
    # ── Derivatives ──
    Rule("PRICE ACCELERATION",
         lambda c: abs(c.accel[0]) > abs(c.accel[1]) * 1.5 and abs(c.accel[1]) > abs(c.accel[2]) * 1.3,
         22, then=_spike),
    Rule("JERK DETECTION (2ND DERIV)", lambda c: abs(c.jerk[0]) > abs(c.jerk[1]) * 2.0, 25, then=_spike),
    Rule("EXTREME JERK ACCELERATION", lambda c: abs(c.jerk[0]) > abs(c.jerk[1]) * 3.0, 15, then=_spike),
    Rule("SNAP DETECTED (3RD DERIV)", lambda c: abs(c.snap[0]) > abs(c.snap[1]) * 1.8, 30, then=_snap),
    # ── Consolidation ──
    Rule("CONSOLIDATION BREAKOUT",
         lambda c: c.consolidation_vol < 0.2 and abs(c.last - c.consolidation_mean) > c.consolidation_range * 1.5,
         28, then=_spike),
    Rule("SPIKE BUILDING (3-5 BARS)",
         lambda c: c.consolidation_vol < 0.15 and c.vol_10 > c.vol_30 * 1.3 and not c.is_spike,
         15, then=_predict("BUILDING", 3)),
    Rule("SPIKE IMMINENT (1-2 BARS)",
         lambda c: c.vol_10 > c.vol_30 * 1.8 and c.momentum_pct[0] > 0.3,
         25, then=_predict("IMMINENT", 1, spike=True)),
    # ── BOOM / CRASH deep scan ──
    Rule("ULTRA-TIGHT CONSOLIDATION", lambda c: c.synthetic and c.tight_ratio < 0.005,
         20, then=_predict("BUILDING", 2)),
    Rule("BOOM/CRASH SPIKE INITIATED", lambda c: c.synthetic and c.breakout > c.tight_range * 2.0,
         30, then=_spike),
    Rule("BOOM/CRASH EXTREME SPIKE", lambda c: c.synthetic and c.breakout > c.tight_range * 3.5,
         45, then=_spike),
    Rule("EXTREME RSI REVERSAL ZONE", lambda c: (c.boom and c.rsi < 25) or (c.crash and c.rsi > 75),
         20),
    # ── Dispersion ──
    Rule("VOLUME PROFILE ANOMALY", lambda c: c.dispersion_10 > c.dispersion_30 * 2.5, 18, then=_spike),
])


class SpikeEngine:
    """Predictive spike detector.

    Usage:
        spike = SpikeEngine().analyze(history, symbol="BOOM1000")
        spike.probability, spike.prediction
    """

    def analyze(self, history: Sequence[float], symbol: Optional[str] = None) -> SpikeResult:
        if len(history) < SPIKE_MIN_HISTORY:
            return SpikeResult()

        h = as_prices(history)
        ctx = self._measure(h, symbol)
        outcome = SPIKE_RULES.evaluate(ctx)

        mean_momentum = sum(ctx.momentum) / 3
        if mean_momentum > ctx.average * DIRECTION_DEADBAND:
            direction = "UP"
        elif mean_momentum < -ctx.average * DIRECTION_DEADBAND:
            direction = "DOWN"
        else:
            direction = "NEUTRAL"

        probability = max(0.0, min(PROBABILITY_CAP, outcome.score))
        severity = classify_severity(outcome.score)

        if ctx.is_spike:
            log.debug(
                "spike_engine.detected",
                symbol=symbol,
                severity=severity,
                probability=round(probability, 2),
                prediction=ctx.prediction,
            )

        return SpikeResult(
            is_spike=ctx.is_spike,
            severity=severity,
            direction=direction,
            probability=probability,
            indicators=outcome.labels,
            prediction=ctx.prediction,
            time_to_spike=ctx.time_to_spike,
        )

    @staticmethod
    def _measure(h: np.ndarray, symbol: Optional[str]) -> _SpikeContext:
        last = float(h[-1])
        recent_10 = h[-10:]
        recent_30 = h[-30:]
        average = float(recent_30.mean())

        momentum = (last - float(h[-3]), last - float(h[-5]), last - float(h[-10]))
        momentum_pct = tuple(abs(m / pad_zero(average)) * 100 for m in momentum)

        # 5-bar volatilities from bar 20, the newest compared to the rest
        samples = [
            calculate_volatility(h[i:i + CLUSTER_STEP])
            for i in range(CLUSTER_START, len(h) - CLUSTER_STEP, CLUSTER_STEP)
        ]
        cluster_latest: Optional[float] = None
        cluster_mean = cluster_std = 0.0
        if len(samples) > 3:
            cluster_latest = samples[-1]
            cluster_mean = float(np.mean(samples[:-1]))
            cluster_std = math.sqrt(sum((s - cluster_mean) ** 2 for s in samples) / len(samples))

        steps = [float(h[-k] - h[-k - 1]) for k in range(1, 6)]
        jerk = [steps[k] - steps[k + 1] for k in range(3)]
        snap = (jerk[0] - jerk[1], jerk[1] - jerk[2])

        consolidation = recent_30[:20]

        ctx = _SpikeContext(
            last=last,
            vol_10=calculate_volatility(recent_10),
            vol_30=calculate_volatility(recent_30),
            vol_50=calculate_volatility(h[-50:]),
            vol_100=calculate_volatility(h[-100:]),
            momentum=momentum,
            momentum_pct=momentum_pct,
            average=average,
            cluster_latest=cluster_latest,
            cluster_mean=cluster_mean,
            cluster_std=cluster_std,
            accel=(steps[0], steps[1], steps[2]),
            jerk=(jerk[0], jerk[1]),
            snap=snap,
            consolidation_vol=calculate_volatility(consolidation),
            consolidation_mean=float(consolidation.mean()),
            consolidation_range=float(consolidation.max() - consolidation.min()),
            dispersion_10=math.sqrt(float(np.mean((recent_10 - average) ** 2))),
            dispersion_30=math.sqrt(float(np.mean((recent_30 - average) ** 2))),
        )

        if symbol and ("BOOM" in symbol or "CRASH" in symbol):
            window = recent_10[:7]
            ctx.boom = "BOOM" in symbol
            ctx.crash = not ctx.boom
            ctx.tight_range = float(window.max() - window.min())
            tight_mean = float(window.mean())
            ctx.tight_ratio = ctx.tight_range / pad_zero(tight_mean)
            ctx.breakout = abs(last - tight_mean)
            ctx.rsi = calculate_technical_strength(h)

        return ctx
