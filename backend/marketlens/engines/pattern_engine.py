"""
MarketLens — Pattern Recognition Engine

Rule-based detection of harmonic and chart patterns on a close-only series.
Deterministic analysis, no ML required.

Harmonics (first match wins, X/A/B/C/D sampled from the series):
  Gartley, Bat, Butterfly, Crab, Cypher, Shark, AB=CD, Deep Crab, 5-0

Chart structures (8-bar swings, later checks override earlier ones):
  Three Drives, Wolfe Wave, Elliott Impulse, Head & Shoulders (& Inverse)

Confidence is then boosted by Elliott wave, SMC trend and volatility context.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

import numpy as np
import structlog

from marketlens.engines.elliott_engine import ElliottWaveEngine
from marketlens.engines.indicators import as_prices, calculate_volatility, find_swings, pad_zero, safe_ratio
from marketlens.engines.rules import Rule, RuleBook
from marketlens.engines.smc_engine import SMCEngine
from marketlens.models import PatternResult, SMCResult, WaveAnalysis

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

PATTERN_MIN_HISTORY = 80
DEFAULT_LABEL = "STRUCTURAL BIAS"
DEFAULT_CONFIDENCE = 75.0
CONFIDENCE_CAP = 99.9

B_POINT = 0.45
C_POINT = 0.70

STRICT_TOL = 0.008
PRECISE_TOL = 0.005
ULTRA_TOL = 0.003

SWING_ORDER = 8
DRIVE_TOLERANCE = 0.15
SHOULDER_TOLERANCE = 0.05


def strict(value: float, target: float) -> bool:
    return abs(value - target) < STRICT_TOL


def precise(value: float, target: float) -> bool:
    return abs(value - target) < PRECISE_TOL


def ultra(value: float, target: float) -> bool:
    return abs(value - target) < ULTRA_TOL


def within(value: float, low: float, high: float) -> bool:
    return low <= value <= high


@dataclass
class HarmonicLegs:
    """XABCD legs and their Fibonacci ratios."""
    ab: float
    cd: float
    ret_b: float
    ret_d: float
    ret_c: float
    ext_d: float
    xd: float

    @classmethod
    def from_series(cls, h: np.ndarray) -> "HarmonicLegs":
        n = len(h)
        x, d = float(h[0]), float(h[-1])
        a = float(h.max()) if d > x else float(h.min())
        b = float(h[math.floor(n * B_POINT)])
        c = float(h[math.floor(n * C_POINT)])

        xa, ab, bc, cd = abs(a - x), abs(b - a), abs(c - b), abs(d - c)
        ad, xd = abs(d - a), abs(d - x)
        return cls(
            ab=ab,
            cd=cd,
            ret_b=safe_ratio(ab, xa),
            ret_d=safe_ratio(ad, xa),
            ret_c=safe_ratio(bc, ab),
            ext_d=safe_ratio(cd, bc),
            xd=safe_ratio(xd, xa),
        )

    @property
    def symmetry(self) -> float:
        """|AB - CD| / AB, infinite for a zero AB leg."""
        return abs(self.ab - self.cd) / self.ab if self.ab else math.inf


HARMONIC_RULES = RuleBook([
    Rule("GARTLEY HARMONIC PRO",
         lambda g: precise(g.ret_d, 0.786) and precise(g.ret_b, 0.618) and within(g.ret_c, 0.382, 0.886),
         lambda g: 92 + 3 * ultra(g.ret_d, 0.786) + 3 * ultra(g.ret_b, 0.618)),
    Rule("BAT HARMONIC PRO",
         lambda g: precise(g.ret_d, 0.886) and within(g.ret_b, 0.382, 0.5) and within(g.xd, 0.886, 1.13),
         lambda g: 94 + 4 * ultra(g.ret_d, 0.886) + 2 * strict(g.ret_b, 0.439)),
    Rule("BUTTERFLY HARMONIC PRO",
         lambda g: precise(g.ret_d, 1.272) and precise(g.ret_b, 0.786) and within(g.xd, 1.272, 1.618),
         lambda g: 96 + min(4 * ultra(g.ret_d, 1.272) + 3 * ultra(g.ret_b, 0.786), 3)),
    Rule("CRAB HARMONIC PRO",
         lambda g: strict(g.ret_d, 1.618) and within(g.ret_b, 0.382, 0.618) and g.xd > 1.618,
         lambda g: 97 + min(5 * ultra(g.ret_d, 1.618), 2)),
    Rule("CYPHER HARMONIC PRO",
         lambda g: precise(g.ret_b, 0.382) and precise(g.ret_d, 0.786) and precise(g.ret_c, 1.272),
         lambda g: 95 + min(3 * ultra(g.ret_b, 0.382) + 3 * ultra(g.ret_d, 0.786), 4)),
    Rule("SHARK HARMONIC PRO",
         lambda g: precise(g.ret_b, 0.618) and precise(g.ret_d, 0.886) and strict(g.ext_d, 1.618),
         lambda g: 96 + min(4 * ultra(g.ret_b, 0.618), 3)),
    Rule("AB=CD PRECISION",
         lambda g: precise(g.ext_d, 1.0) and g.symmetry < 0.02,
         lambda g: 90 + (4 if g.symmetry < 0.01 else 2)),
    Rule("DEEP CRAB HARMONIC",
         lambda g: strict(g.ret_d, 1.13) and within(g.ret_b, 0.618, 0.786) and within(g.ret_c, 1.618, 2.24),
         97),
    Rule("5-0 HARMONIC PRO",
         lambda g: precise(g.ret_b, 0.5) and precise(g.ret_d, 0.707) and strict(g.ret_c, 1.414),
         95),
], first_match=True)


@dataclass
class _BoostContext:
    label: str
    confidence: float
    waves: WaveAnalysis
    smc: SMCResult
    vol_100: float
    vol_20: float

    @property
    def detected(self) -> bool:
        return self.label != DEFAULT_LABEL

    def add(self, amount: float) -> None:
        self.confidence = min(CONFIDENCE_CAP, self.confidence + amount)


def _boost(amount):
    def apply(ctx: _BoostContext) -> None:
        ctx.add(amount(ctx) if callable(amount) else amount)
    return apply


def _wave_confluence(ctx: _BoostContext) -> None:
    ctx.add(8)
    ctx.label = f"{ctx.label} + {ctx.waves.wave_count}"


def _impulse(ctx: _BoostContext) -> bool:
    return "IMPULSE" in ctx.waves.wave_count and ctx.detected


# Each boost clamps to the cap as it is applied.
BOOST_RULES = RuleBook([
    Rule(None, lambda c: c.vol_100 > 0.5 and c.detected, then=_boost(2)),
    Rule(None, _impulse, then=_boost(lambda c: c.waves.projection.confidence * 0.15)),
    Rule(None, lambda c: _impulse(c) and len(c.waves.fibonacci_relationships) >= 2, then=_wave_confluence),
    Rule(None, lambda c: len(c.waves.wave_personality) >= 2 and c.detected, then=_boost(5)),
    Rule(None, lambda c: c.waves.alternation and c.waves.equality, then=_boost(6)),
    Rule(None, lambda c: c.smc.trend == "BULLISH" and c.detected, then=_boost(5)),
    Rule(None, lambda c: c.smc.trend == "BEARISH" and c.detected, then=_boost(4)),
    Rule(None, lambda c: c.vol_20 < 0.3 and c.detected, then=_boost(3)),
])


class PatternEngine:
    """Harmonic and chart-structure pattern recognizer.

    Usage:
        engine = PatternEngine()
        result = engine.analyze(history)
        result.label, result.confidence
    """

    def __init__(
        self,
        smc_engine: Optional[SMCEngine] = None,
        elliott_engine: Optional[ElliottWaveEngine] = None,
    ):
        self._smc = smc_engine or SMCEngine()
        self._elliott = elliott_engine or ElliottWaveEngine()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def analyze(self, history: Sequence[float], now: Optional[datetime] = None) -> PatternResult:
        if len(history) < PATTERN_MIN_HISTORY:
            return PatternResult()

        h = as_prices(history)
        smc = self._smc.analyze(h, now=now)
        waves = self._elliott.analyze(h)

        label, confidence = self.detect_harmonic(h)
        structure = self.detect_chart_structure(h)
        if structure is not None:
            label, confidence = structure

        ctx = _BoostContext(
            label=label,
            confidence=confidence,
            waves=waves,
            smc=smc,
            vol_100=calculate_volatility(h[-100:]),
            vol_20=calculate_volatility(h[-20:]),
        )
        BOOST_RULES.evaluate(ctx)

        final_label = ctx.label
        if final_label == DEFAULT_LABEL:
            final_label = "INSTITUTIONAL ASCENT" if h[-1] > h[0] else "INSTITUTIONAL DESCENT"
        # under 100 bars the Elliott placeholder tags the label [UNKNOWN]
        if waves.wave_count != "DEVELOPING" and waves.degree != "MINUTE" and ctx.confidence > 85:
            final_label = f"{final_label} [{waves.degree}]"

        confidence = max(0.0, min(CONFIDENCE_CAP, ctx.confidence))
        log.debug("pattern_engine.analyzed", label=final_label, confidence=round(confidence, 2))
        return PatternResult(label=final_label, confidence=confidence)

    def detect_harmonic(self, h: np.ndarray) -> tuple[str, float]:
        """First matching harmonic as (label, confidence), else the structural default."""
        outcome = HARMONIC_RULES.evaluate(HarmonicLegs.from_series(h))
        if outcome.fired:
            return outcome.labels[0], outcome.score
        return DEFAULT_LABEL, DEFAULT_CONFIDENCE

    def detect_chart_structure(self, h: np.ndarray) -> Optional[tuple[str, float]]:
        """Latest matching swing structure, or None."""
        peaks, troughs = find_swings(h, SWING_ORDER)
        peak_values = [v for _, v in peaks]
        trough_values = [v for _, v in troughs]

        found: Optional[tuple[str, float]] = None
        for detector in (
            self._detect_three_drives,
            self._detect_wolfe_wave,
            self._detect_elliott_impulse,
            self._detect_head_and_shoulders,
            self._detect_inverse_head_and_shoulders,
        ):
            match = detector(peak_values, trough_values)
            if match is not None:
                found = match
        return found

    # ──────────────────────────────────────────
    # Chart Pattern Detection Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _detect_three_drives(peaks: list[float], troughs: list[float]) -> Optional[tuple[str, float]]:
        """Three equal drives over the last three peaks (or troughs)."""
        if len(peaks) >= 3:
            drives = peaks[-3:]
        elif len(troughs) >= 3:
            drives = troughs[-3:]
        else:
            return None
        first_leg = abs(drives[1] - drives[0])
        second_leg = abs(drives[2] - drives[1])
        if first_leg and abs(first_leg - second_leg) / first_leg < DRIVE_TOLERANCE:
            return "THREE DRIVES", 93.0
        return None

    @staticmethod
    def _detect_wolfe_wave(peaks: list[float], troughs: list[float]) -> Optional[tuple[str, float]]:
        if len(peaks) < 5 or len(troughs) < 3:
            return None
        recent_peaks = peaks[-5:]
        recent_troughs = troughs[-3:]
        descending_peaks = recent_peaks[2] < recent_peaks[1] < recent_peaks[0]
        descending_troughs = recent_troughs[1] < recent_troughs[0]
        if descending_peaks or descending_troughs:
            return "WOLFE WAVE", 94.0
        return None

    @staticmethod
    def _detect_elliott_impulse(peaks: list[float], troughs: list[float]) -> Optional[tuple[str, float]]:
        """Exactly five peaks and four troughs with wave 3 not the shortest."""
        if len(peaks) != 5 or len(troughs) != 4:
            return None
        wave1 = peaks[0] - troughs[0]
        wave3 = peaks[2] - troughs[1]
        wave5 = peaks[4] - troughs[3]
        if wave3 >= wave1 and wave3 >= wave5:
            return "ELLIOTT IMPULSE WAVE", 91.0
        return None

    @staticmethod
    def _detect_head_and_shoulders(peaks: list[float], troughs: list[float]) -> Optional[tuple[str, float]]:
        """Head & Shoulders: middle peak highest, shoulders within 5%."""
        if len(peaks) < 3:
            return None
        ls, head, rs = peaks[-3:]
        if head > ls and head > rs and abs(ls - rs) / pad_zero(ls) < SHOULDER_TOLERANCE:
            return "HEAD & SHOULDERS", 90.0
        return None

    @staticmethod
    def _detect_inverse_head_and_shoulders(peaks: list[float], troughs: list[float]) -> Optional[tuple[str, float]]:
        if len(troughs) < 3:
            return None
        ls, head, rs = troughs[-3:]
        if head < ls and head < rs and abs(ls - rs) / pad_zero(ls) < SHOULDER_TOLERANCE:
            return "INVERSE HEAD & SHOULDERS", 90.0
        return None
