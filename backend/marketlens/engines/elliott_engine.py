"""
MarketLens — Elliott Wave Engine

Counts waves over filtered 10-bar pivots. The last nine pivots are read as
a 5-wave impulse when they alternate type, otherwise as a zigzag, flat or
triangle correction. Projection confidence accumulates from wave-personality
and Fibonacci rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import structlog

from marketlens.engines.indicators import as_prices, pad_zero, safe_ratio
from marketlens.engines.rules import Rule, RuleBook
from marketlens.models import WaveAnalysis, WaveProjection

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

ELLIOTT_MIN_HISTORY = 100
PIVOT_WINDOW = 10
PIVOT_MIN_STRENGTH = 0.008
PIVOTS_READ = 9

GOLDEN = 1.618
IMPULSE_CONFIDENCE = 50.0
PROJECTION_CAP = 99.0

# (minimum range % of last price, degree) checked top-down
DEGREES = ((10.0, "PRIMARY"), (5.0, "INTERMEDIATE"), (2.0, "MINOR"))


@dataclass
class _Pivot:
    index: int
    value: float
    kind: str  # "peak" | "trough"


@dataclass
class _ImpulseContext:
    waves: list[float]
    lens: list[float]
    starts_at_trough: bool
    wave2_retracement: float = 0.0
    wave4_retracement: float = 0.0
    equality: bool = False
    alternation: bool = False
    relationships: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.wave2_retracement = safe_ratio(self.lens[2], self.lens[1])
        self.wave4_retracement = safe_ratio(self.lens[4], self.lens[3])

    @property
    def wave3_extended(self) -> bool:
        return self.lens[3] >= self.lens[1] and self.lens[3] >= self.lens[5]

    @property
    def wave4_non_overlap(self) -> bool:
        wave1, wave4 = self.waves[1], self.waves[4]
        return wave4 > wave1 if self.starts_at_trough else wave4 < wave1


def _relate(label: str):
    def apply(ctx: _ImpulseContext) -> None:
        ctx.relationships.append(label)
    return apply


def _mark_equality(ctx: _ImpulseContext) -> None:
    ctx.equality = True
    ctx.relationships.append("WAVE 5 = WAVE 1 (EQUALITY)")


def _mark_alternation(ctx: _ImpulseContext) -> None:
    ctx.alternation = True


# Personality and Fibonacci rules, interleaved in reading order. Labels are
# wave-personality items; Fibonacci relationships are recorded by ``then``.
IMPULSE_RULES = RuleBook([
    Rule("WAVE 3 EXTENDED (STRONGEST)", lambda c: c.wave3_extended, 25),
    Rule(None, lambda c: c.wave3_extended and abs(safe_ratio(c.lens[3], c.lens[1]) - GOLDEN) < 0.08,
         15, then=_relate("WAVE 3 = 1.618 × WAVE 1")),
    Rule("WAVE 2 VALID RETRACEMENT", lambda c: c.wave2_retracement < 1.0),
    Rule(None, lambda c: 0.5 <= c.wave2_retracement <= 0.618,
         12, then=_relate("WAVE 2 = 0.618 RETRACEMENT")),
    Rule("WAVE 4 NON-OVERLAP", lambda c: c.wave4_non_overlap),
    Rule(None, lambda c: c.wave4_non_overlap and abs(c.wave4_retracement - 0.382) < 0.05,
         12, then=_relate("WAVE 4 = 0.382 RETRACEMENT")),
    Rule(None, lambda c: abs(safe_ratio(c.lens[5], c.lens[1]) - 1.0) < 0.15, 10, then=_mark_equality),
    Rule("ALTERNATION CONFIRMED",
         lambda c: (c.wave2_retracement < 0.5 < c.wave4_retracement)
         or (c.wave4_retracement < 0.5 < c.wave2_retracement),
         8, then=_mark_alternation),
])


def find_pivots(h: np.ndarray) -> list[_Pivot]:
    """Filtered swing pivots in chronological order."""
    pivots: list[_Pivot] = []
    w = PIVOT_WINDOW
    for i in range(w, len(h) - w):
        window = h[i - w:i + w + 1]
        current = float(h[i])
        if current == window.max() and (current - window.min()) / pad_zero(current) > PIVOT_MIN_STRENGTH:
            pivots.append(_Pivot(i, current, "peak"))
        if current == window.min() and (window.max() - current) / pad_zero(current) > PIVOT_MIN_STRENGTH:
            pivots.append(_Pivot(i, current, "trough"))
    return pivots


def classify_degree(h: np.ndarray) -> str:
    range_pct = (float(h.max()) - float(h.min())) / pad_zero(float(h[-1])) * 100
    for threshold, degree in DEGREES:
        if range_pct > threshold:
            return degree
    return "MINUTE"


class ElliottWaveEngine:
    """Elliott wave counter.

    Usage:
        waves = ElliottWaveEngine().analyze(history)
        waves.wave_count, waves.projection.target
    """

    def analyze(self, history: Sequence[float]) -> WaveAnalysis:
        if len(history) < ELLIOTT_MIN_HISTORY:
            return WaveAnalysis()

        h = as_prices(history)
        pivots = find_pivots(h)

        wave_count = "DEVELOPING"
        personality: list[str] = []
        relationships: list[str] = []
        alternation = False
        equality = False
        target = float(h[-1])
        confidence = 0.0

        if len(pivots) >= PIVOTS_READ:
            last9 = pivots[-PIVOTS_READ:]
            impulse = last9[0].kind != last9[1].kind and last9[1].kind != last9[2].kind

            if impulse:
                waves = [p.value for p in last9[:6]]
                lens = [0.0] + [abs(waves[k] - waves[k - 1]) for k in range(1, 6)]
                ctx = _ImpulseContext(
                    waves=waves,
                    lens=lens,
                    starts_at_trough=last9[0].kind == "trough",
                )
                outcome = IMPULSE_RULES.evaluate(ctx)
                personality = outcome.labels
                relationships = ctx.relationships
                confidence = outcome.score
                alternation = ctx.alternation
                equality = ctx.equality

                direction = 1 if waves[1] > waves[0] else -1
                target = (
                    (waves[4] + direction * lens[1])
                    + (waves[4] + direction * lens[1] * GOLDEN)
                    + (waves[0] + direction * lens[3] * GOLDEN)
                ) / 3
                wave_count = "5-WAVE IMPULSE DETECTED" if confidence > IMPULSE_CONFIDENCE else "IMPULSE FORMING"
            else:
                wave_a = abs(last9[1].value - last9[0].value)
                wave_b = abs(last9[2].value - last9[1].value)
                wave_c = abs(last9[3].value - last9[2].value)

                if wave_a and abs(wave_c / wave_a - 1.0) < 0.12:
                    wave_count = "ZIGZAG CORRECTION (ABC)"
                    relationships.append("WAVE C = WAVE A")
                    confidence = 65.0
                # zero wave A (double top/bottom): any B move is an unbounded B/A ratio
                elif (wave_b / wave_a > 0.9) if wave_a else wave_b > 0:
                    wave_count = "FLAT CORRECTION (ABC)"
                    relationships.append("WAVE B = 0.9+ WAVE A")
                    confidence = 60.0
                elif wave_b < wave_a and wave_c < wave_b:
                    wave_count = "TRIANGLE CORRECTION"
                    personality.append("CONTRACTING PATTERN")
                    confidence = 55.0

        degree = classify_degree(h)
        log.debug("elliott_engine.analyzed", wave_count=wave_count, degree=degree, pivots=len(pivots))

        return WaveAnalysis(
            wave_count=wave_count,
            degree=degree,
            wave_personality=personality,
            fibonacci_relationships=relationships,
            projection=WaveProjection(target=target, confidence=min(PROJECTION_CAP, confidence)),
            alternation=alternation,
            equality=equality,
        )
