"""
MarketLens — Market Scanner

Two ranked views over a set of symbols:

  scan       per-symbol read of the H1 window (last 240 bars) with an
             accuracy score built on the SMC accuracy
  deep_scan  full-history threat ranking (spikes, structure, divergence,
             impulse waves), highest threat first
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

import structlog

from marketlens.config import Settings, get_settings
from marketlens.engines.elliott_engine import ElliottWaveEngine
from marketlens.engines.indicators import (
    as_prices,
    bar_pressure,
    calculate_technical_strength,
    calculate_volatility,
    volume_ratio,
)
from marketlens.engines.manipulation_engine import ManipulationEngine
from marketlens.engines.pattern_engine import PatternEngine
from marketlens.engines.rules import Rule, RuleBook
from marketlens.engines.smc_engine import SMCEngine
from marketlens.engines.spike_engine import SpikeEngine
from marketlens.engines.ta_engine import TAEngine
from marketlens.models import (
    DeepScanResult,
    ManipulationResult,
    PatternResult,
    ScanResult,
    SMCResult,
    SpikeResult,
    TechnicalAnalysisResult,
    WaveAnalysis,
)
from marketlens.observability import traced

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

SCAN_WINDOW = 240
ACCURACY_CAP = 99.9
THREAT_CAP = 100
FLOW_STRENGTH_PER_BAR = 5

PRIORITY_TIERS = ((50, "HIGH"), (25, "MEDIUM"))


@dataclass
class _ScanContext:
    strength: int
    pattern: PatternResult
    manipulation: ManipulationResult
    spike: SpikeResult
    technicals: TechnicalAnalysisResult
    volume_ratio: float
    order_flow: str


ACCURACY_RULES = RuleBook([
    Rule(None, lambda c: not c.manipulation.detected, 4),
    Rule(None, lambda c: c.pattern.confidence > 90, 4),
    Rule(None, lambda c: abs(c.strength - 50) > 35, 2),
    Rule(None, lambda c: c.spike.probability > 70, 3),
    Rule(None, lambda c: c.technicals.divergence.detected, 5),
    Rule(None, lambda c: c.technicals.moving_averages.alignment != "MIXED", 3),
    Rule(None, lambda c: c.volume_ratio > 1.5, 3),
    Rule(None, lambda c: (c.order_flow == "BULLISH") == (c.strength > 50), 2),
])


@dataclass
class _ThreatContext:
    smc: SMCResult
    spike: SpikeResult
    technicals: TechnicalAnalysisResult
    waves: WaveAnalysis


THREAT_RULES = RuleBook([
    Rule("EXTREME SPIKE", lambda c: c.spike.severity == "EXTREME", 40),
    Rule("CRITICAL SPIKE", lambda c: c.spike.severity == "CRITICAL", 30),
    Rule("SPIKE IMMINENT", lambda c: c.spike.prediction == "IMMINENT", 25),
    Rule("STRUCTURE SHIFT", lambda c: c.smc.market_structure != "RANGING", 15),
    Rule("DIVERGENCE", lambda c: c.technicals.divergence.detected, 20),
    Rule("IMPULSE WAVE", lambda c: "IMPULSE" in c.waves.wave_count, 15),
])


def classify_priority(threat_level: int) -> str:
    for threshold, priority in PRIORITY_TIERS:
        if threat_level > threshold:
            return priority
    return "LOW"


class ScannerEngine:
    """Market scanner and control-center threat ranking.

    Usage:
        scanner = ScannerEngine()
        row = scanner.scan("R_100", history)
        ranking = scanner.deep_scan(store.snapshot())
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._smc = SMCEngine()
        self._elliott = ElliottWaveEngine()
        self._patterns = PatternEngine(smc_engine=self._smc, elliott_engine=self._elliott)
        self._manipulation = ManipulationEngine()
        self._spikes = SpikeEngine()
        self._ta = TAEngine()

    def scan(
        self,
        symbol: str,
        history: Sequence[float],
        now: Optional[datetime] = None,
    ) -> Optional[ScanResult]:
        if len(history) < self.settings.scanner_min_history:
            return None

        now = now or datetime.now(timezone.utc)
        window = as_prices(history)[-SCAN_WINDOW:]

        smc = self._smc.analyze(window, symbol=symbol, now=now)
        ups, downs = bar_pressure(window)
        ctx = _ScanContext(
            strength=calculate_technical_strength(window),
            pattern=self._patterns.analyze(window, now=now),
            manipulation=self._manipulation.analyze(window),
            spike=self._spikes.analyze(window, symbol=symbol),
            technicals=self._ta.analyze(window),
            volume_ratio=volume_ratio(window),
            order_flow="BULLISH" if ups > downs else "BEARISH",
        )
        accuracy = min(ACCURACY_CAP, smc.accuracy + ACCURACY_RULES.evaluate(ctx).score)

        return ScanResult(
            symbol=symbol,
            price=float(window[-1]),
            volatility=calculate_volatility(window),
            pattern=ctx.pattern.label,
            pattern_confidence=ctx.pattern.confidence,
            manipulation=ctx.manipulation,
            tech_strength=ctx.strength,
            smc=smc,
            spike=ctx.spike,
            technicals=ctx.technicals,
            accuracy=accuracy,
            volume_ratio=round(ctx.volume_ratio * 100),
            order_flow=ctx.order_flow,
            order_flow_strength=abs(ups - downs) * FLOW_STRENGTH_PER_BAR,
        )

    @traced("scanner_engine.scan_many", tags=["scanner"])
    def scan_many(
        self,
        histories: Mapping[str, Sequence[float]],
        now: Optional[datetime] = None,
    ) -> list[ScanResult]:
        """Scan rows for every symbol with enough history, best accuracy first."""
        now = now or datetime.now(timezone.utc)
        rows = [
            row
            for symbol, history in histories.items()
            if (row := self.scan(symbol, history, now=now)) is not None
        ]
        return sorted(rows, key=lambda r: r.accuracy, reverse=True)

    @traced("scanner_engine.deep_scan", tags=["scanner"])
    def deep_scan(
        self,
        histories: Mapping[str, Sequence[float]],
        now: Optional[datetime] = None,
    ) -> list[DeepScanResult]:
        """Threat-ranked read of every symbol's full history."""
        now = now or datetime.now(timezone.utc)
        results: list[DeepScanResult] = []

        for symbol, history in histories.items():
            if len(history) < self.settings.scanner_min_history:
                continue
            ctx = _ThreatContext(
                smc=self._smc.analyze(history, symbol=symbol, now=now),
                spike=self._spikes.analyze(history, symbol=symbol),
                technicals=self._ta.analyze(history),
                waves=self._elliott.analyze(history),
            )
            outcome = THREAT_RULES.evaluate(ctx)
            threat_level = min(THREAT_CAP, int(outcome.score))

            results.append(DeepScanResult(
                symbol=symbol,
                price=float(history[-1]),
                pattern=self._patterns.analyze(history, now=now),
                smc=ctx.smc,
                spike=ctx.spike,
                technicals=ctx.technicals,
                waves=ctx.waves,
                threat_level=threat_level,
                priority=classify_priority(threat_level),
            ))
            if outcome.labels:
                log.debug("scanner_engine.threat", symbol=symbol, threat_level=threat_level, reasons=outcome.labels)

        results.sort(key=lambda r: r.threat_level, reverse=True)
        return results
