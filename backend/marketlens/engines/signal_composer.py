"""
MarketLens — Signal Composer

Turns one price buffer into a directional trade signal.

The buffer is sliced into four synthetic timeframes (there is no separate
multi-timeframe feed, only different-length slices of the same history):

  M5   last 30 bars    weight 1
  M15  last 60 bars    weight 1.5
  H1   last 240 bars   weight 2
  H4   full history    weight 3

Each window votes LONG/SHORT on eight directional reads; the weighted winner
must hold at least 55% of the vote. Confidence is a vote-share base (at most
60) scaled by a multiplier accumulated from the H1 analysis, and signals
under 70% are discarded. Entry/TP/SL come from a synthetic ATR proxy of 2%
of the full-history range at a fixed 3:1 reward:risk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

import structlog

from marketlens.config import Settings, get_settings
from marketlens.engines.elliott_engine import ElliottWaveEngine
from marketlens.engines.indicators import (
    as_prices,
    bar_pressure,
    calculate_technical_strength,
    volume_ratio,
)
from marketlens.engines.manipulation_engine import ManipulationEngine
from marketlens.engines.pattern_engine import PatternEngine
from marketlens.engines.rules import Rule, RuleBook
from marketlens.engines.smc_engine import SMCEngine
from marketlens.engines.spike_engine import SpikeEngine
from marketlens.engines.ta_engine import TAEngine
from marketlens.models import (
    ICTResult,
    ManipulationResult,
    PatternResult,
    SMCResult,
    SpikeResult,
    TechnicalAnalysisResult,
    TimeframeRead,
    TradeSignal,
    WaveAnalysis,
)
from marketlens.observability import trace_span

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

# (name, bars or None for the full history, vote weight)
TIMEFRAMES: tuple[tuple[str, Optional[int], float], ...] = (
    ("M5", 30, 1.0),
    ("M15", 60, 1.5),
    ("H1", 240, 2.0),
    ("H4", None, 3.0),
)
PRIMARY_TIMEFRAME = "H1"
CORROBORATING_TIMEFRAME = "H4"

BASE_CONFIDENCE = 60.0
CONFIDENCE_CAP = 99.9
FLOW_BARS = 20

# (minimum confidence, risk multiplier) checked top-down
RISK_TIERS = ((95.0, 0.8), (85.0, 1.0))
DEFAULT_RISK_MULTIPLIER = 1.2
TP1_MULTIPLE = 1.5


def _side(long_when: bool, short_when: bool) -> Optional[str]:
    if long_when:
        return "LONG"
    if short_when:
        return "SHORT"
    return None


@dataclass
class _TimeframeAnalysis:
    name: str
    weight: float
    history: Sequence[float]
    strength: int
    smc: SMCResult
    technicals: TechnicalAnalysisResult
    long_votes: float = 0.0
    short_votes: float = 0.0

    @property
    def ict(self) -> ICTResult:
        return self.smc.ict_concepts or ICTResult()

    def directional_reads(self) -> list[Optional[str]]:
        """LONG/SHORT/None for each of the eight reads; None abstains."""
        ict = self.ict
        ups, downs = bar_pressure(self.history, FLOW_BARS)
        return [
            _side(self.strength > 50, self.strength < 50),
            _side("BULLISH" in self.smc.signal, "BEARISH" in self.smc.signal),
            _side(self.smc.market_structure == "HH/HL", self.smc.market_structure == "LH/LL"),
            _side(self.technicals.macd.trend == "BULLISH", self.technicals.macd.trend == "BEARISH"),
            _side(self.technicals.moving_averages.alignment == "BULLISH",
                  self.technicals.moving_averages.alignment == "BEARISH"),
            _side(ict.session_bias == "BULLISH", ict.session_bias == "BEARISH"),
            _side(ict.institutional_order_flow in ("BUY", "STRONG_BUY"),
                  ict.institutional_order_flow in ("SELL", "STRONG_SELL")),
            _side(ups > downs, downs > ups),
        ]

    def tally(self) -> None:
        reads = self.directional_reads()
        self.long_votes = reads.count("LONG") * self.weight
        self.short_votes = reads.count("SHORT") * self.weight

    @property
    def bias(self) -> str:
        if self.long_votes > self.short_votes:
            return "LONG"
        if self.short_votes > self.long_votes:
            return "SHORT"
        return "NEUTRAL"

    def to_read(self) -> TimeframeRead:
        return TimeframeRead(
            timeframe=self.name,
            bars=len(self.history),
            weight=self.weight,
            strength=self.strength,
            smc_signal=self.smc.signal,
            long_votes=self.long_votes,
            short_votes=self.short_votes,
            bias=self.bias,
        )


@dataclass
class _ConfluenceContext:
    """Primary (H1) analysis plus the cross-timeframe vote, for the multiplier rules."""
    type: str
    entry: float
    smc: SMCResult
    pattern: PatternResult
    waves: WaveAnalysis
    manipulation: ManipulationResult
    spike: SpikeResult
    technicals: TechnicalAnalysisResult
    volume_ratio: float
    corroborating_bias: str
    timeframe_biases: list[str] = field(default_factory=list)

    @property
    def long(self) -> bool:
        return self.type == "LONG"

    @property
    def trend_word(self) -> str:
        return "BULLISH" if self.long else "BEARISH"

    @property
    def ict(self) -> ICTResult:
        return self.smc.ict_concepts or ICTResult()

    def has_factor(self, *needles: str) -> bool:
        return any(n in f for f in self.smc.factors for n in needles)


def _pattern_tier(c: _ConfluenceContext) -> float:
    label, confidence = c.pattern.label, c.pattern.confidence
    if "PRO" in label:
        return 0.42 if confidence >= 98 else 0.35 if confidence >= 95 else 0.30
    if "HARMONIC" in label:
        return 0.38 if confidence >= 97 else 0.28 if confidence >= 94 else 0.25
    return 0.0


def _manipulation_term(c: _ConfluenceContext) -> float:
    if not c.manipulation.detected:
        return 0.18
    return -0.15 if c.manipulation.severity > 4 else -0.08


def _spike_term(c: _ConfluenceContext) -> float:
    return {"EXTREME": 0.45, "CRITICAL": 0.38, "HIGH": 0.28}.get(c.spike.severity, 0.0)


def _spike_aligned(c: _ConfluenceContext) -> bool:
    return c.spike.is_spike and c.spike.direction == ("UP" if c.long else "DOWN")


MULTIPLIER_RULES = RuleBook([
    # ── SMC ──
    Rule(None, lambda c: c.has_factor("CHOCH", "BOS", "SPIKE"), 0.38),
    Rule(None, lambda c: c.has_factor(f"FVG {c.trend_word} FILL"), 0.28),
    Rule(None, lambda c: c.has_factor("ORDER_BLOCK_DETECTED"), 0.42),
    Rule(None, lambda c: c.has_factor("LIQUIDITY_POOL_TARGETED", "SWEPT"), 0.38),
    Rule(None, lambda c: len(c.smc.order_blocks) > 0, 0.25),
    Rule(None, lambda c: len(c.smc.liquidity_zones) >= 3, 0.22),
    Rule(None, lambda c: c.smc.market_structure == ("HH/HL" if c.long else "LH/LL"), 0.35),
    Rule(None, lambda c: c.smc.premium_discount == ("DISCOUNT" if c.long else "PREMIUM"), 0.30),
    Rule(None, lambda c: len(c.smc.bos_choch) > 0, 0.25),
    # ── ICT ──
    Rule(None, lambda c: c.ict.kill_zone != "NONE",
         lambda c: {"NEW_YORK": 0.45, "LONDON": 0.40, "ASIA": 0.30}[c.ict.kill_zone]),
    Rule(None, lambda c: c.ict.ote_zone.in_zone and c.ict.ote_zone.type == c.trend_word, 0.48),
    Rule(None, lambda c: c.ict.power_of_3.phase == "DISTRIBUTION", lambda c: c.ict.power_of_3.confidence * 0.005),
    Rule(None, lambda c: c.ict.power_of_3.phase == "MANIPULATION", 0.25),
    Rule(None, lambda c: c.ict.institutional_order_flow == ("STRONG_BUY" if c.long else "STRONG_SELL"), 0.50),
    Rule(None, lambda c: c.ict.institutional_order_flow == ("BUY" if c.long else "SELL"), 0.30),
    Rule(None, lambda c: len(c.ict.breaker_blocks) > 0, lambda c: min(0.35, len(c.ict.breaker_blocks) * 0.15)),
    Rule(None, lambda c: any(mb.validated for mb in c.ict.mitigation_blocks),
         lambda c: min(0.30, sum(mb.validated for mb in c.ict.mitigation_blocks) * 0.12)),
    Rule(None, lambda c: c.ict.session_bias == c.trend_word, 0.35),
    Rule(None, lambda c: c.ict.optimal_entry.signal != "WAITING", lambda c: c.ict.optimal_entry.confidence / 100 * 0.60),
    # ── Patterns ──
    Rule(None, lambda c: _pattern_tier(c) > 0, _pattern_tier),
    Rule(None, lambda c: "ELLIOTT" in c.pattern.label, 0.22),
    Rule(None, lambda c: "WOLFE" in c.pattern.label, 0.28),
    Rule(None, lambda c: "THREE DRIVES" in c.pattern.label, 0.26),
    Rule(None, lambda c: "DEEP CRAB" in c.pattern.label or "5-0" in c.pattern.label, 0.40),
    # ── Elliott ──
    Rule(None, lambda c: "IMPULSE" in c.waves.wave_count
         and (c.waves.projection.target > c.entry if c.long else c.waves.projection.target < c.entry), 0.25),
    Rule(None, lambda c: len(c.waves.fibonacci_relationships) >= 2, 0.15),
    # ── Manipulation ──
    Rule(None, lambda c: True, _manipulation_term),
    Rule(None, lambda c: c.manipulation.institutional_footprint > 70, 0.18),
    Rule(None, lambda c: 50 < c.manipulation.institutional_footprint <= 70, 0.12),
    # ── Spikes ──
    Rule(None, _spike_aligned, _spike_term),
    Rule(None, lambda c: c.spike.prediction == "IMMINENT", 0.20),
    Rule(None, lambda c: c.spike.prediction == "BUILDING", 0.10),
    # ── Technicals ──
    Rule(None, lambda c: c.technicals.macd.trend == c.trend_word, 0.20),
    Rule(None, lambda c: c.technicals.moving_averages.alignment == c.trend_word, 0.25),
    Rule(None, lambda c: c.technicals.divergence.detected and c.trend_word in c.technicals.divergence.type, 0.28),
    Rule(None, lambda c: c.technicals.bollinger_bands.position == ("OVERSOLD" if c.long else "OVERBOUGHT"), 0.18),
    Rule(None, lambda c: c.technicals.bollinger_bands.squeeze, 0.22),
    Rule(None, lambda c: c.technicals.adx.trend == "STRONG" and c.technicals.adx.direction == c.trend_word, 0.25),
    Rule(None, lambda c: c.technicals.ichimoku.signal == c.trend_word, 0.23),
    Rule(None, lambda c: c.technicals.fibonacci.near_level, 0.20),
    Rule(None, lambda c: c.technicals.stochastic.signal == ("OVERSOLD" if c.long else "OVERBOUGHT"), 0.15),
    Rule(None, lambda c: c.technicals.confluence != 0, lambda c: abs(c.technicals.confluence) * 0.015),
    # ── Volume and cross-timeframe ──
    Rule(None, lambda c: c.volume_ratio > 1.5, 0.15),
    Rule(None, lambda c: 1.2 < c.volume_ratio <= 1.5, 0.08),
    Rule(None, lambda c: c.corroborating_bias == c.type, 0.30),
    Rule(None, lambda c: all(b == c.type for b in c.timeframe_biases), 0.40),
])


def risk_profile(manipulation: ManipulationResult, confidence: float) -> str:
    if manipulation.detected and manipulation.severity > 4:
        return "CRITICAL - TRAP ACTIVE"
    if manipulation.detected and manipulation.severity > 2:
        return "ELEVATED RISK - MONITOR"
    if confidence > 96:
        return "INSTITUTIONAL GRADE ELITE"
    if confidence > 92:
        return "INSTITUTIONAL GRADE"
    if confidence > 85:
        return "HIGH PROBABILITY"
    return "RETAIL CONFLUENCE"


class SignalComposer:
    """Multi-timeframe weighted-vote signal generator.

    Usage:
        composer = SignalComposer()
        signal = composer.compose("R_100", history, now=now)
        if signal is not None: ...
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        smc_engine: Optional[SMCEngine] = None,
        ta_engine: Optional[TAEngine] = None,
    ):
        self.settings = settings or get_settings()
        self._smc = smc_engine or SMCEngine()
        self._ta = ta_engine or TAEngine()
        self._elliott = ElliottWaveEngine()
        self._patterns = PatternEngine(smc_engine=self._smc, elliott_engine=self._elliott)
        self._manipulation = ManipulationEngine()
        self._spikes = SpikeEngine()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def compose(
        self,
        symbol: str,
        history: Sequence[float],
        now: Optional[datetime] = None,
    ) -> Optional[TradeSignal]:
        """Compose a signal for one symbol, or None when there is no qualifying call."""
        if len(history) < self.settings.signal_min_history:
            return None

        now = now or datetime.now(timezone.utc)
        h = as_prices(history)

        with trace_span("signal_composer.compose", metadata={"symbol": symbol}, tags=["signals"]):
            frames = [self._analyze_timeframe(symbol, name, bars, weight, h, now) for name, bars, weight in TIMEFRAMES]
            long_votes = sum(f.long_votes for f in frames)
            short_votes = sum(f.short_votes for f in frames)
            total = long_votes + short_votes

            if total == 0 or long_votes == short_votes:
                log.debug("signal_composer.no_direction", symbol=symbol, long=long_votes, short=short_votes)
                return None

            direction = "LONG" if long_votes > short_votes else "SHORT"
            share = max(long_votes, short_votes) / total
            if share < self.settings.signal_min_vote_share:
                log.debug("signal_composer.split_vote", symbol=symbol, share=round(share, 3))
                return None

            by_name = {f.name: f for f in frames}
            primary = by_name[PRIMARY_TIMEFRAME]
            entry = float(h[-1])
            ctx = _ConfluenceContext(
                type=direction,
                entry=entry,
                smc=primary.smc,
                pattern=self._patterns.analyze(primary.history, now=now),
                waves=self._elliott.analyze(primary.history),
                manipulation=self._manipulation.analyze(primary.history),
                spike=self._spikes.analyze(primary.history, symbol=symbol),
                technicals=primary.technicals,
                volume_ratio=volume_ratio(primary.history),
                corroborating_bias=by_name[CORROBORATING_TIMEFRAME].bias,
                timeframe_biases=[f.bias for f in frames],
            )
            multiplier = 1.0 + MULTIPLIER_RULES.evaluate(ctx).score
            confidence = min(CONFIDENCE_CAP, BASE_CONFIDENCE * share * multiplier)

            if confidence < self.settings.signal_min_confidence:
                log.debug("signal_composer.low_confidence", symbol=symbol, confidence=round(confidence, 2))
                return None

            risk_multiplier = next(
                (m for threshold, m in RISK_TIERS if confidence > threshold),
                DEFAULT_RISK_MULTIPLIER,
            )
            risk = float(h.max() - h.min()) * self.settings.signal_range_fraction * risk_multiplier
            sign = 1 if direction == "LONG" else -1
            reward_risk = self.settings.signal_reward_risk

            signal = TradeSignal(
                symbol=symbol,
                type=direction,
                confidence=confidence,
                entry=entry,
                tp1=entry + sign * risk * TP1_MULTIPLE,
                tp2=entry + sign * risk * reward_risk,
                sl=entry - sign * risk,
                risk_reward=reward_risk,
                vote_share=share,
                long_votes=long_votes,
                short_votes=short_votes,
                timeframes=[f.to_read() for f in frames],
                reasons=self._reasons(ctx, frames, share, primary.strength),
                risk_profile=risk_profile(ctx.manipulation, confidence),
                generated_at=now,
            )

        log.info(
            "signal_composer.signal",
            symbol=symbol,
            type=direction,
            confidence=round(confidence, 2),
            vote_share=round(share, 3),
        )
        return signal

    def compose_many(
        self,
        histories: Mapping[str, Sequence[float]],
        now: Optional[datetime] = None,
    ) -> list[TradeSignal]:
        """Signals for every symbol that qualifies, highest confidence first."""
        now = now or datetime.now(timezone.utc)
        signals = [
            signal
            for symbol, history in histories.items()
            if (signal := self.compose(symbol, history, now=now)) is not None
        ]
        return sorted(signals, key=lambda s: s.confidence, reverse=True)

    # ──────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────

    def _analyze_timeframe(
        self,
        symbol: str,
        name: str,
        bars: Optional[int],
        weight: float,
        h,
        now: datetime,
    ) -> _TimeframeAnalysis:
        window = h if bars is None else h[-bars:]
        frame = _TimeframeAnalysis(
            name=name,
            weight=weight,
            history=window,
            strength=calculate_technical_strength(window),
            smc=self._smc.analyze(window, symbol=symbol, now=now),
            technicals=self._ta.analyze(window),
        )
        frame.tally()
        return frame

    @staticmethod
    def _reasons(
        ctx: _ConfluenceContext,
        frames: list[_TimeframeAnalysis],
        share: float,
        strength: int,
    ) -> list[str]:
        smc, ict = ctx.smc, ctx.ict
        if all(f.bias == ctx.type for f in frames):
            alignment = "PERFECT CONFLUENCE"
        elif share > 0.75:
            alignment = "STRONG CONFLUENCE"
        else:
            alignment = "MODERATE CONFLUENCE"

        lines: list[Optional[str]] = [
            "Multi-Timeframe Analysis: M5/M15/H1/H4 Confluence",
            f"Vote Share: {share * 100:.0f}% {ctx.type}",
            f"Primary Signal: {smc.signal} (H1 Timeframe)",
            f"Timeframe Alignment: {alignment}",
            f"Pattern Logic: {ctx.pattern.label} ({ctx.pattern.confidence:.1f}%)",
            f"Network Intensity: {strength}% Core Delta",
            *smc.factors[:2],
            f"Market Structure: {smc.market_structure}" if smc.market_structure != "RANGING" else None,
            f"Price Zone: {smc.premium_discount}" if smc.premium_discount != "EQUILIBRIUM" else None,
            f"Order Blocks: {len(smc.order_blocks)} Active Zones" if smc.order_blocks else None,
            f"FVG: {len(smc.fair_value_gaps)} Imbalances" if smc.fair_value_gaps else None,
            smc.bos_choch[0] if smc.bos_choch else None,
            f"⚡ ICT Kill Zone: {ict.kill_zone} ({ict.kill_zone_strength:.0f}% Active)"
            if ict.kill_zone != "NONE" else None,
            f"🎯 OTE Zone: {ict.ote_zone.type} (0.62-0.79 Fib)" if ict.ote_zone.in_zone else None,
            f"📦 Power of 3: {ict.power_of_3.phase} ({ict.power_of_3.confidence:.0f}%)"
            if ict.power_of_3.phase != "NONE" else None,
            f"💰 Institutional Flow: {ict.institutional_order_flow}"
            if ict.institutional_order_flow != "NEUTRAL" else None,
            f"🎯 ICT Entry: {ict.optimal_entry.signal} ({ict.optimal_entry.confidence:.0f}%)"
            if ict.optimal_entry.signal != "WAITING" else None,
            f"📊 Session Bias: {ict.session_bias}" if ict.session_bias != "NEUTRAL" else None,
            f"Elliott: {ctx.waves.wave_count} [{ctx.waves.degree}]" if "IMPULSE" in ctx.waves.wave_count else None,
            *ctx.technicals.signals[:2],
            f"Trap Protocol: {ctx.manipulation.type} [{ctx.manipulation.severity}/5]"
            if ctx.manipulation.detected else "Integrity: HIGH-FIDELITY",
            f"Spike Alert: {ctx.spike.severity} {ctx.spike.direction} ({ctx.spike.probability:.1f}%)"
            if ctx.spike.is_spike else None,
            *(f"{f.name}: {f.bias} ({f.strength}%)" for f in frames),
        ]
        return [line for line in lines if line]
