"""
MarketLens — ICT Overlay Engine

Inner Circle Trader concepts layered on top of the SMC read:

  Kill zones       London / New York / Asia session windows (UTC hour)
  OTE              0.62-0.79 retracement of the last 30 bars
  Breaker blocks   levels broken by >0.5% and reclaimed 5-10 bars later
  Mitigation       strong-move origins, validated when revisited
  Power of 3       accumulation → manipulation → distribution
  Order flow       buy/sell pressure with a large-move signature
  Optimal entry    OTE + kill zone (+ distribution) confluence
  Session bias     weighted vote across the above

The current time is an explicit parameter. When omitted the UTC wall clock
is read, which makes kill-zone output time-of-day dependent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np
import structlog

from marketlens.engines.indicators import as_prices, calculate_volatility, pad_zero
from marketlens.engines.rules import Rule, RuleBook
from marketlens.models import (
    BreakerBlock,
    ICTResult,
    MitigationBlock,
    OptimalEntry,
    OTEZone,
    PowerOf3,
)

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

ICT_MIN_HISTORY = 50

# (zone, start hour inclusive, end hour exclusive, strength, display name)
KILL_ZONES = (
    ("LONDON", 7, 10, 95.0, "LONDON"),
    ("NEW_YORK", 12, 15, 98.0, "NEW YORK"),
    ("ASIA", 1, 5, 85.0, "ASIA"),
)

OTE_WINDOW = 30
OTE_SHALLOW = 0.62
OTE_MID = 0.705
OTE_DEEP = 0.79

BREAKER_START = 30
BREAKER_BREAK_PCT = 0.005
NEAR_LEVEL_PCT = 0.005

MITIGATION_START = 20
STRONG_MOVE_RANGE_PCT = 0.015
REVISIT_PCT = 0.003

FLOW_WINDOW = 40
LARGE_MOVE_RANGE_PCT = 0.01
FLOW_PADDING = 0.0001
SIGNATURE_MIN = 3

SESSION_BIAS_THRESHOLD = 4


@dataclass
class _ICTContext:
    history: np.ndarray
    last: float
    ote_type: str
    vol30: float
    vol10: float
    compression: Optional[float]
    sudden_reversal: bool
    directional: bool
    flow_ratio: float
    signature: int
    near_bullish_breakers: int
    near_bearish_breakers: int
    phase: str = "NONE"
    phase_confidence: float = 0.0
    flow: str = "NEUTRAL"


def _set_phase(phase: str, confidence: float):
    def apply(ctx: _ICTContext) -> None:
        ctx.phase = phase
        ctx.phase_confidence = confidence
    return apply


def _set_flow(flow: str):
    def apply(ctx: _ICTContext) -> None:
        ctx.flow = flow
    return apply


# Later phases override earlier ones; every phase that fires is reported.
POWER_OF_3_RULES = RuleBook([
    Rule(
        "📦 ACCUMULATION PHASE (Power of 3)",
        lambda c: c.vol30 < 0.3 and c.vol10 < 0.25
        and c.compression is not None and c.compression < 0.15,
        then=_set_phase("ACCUMULATION", 85.0),
    ),
    Rule(
        "🎭 MANIPULATION PHASE (Liquidity Grab)",
        lambda c: c.sudden_reversal and c.vol10 > c.vol30 * 1.5,
        then=_set_phase("MANIPULATION", 90.0),
    ),
    Rule(
        "🚀 DISTRIBUTION PHASE (Institutional Move)",
        lambda c: c.vol10 > c.vol30 * 2 and not c.sudden_reversal and c.directional,
        then=_set_phase("DISTRIBUTION", 88.0),
    ),
])

ORDER_FLOW_RULES = RuleBook([
    Rule("💰 STRONG INSTITUTIONAL BUYING",
         lambda c: c.flow_ratio > 1.8 and c.signature >= SIGNATURE_MIN,
         then=_set_flow("STRONG_BUY")),
    Rule("📈 INSTITUTIONAL BUYING", lambda c: c.flow_ratio > 1.3, then=_set_flow("BUY")),
    Rule("💸 STRONG INSTITUTIONAL SELLING",
         lambda c: c.flow_ratio < 0.55 and c.signature <= -SIGNATURE_MIN,
         then=_set_flow("STRONG_SELL")),
    Rule("📉 INSTITUTIONAL SELLING", lambda c: c.flow_ratio < 0.77, then=_set_flow("SELL")),
], first_match=True)

SESSION_BIAS_RULES = RuleBook([
    Rule(None, lambda c: c.ote_type == "BULLISH", 2),
    Rule(None, lambda c: c.ote_type == "BEARISH", -2),
    Rule(None, lambda c: c.flow in ("STRONG_BUY", "BUY"), 3),
    Rule(None, lambda c: c.flow in ("STRONG_SELL", "SELL"), -3),
    Rule(None, lambda c: c.phase == "DISTRIBUTION" and c.last > c.history[-20], 2),
    Rule(None, lambda c: c.phase == "DISTRIBUTION" and c.last < c.history[-20], -2),
    Rule(None, lambda c: c.near_bullish_breakers > 0, 1),
    Rule(None, lambda c: c.near_bearish_breakers > 0, -1),
])


def utc_hour(now: Optional[datetime] = None) -> int:
    """UTC hour of ``now`` (naive values are taken as UTC); wall clock when None."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).hour


class ICTEngine:
    """ICT overlay analysis.

    Usage:
        engine = ICTEngine()
        ict = engine.analyze(history, now=datetime(2024, 1, 2, 13, tzinfo=timezone.utc))
    """

    def analyze(
        self,
        history: Sequence[float],
        symbol: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ICTResult:
        if len(history) < ICT_MIN_HISTORY:
            return ICTResult()

        h = as_prices(history)
        last = float(h[-1])
        hi = float(h.max())
        lo = float(h.min())
        rng = hi - lo
        factors: list[str] = []

        # ── Kill zone ──
        kill_zone, kill_zone_strength, zone_name = self.kill_zone(now)
        if kill_zone != "NONE":
            factors.append(f"🎯 {zone_name} KILL ZONE ACTIVE")

        # ── OTE ──
        ote = self._ote_zone(h, last)
        if ote.in_zone:
            factors.append(f"📍 OTE {ote.type} ZONE (0.62-0.79)")

        # ── Breaker blocks ──
        breakers = self._breaker_blocks(h, hi, lo, rng)
        near_bull = sum(
            1 for b in breakers
            if b.type == "BULLISH" and abs(last - b.price) / pad_zero(last) < NEAR_LEVEL_PCT
        )
        near_bear = sum(
            1 for b in breakers
            if b.type == "BEARISH" and abs(last - b.price) / pad_zero(last) < NEAR_LEVEL_PCT
        )
        if near_bull:
            factors.append(f"⚡ BULLISH BREAKER BLOCK ({near_bull})")
        if near_bear:
            factors.append(f"⚡ BEARISH BREAKER BLOCK ({near_bear})")

        # ── Mitigation blocks ──
        mitigation = self._mitigation_blocks(h, rng)
        validated = sum(1 for m in mitigation if m.validated)
        if validated:
            factors.append(f"🔄 MITIGATION BLOCKS ({validated})")

        # ── Power of 3 + order flow ──
        recent10 = h[-10:]
        last5 = h[-5:]
        steps = np.diff(recent10)
        flow_ratio, signature = self._order_flow(h[-FLOW_WINDOW:], rng)

        ctx = _ICTContext(
            history=h,
            last=last,
            ote_type=ote.type,
            vol30=calculate_volatility(h[-30:]),
            vol10=calculate_volatility(recent10),
            compression=(float(recent10.max() - recent10.min()) / rng) if rng > 0 else None,
            sudden_reversal=bool(np.any(np.abs(np.diff(last5)) / pad_zero(last5[:-1]) > 0.01)),
            directional=bool(np.all(steps > 0) or np.all(steps < 0)),
            flow_ratio=flow_ratio,
            signature=signature,
            near_bullish_breakers=near_bull,
            near_bearish_breakers=near_bear,
        )
        factors.extend(POWER_OF_3_RULES.evaluate(ctx).labels)
        factors.extend(ORDER_FLOW_RULES.evaluate(ctx).labels)

        # ── Optimal entry ──
        optimal_entry = OptimalEntry()
        if ote.in_zone and kill_zone_strength > 0:
            if ctx.phase == "DISTRIBUTION":
                optimal_entry = OptimalEntry(
                    signal=f"OPTIMAL {ote.type} ENTRY",
                    confidence=92 + kill_zone_strength * 0.05,
                    zones=[ote.level],
                )
                factors.append(f"🎯 OPTIMAL {ote.type} ENTRY SETUP")
            elif kill_zone_strength >= 90:
                optimal_entry = OptimalEntry(
                    signal=f"{ote.type} ENTRY ZONE",
                    confidence=85.0,
                    zones=[ote.level],
                )

        # ── Session bias ──
        bias_score = SESSION_BIAS_RULES.evaluate(ctx).score
        session_bias = "NEUTRAL"
        if bias_score >= SESSION_BIAS_THRESHOLD:
            session_bias = "BULLISH"
            factors.append("🟢 BULLISH SESSION BIAS")
        elif bias_score <= -SESSION_BIAS_THRESHOLD:
            session_bias = "BEARISH"
            factors.append("🔴 BEARISH SESSION BIAS")

        log.debug(
            "ict_engine.analyzed",
            symbol=symbol,
            kill_zone=kill_zone,
            phase=ctx.phase,
            flow=ctx.flow,
            bias=session_bias,
        )

        return ICTResult(
            kill_zone=kill_zone,
            kill_zone_strength=kill_zone_strength,
            ote_zone=ote,
            breaker_blocks=breakers[-3:],
            mitigation_blocks=mitigation[-3:],
            power_of_3=PowerOf3(phase=ctx.phase, confidence=ctx.phase_confidence),
            institutional_order_flow=ctx.flow,
            optimal_entry=optimal_entry,
            session_bias=session_bias,
            ict_factors=factors,
        )

    # ──────────────────────────────────────────
    # Components
    # ──────────────────────────────────────────

    @staticmethod
    def kill_zone(now: Optional[datetime] = None) -> tuple[str, float, str]:
        """(zone, strength, display name) for the UTC hour of ``now``."""
        hour = utc_hour(now)
        for zone, start, end, strength, name in KILL_ZONES:
            if start <= hour < end:
                return zone, strength, name
        return "NONE", 0.0, ""

    @staticmethod
    def _ote_zone(h: np.ndarray, last: float) -> OTEZone:
        window = h[-OTE_WINDOW:]
        recent_high = float(window.max())
        recent_low = float(window.min())
        recent_range = recent_high - recent_low
        mid = (recent_high + recent_low) / 2

        shallow = recent_high - recent_range * OTE_SHALLOW
        deep = recent_high - recent_range * OTE_DEEP
        if deep <= last <= shallow and last < mid:
            return OTEZone(in_zone=True, level=recent_high - recent_range * OTE_MID, type="BULLISH")

        shallow = recent_low + recent_range * OTE_SHALLOW
        deep = recent_low + recent_range * OTE_DEEP
        if shallow <= last <= deep and last > mid:
            return OTEZone(in_zone=True, level=recent_low + recent_range * OTE_MID, type="BEARISH")

        return OTEZone()

    @staticmethod
    def _breaker_blocks(h: np.ndarray, hi: float, lo: float, rng: float) -> list[BreakerBlock]:
        blocks: list[BreakerBlock] = []
        for i in range(BREAKER_START, len(h) - 10):
            candle = float(h[i])
            nxt = h[i + 1]
            follow = h[i + 5:i + 10]

            if nxt < candle * (1 - BREAKER_BREAK_PCT) and np.any(follow > candle):
                strength = min(100.0, (candle - lo) / rng * 100)
                blocks.append(BreakerBlock(type="BULLISH", price=candle, strength=strength))

            if nxt > candle * (1 + BREAKER_BREAK_PCT) and np.any(follow < candle):
                strength = min(100.0, (hi - candle) / rng * 100)
                blocks.append(BreakerBlock(type="BEARISH", price=candle, strength=strength))
        return blocks

    @staticmethod
    def _mitigation_blocks(h: np.ndarray, rng: float) -> list[MitigationBlock]:
        blocks: list[MitigationBlock] = []
        for i in range(MITIGATION_START, len(h) - 5):
            candle = float(h[i])
            if abs(h[i + 1] - candle) <= rng * STRONG_MOVE_RANGE_PCT:
                continue
            revisited = bool(np.any(np.abs(h[i + 2:] - candle) / pad_zero(candle) < REVISIT_PCT))
            side = "BULLISH" if h[i + 1] > candle else "BEARISH"
            blocks.append(MitigationBlock(type=side, price=candle, validated=revisited))
        return blocks

    @staticmethod
    def _order_flow(window: np.ndarray, rng: float) -> tuple[float, int]:
        """(buy/sell pressure ratio, signed count of large moves)."""
        buying = selling = 0.0
        signature = 0
        for change in np.diff(window):
            magnitude = abs(float(change))
            large = magnitude > rng * LARGE_MOVE_RANGE_PCT
            if change > 0:
                buying += magnitude
                signature += 1 if large else 0
            else:
                selling += magnitude
                signature -= 1 if large else 0
        return buying / (selling + FLOW_PADDING), signature
