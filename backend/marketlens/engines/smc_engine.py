"""
MarketLens — Smart Money Concepts Engine

Institutional price-action read of a single history window:

  Order blocks       origins of >1.5%-of-range moves (retested or strong)
  Fair value gaps    3-bar imbalances
  Liquidity          10-bar swing highs/lows, pools and sweeps
  Market structure   HH/HL, LH/LL and change-of-character
  Premium/discount   ±15% of range around equilibrium
  Inducement         fake breakouts near the high
  BOOM/CRASH         synthetic-index accumulation / pre-ignition
  IOF / POC          up/down bar bias and volume-profile magnet

Factors are produced by an ordered rule book, each scored ±1.8 by keyword.
The nested ICT overlay then boosts ``accuracy``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

import numpy as np
import structlog

from marketlens.engines.ict_engine import ICTEngine
from marketlens.engines.indicators import (
    as_prices,
    calculate_technical_strength,
    calculate_volatility,
    find_swings,
    pad_zero,
)
from marketlens.engines.rules import Rule, RuleBook
from marketlens.models import (
    FairValueGap,
    ICTResult,
    LiquidityZone,
    OrderBlock,
    SMCResult,
)

log = structlog.get_logger(__name__)

# ──────────────────────────────────────────────
# Tunable constants
# ──────────────────────────────────────────────

SMC_MIN_HISTORY = 50

OB_START = 20
OB_MOVE_RANGE_PCT = 0.015
OB_STRONG = 3.0
OB_VOLUME_LOOKBACK = 10
OB_VOLUME_MULTIPLIER = 1.5
RETEST_PCT = 0.003
NEAR_LEVEL_PCT = 0.005

FVG_MIN_STEP = 0.002
FVG_RANGE_PCT = 0.008

LIQUIDITY_WINDOW = 10
LIQUIDITY_STRENGTH = 85.0
TOUCH_PCT = 0.002
POOL_APPROACH_PCT = 0.01
POOL_MIN_TOUCHES = 3
POOL_BAND = 0.02

STRUCTURE_BARS = 60
STRUCTURE_WINDOW = 5

PREMIUM_DISCOUNT_BAND = 0.15

POC_BINS = 12

FACTOR_WEIGHT = 1.8
BULLISH_KEYWORDS = ("BULLISH", "DEMAND", "BOOM", "IGNITION", "DISCOUNT", "HH/HL", "BSL")
BEARISH_KEYWORDS = ("BEARISH", "SUPPLY", "CRASH", "PREMIUM", "LH/LL", "SSL")

# (minimum score, signal) checked top-down; bearish thresholds mirror these
SIGNAL_TIERS = ((5.0, "ELITE SMC BULLISH"), (2.5, "SMC BULLISH"))
BEARISH_SIGNAL_TIERS = ((-5.0, "ELITE SMC BEARISH"), (-2.5, "SMC BEARISH"))

BASE_ACCURACY = 85.0
ACCURACY_CAP = 99.9


def factor_weight(factor: str) -> float:
    """+1.8 for bullish-leaning factors, -1.8 for bearish-leaning, else 0."""
    if any(k in factor for k in BULLISH_KEYWORDS):
        return FACTOR_WEIGHT
    if any(k in factor for k in BEARISH_KEYWORDS):
        return -FACTOR_WEIGHT
    return 0.0


def classify_score(score: float) -> str:
    for threshold, signal in SIGNAL_TIERS:
        if score >= threshold:
            return signal
    for threshold, signal in BEARISH_SIGNAL_TIERS:
        if score <= threshold:
            return signal
    return "NEUTRAL"


@dataclass
class _SMCContext:
    symbol: Optional[str]
    last: float
    institutional_ob: bool = False
    near_bullish_ob: int = 0
    near_bearish_ob: int = 0
    in_bullish_fvg: bool = False
    in_bearish_fvg: bool = False
    pool_above: bool = False
    pool_below: bool = False
    ssl_swept: bool = False
    bsl_swept: bool = False
    higher_highs: bool = False
    higher_lows: bool = False
    lower_highs: bool = False
    lower_lows: bool = False
    premium: bool = False
    discount: bool = False
    inducement: bool = False
    boom_accumulation: bool = False
    crash_distribution: bool = False
    pre_ignition: bool = False
    iof_bullish: bool = False
    iof_bearish: bool = False
    poc_magnet: bool = False
    market_structure: str = "RANGING"
    premium_discount: str = "EQUILIBRIUM"
    bos_choch: list[str] = field(default_factory=list)


def _bos(*events: str):
    def apply(ctx: _SMCContext) -> None:
        ctx.bos_choch.extend(events)
    return apply


def _structure(kind: str, *events: str):
    def apply(ctx: _SMCContext) -> None:
        ctx.market_structure = kind
        ctx.bos_choch.extend(events)
    return apply


def _zone(kind: str):
    def apply(ctx: _SMCContext) -> None:
        ctx.premium_discount = kind
    return apply


FACTOR_RULES = RuleBook([
    Rule("ORDER_BLOCK_DETECTED - INSTITUTIONAL", lambda c: c.institutional_ob),
    Rule(lambda c: f"BULLISH OB ZONE ({c.near_bullish_ob})", lambda c: c.near_bullish_ob > 0),
    Rule(lambda c: f"BEARISH OB ZONE ({c.near_bearish_ob})", lambda c: c.near_bearish_ob > 0),
    Rule("FVG BULLISH FILL", lambda c: c.in_bullish_fvg),
    Rule("FVG BEARISH FILL", lambda c: c.in_bearish_fvg),
    Rule("LIQUIDITY_POOL_TARGETED - SSL ABOVE", lambda c: c.pool_above),
    Rule("LIQUIDITY_POOL_TARGETED - BSL BELOW", lambda c: c.pool_below),
    Rule("SSL SWEPT - REVERSAL", lambda c: c.ssl_swept, then=_bos("LIQUIDITY GRAB COMPLETE")),
    Rule("BSL SWEPT - REVERSAL", lambda c: c.bsl_swept, then=_bos("LIQUIDITY GRAB COMPLETE")),
    Rule("BULLISH STRUCTURE (HH/HL)", lambda c: c.higher_highs and c.higher_lows,
         then=_structure("HH/HL", "BOS CONFIRMED")),
    Rule("BEARISH STRUCTURE (LH/LL)", lambda c: c.lower_highs and c.lower_lows,
         then=_structure("LH/LL", "BOS CONFIRMED")),
    Rule("CHOCH DETECTED - BEARISH", lambda c: c.higher_highs and c.lower_lows,
         then=_bos("CHoCH BEARISH")),
    Rule("CHOCH DETECTED - BULLISH", lambda c: c.lower_highs and c.higher_lows,
         then=_bos("CHoCH BULLISH")),
    Rule("PREMIUM ZONE - SELL", lambda c: c.premium, then=_zone("PREMIUM")),
    Rule("DISCOUNT ZONE - BUY", lambda c: c.discount, then=_zone("DISCOUNT")),
    Rule("INDUCEMENT - TRAP", lambda c: c.inducement),
    Rule("BOOM ACCUMULATION (DEEP)", lambda c: c.boom_accumulation),
    Rule("CRASH DISTRIBUTION (DEEP)", lambda c: c.crash_distribution),
    Rule("SPIKE PRE-IGNITION", lambda c: c.pre_ignition),
    Rule("IOF BULLISH BIAS", lambda c: c.iof_bullish),
    Rule("IOF BEARISH BIAS", lambda c: c.iof_bearish),
    Rule("POC MAGNET ACTIVE", lambda c: c.poc_magnet),
])


@dataclass
class _AccuracyContext:
    ict: ICTResult
    trend: str


ICT_ACCURACY_RULES = RuleBook([
    Rule(lambda c: c.ict.ict_factors[:2], lambda c: c.ict.kill_zone_strength > 0,
         lambda c: c.ict.kill_zone_strength * 0.08),
    Rule(None, lambda c: c.ict.ote_zone.in_zone, 6.0),
    Rule(None, lambda c: c.ict.power_of_3.phase != "NONE",
         lambda c: c.ict.power_of_3.confidence * 0.05),
    Rule("ICT ORDER FLOW ALIGNED",
         lambda c: (c.ict.institutional_order_flow == "STRONG_BUY" and c.trend == "BULLISH")
         or (c.ict.institutional_order_flow == "STRONG_SELL" and c.trend == "BEARISH"),
         8.0),
])


class SMCEngine:
    """Smart Money Concepts engine with a nested ICT overlay.

    Usage:
        engine = SMCEngine()
        smc = engine.analyze(history, symbol="BOOM1000", now=now)
    """

    def __init__(self, ict_engine: Optional[ICTEngine] = None):
        self._ict = ict_engine or ICTEngine()

    def analyze(
        self,
        history: Sequence[float],
        symbol: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SMCResult:
        if len(history) < SMC_MIN_HISTORY:
            return SMCResult()

        h = as_prices(history)
        last = float(h[-1])
        prev = float(h[-2])
        hi = float(h.max())
        lo = float(h.min())
        rng = hi - lo
        ctx = _SMCContext(symbol=symbol, last=last)

        # ── Order blocks ──
        order_blocks, ctx.institutional_ob = self._order_blocks(h, rng)
        ctx.near_bullish_ob = sum(
            1 for ob in order_blocks
            if ob.type == "BULLISH" and abs(last - ob.price) / pad_zero(last) < NEAR_LEVEL_PCT
        )
        ctx.near_bearish_ob = sum(
            1 for ob in order_blocks
            if ob.type == "BEARISH" and abs(last - ob.price) / pad_zero(last) < NEAR_LEVEL_PCT
        )

        # ── Fair value gaps ──
        gaps = self._fair_value_gaps(h, rng)
        ctx.in_bullish_fvg = any(g.type == "BULLISH" and g.start <= last <= g.end for g in gaps)
        ctx.in_bearish_fvg = any(g.type == "BEARISH" and g.start <= last <= g.end for g in gaps)

        # ── Liquidity ──
        zones, levels = self._liquidity(h)
        highs = [(p, t) for kind, p, t in levels if kind == "HIGH"][-5:]
        lows = [(p, t) for kind, p, t in levels if kind == "LOW"][-5:]
        ctx.pool_above = any(
            abs(last - p) / pad_zero(p) < POOL_APPROACH_PCT and touches >= POOL_MIN_TOUCHES
            and p * (1 - POOL_BAND) < last < p
            for p, touches in highs
        )
        ctx.pool_below = any(
            abs(last - p) / pad_zero(p) < POOL_APPROACH_PCT and touches >= POOL_MIN_TOUCHES
            and p < last < p * (1 + POOL_BAND)
            for p, touches in lows
        )
        recent_zones = zones[-10:]
        ctx.ssl_swept = any(z.type == "SELL" and last > z.price and prev < z.price for z in recent_zones)
        ctx.bsl_swept = any(z.type == "BUY" and last < z.price and prev > z.price for z in recent_zones)

        # ── Market structure ──
        peaks, troughs = find_swings(h[-STRUCTURE_BARS:], STRUCTURE_WINDOW)
        if len(peaks) >= 2 and len(troughs) >= 2:
            ctx.higher_highs = peaks[-1][1] > peaks[-2][1]
            ctx.higher_lows = troughs[-1][1] > troughs[-2][1]
            ctx.lower_highs = peaks[-1][1] < peaks[-2][1]
            ctx.lower_lows = troughs[-1][1] < troughs[-2][1]

        # ── Premium / discount ──
        equilibrium = (hi + lo) / 2
        ctx.premium = last > equilibrium + rng * PREMIUM_DISCOUNT_BAND
        ctx.discount = last < equilibrium - rng * PREMIUM_DISCOUNT_BAND

        # ── Inducement ──
        recent = h[-20:]
        ctx.inducement = any(
            recent[i - 1] > hi * 0.995 and recent[i] < hi * 0.99
            for i in range(3, len(recent))
        )

        # ── Synthetic index deep scan ──
        if symbol and ("BOOM" in symbol or "CRASH" in symbol):
            self._boom_crash(ctx, h, symbol)

        # ── Institutional order flow ──
        steps = np.diff(h[-40:])
        ups = int(np.sum(steps > 0))
        downs = int(np.sum(steps < 0))
        ctx.iof_bullish = ups > downs * 1.6
        ctx.iof_bearish = not ctx.iof_bullish and downs > ups * 1.6

        # ── Volume profile ──
        ctx.poc_magnet = self._poc_magnet(h, lo, rng, last)

        factors = FACTOR_RULES.evaluate(ctx).labels
        score = sum(factor_weight(f) for f in factors)
        signal = classify_score(score)
        trend = "BULLISH" if score > 0 else "BEARISH" if score < 0 else "NEUTRAL"

        accuracy = min(
            ACCURACY_CAP,
            BASE_ACCURACY + len(factors) * 1.5 + len(order_blocks) * 0.5 + len(gaps) * 0.8,
        )

        # ── ICT integration ──
        ict = self._ict.analyze(h, symbol=symbol, now=now)
        boost = ICT_ACCURACY_RULES.evaluate(_AccuracyContext(ict=ict, trend=trend))
        accuracy = max(0.0, min(ACCURACY_CAP, accuracy + boost.score))
        factors = factors + boost.labels

        log.debug(
            "smc_engine.analyzed",
            symbol=symbol,
            signal=signal,
            score=round(score, 2),
            factors=len(factors),
        )

        return SMCResult(
            signal=signal,
            factors=factors,
            trend=trend,
            accuracy=accuracy,
            order_blocks=order_blocks[-5:],
            fair_value_gaps=gaps[-3:],
            liquidity_zones=zones[-5:],
            market_structure=ctx.market_structure,
            premium_discount=ctx.premium_discount,
            bos_choch=ctx.bos_choch,
            ict_concepts=ict,
        )

    # ──────────────────────────────────────────
    # Components
    # ──────────────────────────────────────────

    @staticmethod
    def _order_blocks(h: np.ndarray, rng: float) -> tuple[list[OrderBlock], bool]:
        """Order blocks plus whether any qualified as institutional."""
        blocks: list[OrderBlock] = []
        institutional = False
        for i in range(OB_START, len(h) - 5):
            candle = float(h[i])
            move = float(h[i + 1] - h[i])
            if move > rng * OB_MOVE_RANGE_PCT:
                side = "BULLISH"
                continuation = bool(np.all(h[i + 1:i + 4] > candle))
            elif move < -rng * OB_MOVE_RANGE_PCT:
                side = "BEARISH"
                continuation = bool(np.all(h[i + 1:i + 4] < candle))
            else:
                continue

            strength = abs(move) / rng * 100
            retest = bool(np.any(np.abs(h[i + 2:] - candle) / pad_zero(candle) < RETEST_PCT))
            if not (retest or strength > OB_STRONG):
                continue

            # Volume proxy: this bar's delta ratio against its trailing average
            trailing = h[i - OB_VOLUME_LOOKBACK:i + 1]
            avg_delta = float(np.mean(np.abs(np.diff(trailing)) / pad_zero(trailing[:-1])))
            high_volume = abs(move) / pad_zero(candle) > avg_delta * OB_VOLUME_MULTIPLIER

            blocks.append(OrderBlock(type=side, price=candle, strength=min(100.0, strength * 10)))
            if high_volume and continuation:
                institutional = True
        return blocks, institutional

    @staticmethod
    def _fair_value_gaps(h: np.ndarray, rng: float) -> list[FairValueGap]:
        gaps: list[FairValueGap] = []
        for i in range(2, len(h)):
            c1, c2, c3 = float(h[i - 2]), float(h[i - 1]), float(h[i])
            if c3 > c1 and c2 > c1 * (1 + FVG_MIN_STEP) and c2 - c1 > rng * FVG_RANGE_PCT:
                gaps.append(FairValueGap(type="BULLISH", start=c1, end=c2))
            if c3 < c1 and c2 < c1 * (1 - FVG_MIN_STEP) and c1 - c2 > rng * FVG_RANGE_PCT:
                gaps.append(FairValueGap(type="BEARISH", start=c2, end=c1))
        return gaps

    @staticmethod
    def _liquidity(h: np.ndarray) -> tuple[list[LiquidityZone], list[tuple[str, float, int]]]:
        """Liquidity zones and (HIGH|LOW, price, touches) levels in bar order."""
        zones: list[LiquidityZone] = []
        levels: list[tuple[str, float, int]] = []
        w = LIQUIDITY_WINDOW
        for i in range(w, len(h) - w):
            window = h[i - w:i + w + 1]
            current = float(h[i])
            if current == window.max():
                zones.append(LiquidityZone(type="SELL", price=current, strength=LIQUIDITY_STRENGTH))
                touches = int(np.sum(np.abs(h - current) / pad_zero(current) < TOUCH_PCT))
                levels.append(("HIGH", current, touches))
            if current == window.min():
                zones.append(LiquidityZone(type="BUY", price=current, strength=LIQUIDITY_STRENGTH))
                touches = int(np.sum(np.abs(h - current) / pad_zero(current) < TOUCH_PCT))
                levels.append(("LOW", current, touches))
        return zones, levels

    @staticmethod
    def _boom_crash(ctx: _SMCContext, h: np.ndarray, symbol: str) -> None:
        consolidation = h[-15:]
        low_vol = calculate_volatility(consolidation) < 0.2
        rsi = calculate_technical_strength(h)
        if "BOOM" in symbol:
            ctx.boom_accumulation = rsi < 30 and low_vol
            ctx.pre_ignition = ctx.last > float(consolidation[:10].max())
        else:
            ctx.crash_distribution = rsi > 70 and low_vol
            ctx.pre_ignition = ctx.last < float(consolidation[:10].min())

    @staticmethod
    def _poc_magnet(h: np.ndarray, lo: float, rng: float, last: float) -> bool:
        if rng <= 0:
            return False
        bin_size = rng / POC_BINS
        profile = [0] * POC_BINS
        for p in h:
            profile[min(POC_BINS - 1, int(math.floor((p - lo) / bin_size)))] += 1
        poc_index = profile.index(max(profile))
        poc_price = lo + poc_index * bin_size + bin_size / 2
        return abs(last - poc_price) < bin_size
