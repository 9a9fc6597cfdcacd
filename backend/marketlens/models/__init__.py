"""
MarketLens — Pydantic Models

All I/O schemas for the application. Engines return these, the signal
composer and scanner consume these, API routes serialize these.

Every engine record is frozen. Attributes are snake_case in Python and
camelCase on the wire (``orderBlocks``, ``killZoneStrength``, ...).
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ──────────────────────────────────────────────
# Vocabulary
# ──────────────────────────────────────────────

Side = Literal["BULLISH", "BEARISH"]
Trend = Literal["BULLISH", "BEARISH", "NEUTRAL"]
Direction = Literal["LONG", "SHORT"]
KillZone = Literal["LONDON", "NEW_YORK", "ASIA", "NONE"]
OrderFlow = Literal["STRONG_BUY", "BUY", "NEUTRAL", "SELL", "STRONG_SELL"]
PowerOf3Phase = Literal["ACCUMULATION", "MANIPULATION", "DISTRIBUTION", "NONE"]
MarketStructure = Literal["HH/HL", "LH/LL", "RANGING"]
PremiumDiscount = Literal["PREMIUM", "DISCOUNT", "EQUILIBRIUM"]
Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL", "EXTREME"]
SpikeDirection = Literal["UP", "DOWN", "NEUTRAL"]
SpikePrediction = Literal["IMMINENT", "BUILDING", "NEUTRAL"]
Priority = Literal["HIGH", "MEDIUM", "LOW"]


class Record(BaseModel):
    """Immutable engine output with camelCase JSON aliases."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ──────────────────────────────────────────────
# Structural Zones
# ──────────────────────────────────────────────

class OrderBlock(Record):
    type: Side
    price: float
    strength: float


class FairValueGap(Record):
    type: Side
    start: float
    end: float


class LiquidityZone(Record):
    type: Literal["BUY", "SELL"]
    price: float
    strength: float


class BreakerBlock(Record):
    type: Side
    price: float
    strength: float


class MitigationBlock(Record):
    type: Side
    price: float
    validated: bool


# ──────────────────────────────────────────────
# ICT / SMC
# ──────────────────────────────────────────────

class OTEZone(Record):
    """Optimal trade entry: 0.62-0.79 retracement of the last 30 bars."""
    in_zone: bool = False
    level: float = 0.0
    type: Literal["BULLISH", "BEARISH", "NONE"] = "NONE"


class PowerOf3(Record):
    phase: PowerOf3Phase = "NONE"
    confidence: float = 0.0


class OptimalEntry(Record):
    signal: str = "WAITING"
    confidence: float = 0.0
    zones: list[float] = []


class ICTResult(Record):
    """Inner Circle Trader overlay."""
    kill_zone: KillZone = "NONE"
    kill_zone_strength: float = 0.0
    ote_zone: OTEZone = OTEZone()
    breaker_blocks: list[BreakerBlock] = []
    mitigation_blocks: list[MitigationBlock] = []
    power_of_3: PowerOf3 = PowerOf3()
    institutional_order_flow: OrderFlow = "NEUTRAL"
    optimal_entry: OptimalEntry = OptimalEntry()
    session_bias: Trend = "NEUTRAL"
    ict_factors: list[str] = []


class SMCResult(Record):
    """Smart Money Concepts read of one history window."""
    signal: str = "SYNCHRONIZING..."
    factors: list[str] = []
    trend: Trend = "NEUTRAL"
    accuracy: float = 0.0
    order_blocks: list[OrderBlock] = []
    fair_value_gaps: list[FairValueGap] = []
    liquidity_zones: list[LiquidityZone] = []
    market_structure: MarketStructure = "RANGING"
    premium_discount: PremiumDiscount = "EQUILIBRIUM"
    bos_choch: list[str] = []
    ict_concepts: Optional[ICTResult] = None


# ──────────────────────────────────────────────
# Waves & Patterns
# ──────────────────────────────────────────────

class WaveProjection(Record):
    target: float = 0.0
    confidence: float = 0.0


class WaveAnalysis(Record):
    wave_count: str = "INSUFFICIENT DATA"
    degree: str = "UNKNOWN"
    wave_personality: list[str] = []
    fibonacci_relationships: list[str] = []
    projection: WaveProjection = WaveProjection()
    alternation: bool = False
    equality: bool = False


class PatternResult(Record):
    label: str = "CALIBRATING..."
    confidence: float = 0.0


# ──────────────────────────────────────────────
# Anomalies
# ──────────────────────────────────────────────

class ManipulationResult(Record):
    detected: bool = False
    type: str = "STABLE"
    severity: int = 0
    indicators: list[str] = []
    institutional_footprint: int = 0


class SpikeResult(Record):
    is_spike: bool = False
    severity: Severity = "LOW"
    direction: SpikeDirection = "NEUTRAL"
    probability: float = 0.0
    indicators: list[str] = []
    prediction: SpikePrediction = "NEUTRAL"
    time_to_spike: Optional[int] = None


# ──────────────────────────────────────────────
# Technical Suite
# ──────────────────────────────────────────────

class MACDReading(Record):
    value: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0
    trend: Trend = "NEUTRAL"


class BollingerReading(Record):
    upper: float = 0.0
    middle: float = 0.0
    lower: float = 0.0
    position: Literal["OVERBOUGHT", "OVERSOLD", "NEUTRAL"] = "NEUTRAL"
    squeeze: bool = False


class MovingAverages(Record):
    ma20: float = 0.0
    ma50: float = 0.0
    ma200: float = 0.0
    alignment: Literal["BULLISH", "BEARISH", "MIXED"] = "MIXED"


class SupportResistance(Record):
    support: float = 0.0
    resistance: float = 0.0
    near_level: bool = False


class Divergence(Record):
    detected: bool = False
    type: str = "NONE"


class StochasticReading(Record):
    k: float = 50.0
    d: float = 50.0
    signal: Literal["OVERBOUGHT", "OVERSOLD", "NEUTRAL"] = "NEUTRAL"


class ATRReading(Record):
    value: float = 0.0
    trend: Literal["EXPANDING", "CONTRACTING", "STABLE"] = "STABLE"


class ADXReading(Record):
    value: float = 0.0
    trend: Literal["STRONG", "WEAK"] = "WEAK"
    direction: Trend = "NEUTRAL"


class IchimokuReading(Record):
    signal: Trend = "NEUTRAL"
    cloud: Literal["ABOVE", "BELOW", "INSIDE"] = "INSIDE"


class FibonacciReading(Record):
    level: str = "EQUILIBRIUM"
    near_level: bool = False


class TechnicalAnalysisResult(Record):
    rsi: int = 50
    macd: MACDReading = MACDReading()
    bollinger_bands: BollingerReading = BollingerReading()
    moving_averages: MovingAverages = MovingAverages()
    support_resistance: SupportResistance = SupportResistance()
    divergence: Divergence = Divergence()
    stochastic: StochasticReading = StochasticReading()
    atr: ATRReading = ATRReading()
    adx: ADXReading = ADXReading()
    ichimoku: IchimokuReading = IchimokuReading()
    fibonacci: FibonacciReading = FibonacciReading()
    overall_strength: float = 50.0
    signals: list[str] = ["CALIBRATING..."]
    confluence: float = 0.0


# ──────────────────────────────────────────────
# Composite Outputs
# ──────────────────────────────────────────────

class FullAnalysis(Record):
    """Every engine's read of one history."""
    symbol: Optional[str] = None
    length: int
    volatility: float
    strength: int
    patterns: PatternResult
    elliott: WaveAnalysis
    manipulation: ManipulationResult
    smc: SMCResult
    spikes: SpikeResult
    technicals: TechnicalAnalysisResult


class TimeframeRead(Record):
    """One synthetic timeframe window inside the signal composer."""
    timeframe: str
    bars: int
    weight: float
    strength: int
    smc_signal: str
    long_votes: float
    short_votes: float
    bias: Literal["LONG", "SHORT", "NEUTRAL"]


class TradeSignal(Record):
    symbol: str
    type: Direction
    confidence: float
    entry: float
    tp1: float
    tp2: float
    sl: float
    risk_reward: float
    vote_share: float
    long_votes: float
    short_votes: float
    timeframes: list[TimeframeRead]
    reasons: list[str]
    risk_profile: str
    generated_at: datetime


class ScanResult(Record):
    symbol: str
    price: float
    volatility: float
    pattern: str
    pattern_confidence: float
    manipulation: ManipulationResult
    tech_strength: int
    smc: SMCResult
    spike: SpikeResult
    technicals: TechnicalAnalysisResult
    accuracy: float
    volume_ratio: int
    order_flow: Side
    order_flow_strength: int


class DeepScanResult(Record):
    symbol: str
    price: float
    pattern: PatternResult
    smc: SMCResult
    spike: SpikeResult
    technicals: TechnicalAnalysisResult
    waves: WaveAnalysis
    threat_level: int
    priority: Priority


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    """Body for the stateless analysis endpoints."""
    history: list[float] = Field(..., description="Prices, most recent last")
    symbol: Optional[str] = None
    at: Optional[datetime] = Field(None, description="UTC instant used for kill zones")


class TickRequest(BaseModel):
    """Body for appending prices to a stored symbol."""
    price: Optional[float] = None
    prices: list[float] = []


class HistoryResponse(Record):
    symbol: str
    length: int
    history: list[float]


class HealthCheck(BaseModel):
    status: str
    version: str
    environment: str
    uptime_seconds: float
    symbols: int
