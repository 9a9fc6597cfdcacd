"""
MarketLens — API Routes

All HTTP endpoints. Thin layer — validates input and delegates to the
engines; stored histories live in the app's ``PriceHistoryStore``.
"""

from __future__ import annotations

import time as _time
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from marketlens.config import get_settings
from marketlens.engines.elliott_engine import ElliottWaveEngine
from marketlens.engines.ict_engine import ICTEngine
from marketlens.engines.indicators import calculate_technical_strength, calculate_volatility
from marketlens.engines.manipulation_engine import ManipulationEngine
from marketlens.engines.pattern_engine import PatternEngine
from marketlens.engines.scanner_engine import ScannerEngine
from marketlens.engines.signal_composer import SignalComposer
from marketlens.engines.smc_engine import SMCEngine
from marketlens.engines.spike_engine import SpikeEngine
from marketlens.engines.ta_engine import TAEngine
from marketlens.history import PriceHistoryStore
from marketlens.models import (
    AnalyzeRequest,
    FullAnalysis,
    HealthCheck,
    HistoryResponse,
    TickRequest,
)
from marketlens.observability import trace_span
from marketlens.utils.validators import parse_at, validate_history, validate_symbol

log = structlog.get_logger(__name__)

VERSION = "1.0.0"


def get_store(request: Request) -> PriceHistoryStore:
    """FastAPI dependency: the app-owned price history store."""
    return request.app.state.store


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _symbol_or_400(raw: str) -> str:
    try:
        return validate_symbol(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _at_or_400(raw: Optional[str]) -> Optional[datetime]:
    try:
        return parse_at(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────

health_router = APIRouter()


@health_router.get("/health", response_model=HealthCheck)
async def health_check(store: PriceHistoryStore = Depends(get_store)):
    """Service liveness plus the number of tracked symbols."""
    from marketlens.main import APP_START_TIME

    return HealthCheck(
        status="ok",
        version=VERSION,
        environment=get_settings().app_env,
        uptime_seconds=round(_time.monotonic() - APP_START_TIME, 1),
        symbols=len(store),
    )


# ──────────────────────────────────────────────
# Stateless Analysis
# ──────────────────────────────────────────────

analysis_router = APIRouter()

_smc_engine = SMCEngine()
_ict_engine = ICTEngine()
_elliott_engine = ElliottWaveEngine()
_pattern_engine = PatternEngine(smc_engine=_smc_engine, elliott_engine=_elliott_engine)
_manipulation_engine = ManipulationEngine()
_spike_engine = SpikeEngine()
_ta_engine = TAEngine()

# component -> fn(history, symbol, now)
COMPONENTS: dict[str, Callable[[list[float], Optional[str], Optional[datetime]], Any]] = {
    "volatility": lambda h, s, now: calculate_volatility(h),
    "strength": lambda h, s, now: calculate_technical_strength(h),
    "patterns": lambda h, s, now: _pattern_engine.analyze(h, now=now),
    "elliott": lambda h, s, now: _elliott_engine.analyze(h),
    "manipulation": lambda h, s, now: _manipulation_engine.analyze(h),
    "smc": lambda h, s, now: _smc_engine.analyze(h, symbol=s, now=now),
    "ict": lambda h, s, now: _ict_engine.analyze(h, symbol=s, now=now),
    "spikes": lambda h, s, now: _spike_engine.analyze(h, symbol=s),
    "technicals": lambda h, s, now: _ta_engine.analyze(h),
}


def full_analysis(history: list[float], symbol: Optional[str] = None, now: Optional[datetime] = None) -> FullAnalysis:
    """Every engine's read of one history."""
    with trace_span("routes.full_analysis", metadata={"symbol": symbol, "length": len(history)}):
        return FullAnalysis(
            symbol=symbol,
            length=len(history),
            volatility=calculate_volatility(history),
            strength=calculate_technical_strength(history),
            patterns=_pattern_engine.analyze(history, now=now),
            elliott=_elliott_engine.analyze(history),
            manipulation=_manipulation_engine.analyze(history),
            smc=_smc_engine.analyze(history, symbol=symbol, now=now),
            spikes=_spike_engine.analyze(history, symbol=symbol),
            technicals=_ta_engine.analyze(history),
        )


def _validated_body(body: AnalyzeRequest) -> tuple[list[float], Optional[str]]:
    try:
        history = validate_history(body.history)
        symbol = validate_symbol(body.symbol) if body.symbol else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return history, symbol


@analysis_router.post("/analyze")
async def analyze(body: AnalyzeRequest):
    """Run every engine against a caller-supplied history."""
    history, symbol = _validated_body(body)
    return _dump(full_analysis(history, symbol, body.at))


@analysis_router.post("/analyze/{component}")
async def analyze_component(component: str, body: AnalyzeRequest):
    """Run a single engine against a caller-supplied history."""
    fn = COMPONENTS.get(component)
    if fn is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown component '{component}'. Expected one of: {', '.join(COMPONENTS)}",
        )
    history, symbol = _validated_body(body)
    return {"component": component, "symbol": symbol, "result": _dump(fn(history, symbol, body.at))}


# ──────────────────────────────────────────────
# Stored Histories
# ──────────────────────────────────────────────

market_router = APIRouter()

_composer = SignalComposer()
_scanner = ScannerEngine()


@market_router.post("/ticks/{symbol}")
async def push_ticks(symbol: str, body: TickRequest, store: PriceHistoryStore = Depends(get_store)):
    """Append one price (``price``) or a batch (``prices``) to a symbol's history."""
    symbol = _symbol_or_400(symbol)
    prices = ([body.price] if body.price is not None else []) + list(body.prices)
    if not prices:
        raise HTTPException(status_code=400, detail="Provide 'price' or a non-empty 'prices' list")
    try:
        length = store.extend(symbol, prices)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"symbol": symbol, "length": length}


@market_router.get("/history/{symbol}")
async def get_history(symbol: str, store: PriceHistoryStore = Depends(get_store)):
    symbol = _symbol_or_400(symbol)
    if symbol not in store:
        raise HTTPException(status_code=404, detail=f"No history for '{symbol}'")
    history = store.get(symbol)
    return _dump(HistoryResponse(symbol=symbol, length=len(history), history=history))


@market_router.get("/analysis/{symbol}")
async def get_analysis(
    symbol: str,
    at: Optional[str] = Query(None, description="ISO-8601 UTC instant used for kill zones"),
    store: PriceHistoryStore = Depends(get_store),
):
    """Full analysis of a symbol's stored history."""
    symbol = _symbol_or_400(symbol)
    if symbol not in store:
        raise HTTPException(status_code=404, detail=f"No history for '{symbol}'")
    return _dump(full_analysis(store.get(symbol), symbol, _at_or_400(at)))


@market_router.get("/signals")
async def get_signals(
    at: Optional[str] = Query(None, description="ISO-8601 UTC instant used for kill zones"),
    store: PriceHistoryStore = Depends(get_store),
):
    """Composer output over every stored symbol, highest confidence first."""
    signals = _composer.compose_many(store.snapshot(), now=_at_or_400(at))
    return {"signals": _dump(signals), "count": len(signals)}


@market_router.get("/signals/{symbol}")
async def get_signal(
    symbol: str,
    at: Optional[str] = Query(None, description="ISO-8601 UTC instant used for kill zones"),
    store: PriceHistoryStore = Depends(get_store),
):
    """One symbol's signal, or null when nothing qualifies."""
    symbol = _symbol_or_400(symbol)
    return _dump(_composer.compose(symbol, store.get(symbol), now=_at_or_400(at)))


@market_router.get("/scanner")
async def get_scanner(
    at: Optional[str] = Query(None, description="ISO-8601 UTC instant used for kill zones"),
    store: PriceHistoryStore = Depends(get_store),
):
    rows = _scanner.scan_many(store.snapshot(), now=_at_or_400(at))
    return {"results": _dump(rows), "count": len(rows)}


@market_router.get("/scanner/deep")
async def get_deep_scan(
    at: Optional[str] = Query(None, description="ISO-8601 UTC instant used for kill zones"),
    store: PriceHistoryStore = Depends(get_store),
):
    ranking = _scanner.deep_scan(store.snapshot(), now=_at_or_400(at))
    return {"results": _dump(ranking), "count": len(ranking)}
