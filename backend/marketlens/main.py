"""
MarketLens — FastAPI Application Entry Point

The central API server. Stateless analysis, stored tick histories, signals
and the scanner are mounted here.
"""

import time as _time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketlens.config import get_settings
from marketlens.history import PriceHistoryStore
from marketlens.routes import VERSION, analysis_router, health_router, market_router

log = structlog.get_logger("MarketLens.startup")

# Track server start time for uptime calculations
APP_START_TIME: float = _time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    settings = get_settings()
    log.info(
        "startup",
        env=settings.app_env,
        history_max_length=settings.history_max_length,
        signal_min_confidence=settings.signal_min_confidence,
    )

    yield

    log.info("shutdown", symbols=len(app.state.store))
    app.state.store.clear()


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title="MarketLens",
        description="""# MarketLens API

Heuristic market analysis over close-only price histories.

## Features
- **Engines** — volatility, strength, harmonic patterns, Elliott waves, manipulation, SMC + ICT, spikes, technical suite
- **Signals** — multi-timeframe weighted-vote trade signals
- **Scanner** — accuracy-ranked scan and threat-ranked deep scan
""",
        version=VERSION,
        debug=settings.app_debug,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "Health", "description": "Service health checks"},
            {"name": "Analysis", "description": "Stateless engine runs over a supplied history"},
            {"name": "Market", "description": "Stored tick histories, signals and the scanner"},
        ],
    )

    app.state.store = PriceHistoryStore(max_length=settings.history_max_length)

    # ── Global Error Handlers ──
    from marketlens.error_handlers import register_error_handlers
    register_error_handlers(app)

    # ── CORS (configurable from settings) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Custom Middleware ──
    from marketlens.middleware.request_logger import RequestLoggerMiddleware
    app.add_middleware(RequestLoggerMiddleware)

    # ── GZip Response Compression ──
    from starlette.middleware.gzip import GZipMiddleware
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Routes (unversioned) ──
    app.include_router(health_router, tags=["Health"])

    # ── Routes (v1 API) ──
    API_V1 = "/v1/api"
    app.include_router(analysis_router, prefix=API_V1, tags=["Analysis"])
    app.include_router(market_router, prefix=API_V1, tags=["Market"])

    # ── API Version Header ──
    @app.middleware("http")
    async def add_api_version_header(request, call_next):
        response = await call_next(request)
        response.headers["X-API-Version"] = "v1"
        return response

    return app


app = create_app()
