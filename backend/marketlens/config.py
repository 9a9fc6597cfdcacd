"""
MarketLens — Configuration Management

Pydantic Settings: loads from .env, validates all configuration at startup.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Core ──
    app_env: str = "development"
    app_debug: bool = True

    # ── Price History ──
    history_max_length: int = 200  # per-symbol rolling buffer cap

    # ── Signal Composer ──
    signal_min_history: int = 180
    signal_min_vote_share: float = 0.55
    signal_min_confidence: float = 70.0
    signal_range_fraction: float = 0.02  # synthetic ATR = 2% of full-history range
    signal_reward_risk: float = 3.0

    # ── Scanner ──
    scanner_min_history: int = 100

    # ── Observability ──
    slow_span_seconds: float = 5.0

    # ── CORS ──
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance — created once, reused everywhere."""
    return Settings()
