"""
MarketLens — SMC Engine Tests
"""

import warnings
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from marketlens.engines.smc_engine import SMCEngine, classify_score, factor_weight
from marketlens.models import ICTResult, OTEZone, PowerOf3, SMCResult


class TestScoring:

    @pytest.mark.parametrize("factor, weight", [
        ("BULLISH STRUCTURE (HH/HL)", 1.8),
        ("DISCOUNT ZONE - BUY", 1.8),
        ("SPIKE PRE-IGNITION", 1.8),
        ("LIQUIDITY_POOL_TARGETED - BSL BELOW", 1.8),
        ("PREMIUM ZONE - SELL", -1.8),
        ("CRASH DISTRIBUTION (DEEP)", -1.8),
        ("SSL SWEPT - REVERSAL", -1.8),
        ("INDUCEMENT - TRAP", 0.0),
        ("POC MAGNET ACTIVE", 0.0),
    ])
    def test_factor_weight(self, factor, weight):
        assert factor_weight(factor) == weight

    @pytest.mark.parametrize("score, signal", [
        (5.4, "ELITE SMC BULLISH"),
        (5.0, "ELITE SMC BULLISH"),
        (3.6, "SMC BULLISH"),
        (1.8, "NEUTRAL"),
        (0.0, "NEUTRAL"),
        (-2.5, "SMC BEARISH"),
        (-7.2, "ELITE SMC BEARISH"),
    ])
    def test_classify_score(self, score, signal):
        assert classify_score(score) == signal


class TestSMCEngine:

    def test_placeholder_below_50(self):
        result = SMCEngine().analyze([100.0 + i for i in range(49)])
        assert result == SMCResult()
        dumped = result.model_dump(by_alias=True)
        assert dumped["signal"] == "SYNCHRONIZING..."
        assert dumped["trend"] == "NEUTRAL"
        assert dumped["accuracy"] == 0
        assert dumped["marketStructure"] == "RANGING"
        assert dumped["premiumDiscount"] == "EQUILIBRIUM"
        for key in ("factors", "orderBlocks", "fairValueGaps", "liquidityZones", "bosChoch"):
            assert dumped[key] == []

    def test_rising_history(self, rising, off_hours):
        result = SMCEngine().analyze(rising, now=off_hours)
        assert result.premium_discount == "PREMIUM"
        assert result.market_structure == "RANGING"
        assert "PREMIUM ZONE - SELL" in result.factors
        assert "IOF BULLISH BIAS" in result.factors
        assert result.order_blocks == []
        assert result.fair_value_gaps == []
        assert 85.0 <= result.accuracy <= 99.9
        assert result.ict_concepts is not None

    def test_accuracy_clamped(self, wave, flat_then_spike):
        engine = SMCEngine()
        for hour in (2, 8, 13, 20):
            now = datetime(2024, 1, 2, hour, tzinfo=timezone.utc)
            for history in (wave, flat_then_spike):
                accuracy = engine.analyze(history, symbol="BOOM1000", now=now).accuracy
                assert 0.0 <= accuracy <= 99.9

    def test_accuracy_cap_reached(self, wave, off_hours):
        # +7.84 kill zone, +6 OTE, +5 power of 3 on a base of at least 85
        overlay = ICTResult(
            kill_zone="NEW_YORK",
            kill_zone_strength=98.0,
            ote_zone=OTEZone(in_zone=True, level=100.0, type="BULLISH"),
            power_of_3=PowerOf3(phase="DISTRIBUTION", confidence=100.0),
            ict_factors=["NEW YORK KILL ZONE ACTIVE"],
        )
        ict_engine = MagicMock()
        ict_engine.analyze.return_value = overlay

        result = SMCEngine(ict_engine=ict_engine).analyze(wave, now=off_hours)
        assert result.accuracy == 99.9
        assert result.ict_concepts == overlay

    def test_zero_prices(self, off_hours):
        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            result = SMCEngine().analyze([0.0] * 60, now=off_hours)
        assert 0.0 <= result.accuracy <= 99.9
        assert result.market_structure == "RANGING"

    def test_output_lists_capped(self, wave, off_hours):
        result = SMCEngine().analyze(wave, now=off_hours)
        assert len(result.order_blocks) <= 5
        assert len(result.fair_value_gaps) <= 3
        assert len(result.liquidity_zones) <= 5

    def test_wave_has_liquidity(self, wave, off_hours):
        result = SMCEngine().analyze(wave, now=off_hours)
        assert {z.type for z in result.liquidity_zones} <= {"BUY", "SELL"}
        assert len(result.liquidity_zones) > 0

    def test_kill_zone_boosts_accuracy(self, wave):
        engine = SMCEngine()
        quiet = engine.analyze(wave, now=datetime(2024, 1, 2, 20, tzinfo=timezone.utc))
        active = engine.analyze(wave, now=datetime(2024, 1, 2, 13, tzinfo=timezone.utc))
        assert active.accuracy >= quiet.accuracy
        assert active.ict_concepts.kill_zone == "NEW_YORK"

    def test_idempotent(self, wave, off_hours):
        engine = SMCEngine()
        assert engine.analyze(wave, now=off_hours) == engine.analyze(wave, now=off_hours)

    def test_does_not_mutate_history(self, wave, off_hours):
        copy = list(wave)
        SMCEngine().analyze(wave, now=off_hours)
        assert wave == copy
