"""
MarketLens — Signal Composer Tests

Vote gating is exercised by pinning each timeframe's directional reads;
the confidence multiplier runs against the real engines.
"""

from unittest.mock import patch

import pytest

from marketlens.config import Settings
from marketlens.engines.signal_composer import (
    TIMEFRAMES,
    SignalComposer,
    _TimeframeAnalysis,
    risk_profile,
)
from marketlens.models import ManipulationResult

ALL_LONG = ["LONG"] * 8
ALL_SHORT = ["SHORT"] * 8


def _pin_reads(reads):
    return patch.object(_TimeframeAnalysis, "directional_reads", return_value=reads)


def _permissive() -> Settings:
    return Settings(signal_min_confidence=0.0)


class TestGating:

    def test_short_history_is_none(self, wave, off_hours):
        assert SignalComposer().compose("R_100", wave[:179], now=off_hours) is None

    def test_tie_is_none(self, wave, off_hours):
        with _pin_reads(["LONG", "SHORT"] + [None] * 6):
            assert SignalComposer(_permissive()).compose("R_100", wave, now=off_hours) is None

    def test_no_votes_is_none(self, wave, off_hours):
        with _pin_reads([None] * 8):
            assert SignalComposer(_permissive()).compose("R_100", wave, now=off_hours) is None

    def test_split_vote_below_55_percent(self, wave, off_hours):
        # 6 of 11 = 54.5%
        with _pin_reads(["LONG"] * 6 + ["SHORT"] * 5):
            assert SignalComposer(_permissive()).compose("R_100", wave, now=off_hours) is None

    def test_split_vote_at_55_percent_passes(self, wave, off_hours):
        # 5 of 9 = 55.6%
        with _pin_reads(["LONG"] * 5 + ["SHORT"] * 4 + [None]):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)
        assert signal is not None
        assert signal.type == "LONG"
        assert signal.vote_share == pytest.approx(5 / 9)

    def test_low_confidence_discarded(self, wave, off_hours):
        strict = Settings(signal_min_confidence=100.0)
        with _pin_reads(ALL_LONG):
            assert SignalComposer(strict).compose("R_100", wave, now=off_hours) is None


class TestSignal:

    def test_long_geometry(self, wave, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)

        risk = signal.entry - signal.sl
        assert signal.type == "LONG"
        assert signal.entry == wave[-1]
        assert risk > 0
        assert signal.tp1 - signal.entry == pytest.approx(1.5 * risk)
        assert signal.tp2 - signal.entry == pytest.approx(3.0 * risk)
        assert signal.risk_reward == 3.0
        assert 0 < signal.confidence <= 99.9

    def test_short_geometry(self, wave, off_hours):
        with _pin_reads(ALL_SHORT):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)

        risk = signal.sl - signal.entry
        assert signal.type == "SHORT"
        assert risk > 0
        assert signal.entry - signal.tp2 == pytest.approx(3.0 * risk)

    def test_risk_is_two_percent_of_range_scaled(self, wave, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)

        base = (max(wave) - min(wave)) * 0.02
        if signal.confidence > 95:
            multiplier = 0.8
        elif signal.confidence > 85:
            multiplier = 1.0
        else:
            multiplier = 1.2
        assert signal.entry - signal.sl == pytest.approx(base * multiplier)

    def test_timeframes_and_votes(self, wave, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)

        assert [tf.timeframe for tf in signal.timeframes] == [name for name, _, _ in TIMEFRAMES]
        assert [tf.bars for tf in signal.timeframes] == [30, 60, 240, 300]
        assert [tf.long_votes for tf in signal.timeframes] == [8.0, 12.0, 16.0, 24.0]
        assert signal.long_votes == 60.0
        assert signal.short_votes == 0.0
        assert signal.vote_share == 1.0
        assert all(tf.bias == "LONG" for tf in signal.timeframes)

    def test_reasons(self, wave, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)

        assert signal.reasons[0] == "Multi-Timeframe Analysis: M5/M15/H1/H4 Confluence"
        assert "Vote Share: 100% LONG" in signal.reasons
        assert "Timeframe Alignment: PERFECT CONFLUENCE" in signal.reasons
        assert any(r.startswith("Primary Signal: ") for r in signal.reasons)
        assert any(r.startswith("H4: LONG (") for r in signal.reasons)

    def test_generated_at_is_now(self, wave, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)
        assert signal.generated_at == off_hours

    def test_idempotent(self, wave, off_hours):
        composer = SignalComposer(_permissive())
        with _pin_reads(ALL_LONG):
            assert composer.compose("R_100", wave, now=off_hours) == composer.compose("R_100", wave, now=off_hours)

    def test_camel_case_json(self, wave, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_100", wave, now=off_hours)
        dumped = signal.model_dump(mode="json", by_alias=True)
        assert "riskReward" in dumped
        assert "riskProfile" in dumped
        assert "longVotes" in dumped["timeframes"][0]


class TestComposeMany:

    def test_sorted_and_filtered(self, wave, flat_then_spike, off_hours):
        histories = {"R_100": wave, "R_50": flat_then_spike, "R_10": wave[:100]}
        with _pin_reads(ALL_LONG):
            signals = SignalComposer(_permissive()).compose_many(histories, now=off_hours)

        assert {s.symbol for s in signals} == {"R_100", "R_50"}
        confidences = [s.confidence for s in signals]
        assert confidences == sorted(confidences, reverse=True)


class TestRiskProfile:

    def test_trap_tiers(self):
        critical = ManipulationResult(detected=True, type="X", severity=5)
        elevated = ManipulationResult(detected=True, type="X", severity=3)
        assert risk_profile(critical, 99.0) == "CRITICAL - TRAP ACTIVE"
        assert risk_profile(elevated, 99.0) == "ELEVATED RISK - MONITOR"

    @pytest.mark.parametrize("confidence, profile", [
        (97.0, "INSTITUTIONAL GRADE ELITE"),
        (93.0, "INSTITUTIONAL GRADE"),
        (86.0, "HIGH PROBABILITY"),
        (75.0, "RETAIL CONFLUENCE"),
    ])
    def test_confidence_tiers(self, confidence, profile):
        assert risk_profile(ManipulationResult(), confidence) == profile


class TestZeroPrices:

    def test_compose_does_not_raise(self, off_hours):
        with _pin_reads(ALL_LONG):
            signal = SignalComposer(_permissive()).compose("R_10", [0.0] * 250, now=off_hours)
        assert signal.entry == 0.0
        assert signal.sl == signal.tp1 == signal.tp2 == 0.0
