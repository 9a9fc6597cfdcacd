"""
MarketLens — Manipulation Engine Tests
"""

from marketlens.engines.manipulation_engine import STOP_HUNT_RULES, ManipulationEngine
from marketlens.models import ManipulationResult


class TestManipulationEngine:

    def test_placeholder_below_30(self):
        result = ManipulationEngine().analyze([100.0] * 29)
        assert result == ManipulationResult()
        assert result.detected is False

    def test_flat_is_organic(self, flat):
        result = ManipulationEngine().analyze(flat)
        assert result.detected is False
        assert result.type == "ORGANIC FLOW"
        assert result.severity == 0
        assert result.indicators == []
        assert result.institutional_footprint == 0

    def test_single_bar_spike_is_stop_hunt(self, flat_then_spike):
        result = ManipulationEngine().analyze(flat_then_spike)
        assert result.detected is True
        assert result.type == "EXTREME HFT STOP HUNT (6σ)"
        assert result.indicators[0] == "EXTREME HFT STOP HUNT (6σ)"
        assert result.severity >= 5
        assert result.institutional_footprint >= 25

    def test_only_one_stop_hunt_grade(self, flat_then_spike):
        result = ManipulationEngine().analyze(flat_then_spike)
        grades = [i for i in result.indicators if "STOP HUNT" in i]
        assert grades == ["EXTREME HFT STOP HUNT (6σ)"]

    def test_stop_hunt_grades(self):
        class Ctx:
            volatility = 1.0
            stop_hunt_move = 5.0

        outcome = STOP_HUNT_RULES.evaluate(Ctx())
        assert outcome.labels == ["CRITICAL HFT STOP HUNT (4.5σ)"]
        assert (outcome.score, outcome.secondary) == (4, 20)

    def test_idempotent(self, wave):
        engine = ManipulationEngine()
        assert engine.analyze(wave) == engine.analyze(wave)
