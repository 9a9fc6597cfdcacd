"""
MarketLens — Elliott Wave Engine Tests
"""

from unittest.mock import patch

import numpy as np
import pytest

from marketlens.engines.elliott_engine import ElliottWaveEngine, _Pivot, classify_degree, find_pivots
from marketlens.models import WaveAnalysis


class TestPivots:

    def test_flat_has_no_pivots(self, flat):
        assert find_pivots(np.array(flat)) == []

    def test_wave_pivots_alternate(self, wave):
        pivots = find_pivots(np.array(wave))
        kinds = [p.kind for p in pivots]
        assert len(pivots) >= 9
        assert all(a != b for a, b in zip(kinds, kinds[1:]))

    def test_small_swings_filtered(self):
        # ±0.2% ripples never clear the 0.8% pivot strength
        ripple = np.array([100.0 + 0.2 * np.sin(2 * np.pi * i / 40) for i in range(200)])
        assert find_pivots(ripple) == []


class TestDegree:

    def test_degrees(self):
        assert classify_degree(np.array([100.0, 100.5])) == "MINUTE"
        assert classify_degree(np.array([100.0, 103.0])) == "MINOR"
        assert classify_degree(np.array([100.0, 107.0])) == "INTERMEDIATE"
        assert classify_degree(np.array([100.0, 120.0])) == "PRIMARY"


class TestElliottWaveEngine:

    def test_placeholder_below_100(self):
        result = ElliottWaveEngine().analyze([100.0] * 99)
        assert result == WaveAnalysis()
        assert result.wave_count == "INSUFFICIENT DATA"

    def test_flat_is_developing(self, flat):
        result = ElliottWaveEngine().analyze(flat)
        assert result.wave_count == "DEVELOPING"
        assert result.degree == "MINUTE"
        assert result.projection.target == 100.0
        assert result.projection.confidence == 0.0

    def test_regular_wave_reads_as_impulse(self, wave):
        result = ElliottWaveEngine().analyze(wave)
        assert "IMPULSE" in result.wave_count
        assert result.equality is True
        assert "WAVE 5 = WAVE 1 (EQUALITY)" in result.fibonacci_relationships
        assert result.degree == "PRIMARY"
        assert 0.0 < result.projection.confidence <= 99.0

    def test_idempotent(self, wave):
        engine = ElliottWaveEngine()
        assert engine.analyze(wave) == engine.analyze(wave)


def _pivots(*points: tuple[float, str]) -> list[_Pivot]:
    return [_Pivot(index=10 * (i + 1), value=value, kind=kind) for i, (value, kind) in enumerate(points)]


class TestCorrections:
    """Two same-kind pivots in a row take the corrective branch."""

    TAIL = ((99.0, "peak"), (93.0, "trough"), (98.0, "peak"), (94.0, "trough"), (97.0, "peak"))

    @pytest.mark.parametrize("head, wave_count", [
        # double bottom: zero wave A, wave B of 10
        (((90.0, "trough"), (90.0, "trough"), (100.0, "peak"), (95.0, "trough")), "FLAT CORRECTION (ABC)"),
        # A = 10, B = 9.5, C = 3
        (((90.0, "trough"), (100.0, "trough"), (90.5, "peak"), (93.5, "trough")), "FLAT CORRECTION (ABC)"),
        # A = 10, C = 10.5
        (((90.0, "trough"), (100.0, "trough"), (95.0, "peak"), (105.5, "trough")), "ZIGZAG CORRECTION (ABC)"),
    ])
    def test_classification(self, flat, head, wave_count):
        with patch("marketlens.engines.elliott_engine.find_pivots", return_value=_pivots(*head, *self.TAIL)):
            result = ElliottWaveEngine().analyze(flat)
        assert result.wave_count == wave_count

    def test_flat_double_bottom_confidence(self, flat):
        head = ((90.0, "trough"), (90.0, "trough"), (100.0, "peak"), (95.0, "trough"))
        with patch("marketlens.engines.elliott_engine.find_pivots", return_value=_pivots(*head, *self.TAIL)):
            result = ElliottWaveEngine().analyze(flat)
        assert result.fibonacci_relationships == ["WAVE B = 0.9+ WAVE A"]
        assert result.projection.confidence == 60.0
