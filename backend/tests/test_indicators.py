"""
MarketLens — Core Indicator Tests

Volatility, strength oscillator and the shared numeric helpers.
"""

import warnings

import numpy as np
import pytest

from marketlens.engines.indicators import (
    bar_pressure,
    calculate_technical_strength,
    calculate_volatility,
    find_swings,
    pad_zero,
    round_half_up,
    safe_ratio,
    volume_ratio,
)


class TestVolatility:

    def test_short_history_is_zero(self):
        assert calculate_volatility([]) == 0.0
        assert calculate_volatility([100.0]) == 0.0

    def test_constant_history_is_zero(self):
        assert calculate_volatility([42.0] * 2) == 0.0
        assert calculate_volatility([42.0] * 150) == 0.0

    def test_zero_prices_do_not_divide_by_zero(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            assert calculate_volatility([0.0] * 30) == 0.0

    def test_scaled_population_std(self):
        # returns +10%, -10% → mean 0, population std 0.1
        history = [100.0, 110.0, 99.0]
        expected = float(np.std([0.1, -0.1])) * 1200
        assert calculate_volatility(history) == pytest.approx(expected)
        assert calculate_volatility(history) == pytest.approx(120.0)

    def test_does_not_mutate_input(self):
        history = [1.0, 2.0, 3.0]
        calculate_volatility(history)
        assert history == [1.0, 2.0, 3.0]


class TestTechnicalStrength:

    def test_short_history_is_neutral(self):
        assert calculate_technical_strength([1.0] * 39) == 50
        assert calculate_technical_strength(list(range(1, 40))) == 50

    def test_strictly_rising_is_100(self):
        assert calculate_technical_strength([float(i) for i in range(1, 41)]) == 100

    def test_strictly_falling_is_0(self):
        assert calculate_technical_strength([float(i) for i in range(100, 60, -1)]) == 0

    def test_flat_window_is_0(self):
        assert calculate_technical_strength([100.0] * 60) == 0

    def test_only_last_14_prices_count(self):
        falling_then_rising = [float(i) for i in range(100, 60, -1)] + [float(i) for i in range(61, 75)]
        assert calculate_technical_strength(falling_then_rising) == 100

    def test_balanced_window_is_50(self):
        # 13 deltas: alternating +1 / -1 starting and ending with +1 → gains 7, losses 6
        tail = [100.0 + (i % 2) for i in range(14)]
        history = [100.0] * 30 + tail
        gains, losses = 7.0, 6.0
        assert calculate_technical_strength(history) == round_half_up(100 - 100 / (1 + gains / losses))

    def test_rising_fixture(self, rising):
        assert calculate_technical_strength(rising) == 100


class TestHelpers:

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2

    def test_safe_ratio(self):
        assert safe_ratio(1.0, 0.0) == 0.0
        assert safe_ratio(1.0, 4.0) == 0.25

    def test_pad_zero(self):
        assert pad_zero(0.0) == 0.0001
        assert pad_zero(2.5) == 2.5
        assert pad_zero(np.array([0.0, 3.0])).tolist() == [0.0001, 3.0]

    def test_find_swings(self):
        data = np.array([1, 2, 3, 2, 1, 2, 3, 4, 3, 2, 1], dtype=float)
        highs, lows = find_swings(data, 2)
        assert (2, 3.0) in highs
        assert (7, 4.0) in highs
        assert (4, 1.0) in lows

    def test_volume_ratio_flat_baseline(self):
        assert volume_ratio([100.0] * 120) == 1.0

    def test_volume_ratio_expanding(self):
        quiet = [100.0 + 0.1 * (i % 2) for i in range(80)]
        loud = [100.0 + 1.0 * (i % 2) for i in range(20)]
        assert volume_ratio(quiet + loud) > 1.5

    def test_bar_pressure(self):
        history = [1.0, 2.0, 3.0, 2.0, 2.0]
        assert bar_pressure(history, bars=5) == (2, 1)

    def test_bar_pressure_uses_last_bars(self):
        history = [float(i) for i in range(100)]
        assert bar_pressure(history) == (19, 0)
