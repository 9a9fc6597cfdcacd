"""
MarketLens — Scanner Engine Tests
"""

import pytest

from marketlens.engines.indicators import bar_pressure
from marketlens.engines.scanner_engine import ScannerEngine, classify_priority


class TestPriority:

    @pytest.mark.parametrize("threat, priority", [
        (100, "HIGH"),
        (51, "HIGH"),
        (50, "MEDIUM"),
        (26, "MEDIUM"),
        (25, "LOW"),
        (0, "LOW"),
    ])
    def test_classify(self, threat, priority):
        assert classify_priority(threat) == priority


class TestScan:

    def test_short_history_is_none(self, wave, off_hours):
        assert ScannerEngine().scan("R_100", wave[:99], now=off_hours) is None

    def test_wave_row(self, wave, off_hours):
        row = ScannerEngine().scan("R_100", wave, now=off_hours)
        ups, downs = bar_pressure(wave[-240:])

        assert row.symbol == "R_100"
        assert row.price == wave[-1]
        assert 0.0 <= row.accuracy <= 99.9
        assert row.order_flow == ("BULLISH" if ups > downs else "BEARISH")
        assert row.order_flow_strength == abs(ups - downs) * 5
        assert row.volume_ratio >= 0

    def test_flat_row(self, flat, off_hours):
        row = ScannerEngine().scan("R_10", flat, now=off_hours)
        assert row.order_flow == "BEARISH"
        assert row.order_flow_strength == 0
        assert row.tech_strength == 0
        assert row.manipulation.detected is False
        assert row.accuracy <= 99.9

    def test_scan_many_sorted(self, wave, flat, flat_then_spike, off_hours):
        histories = {"R_100": wave, "R_10": flat, "BOOM1000": flat_then_spike, "R_25": wave[:50]}
        rows = ScannerEngine().scan_many(histories, now=off_hours)

        assert {r.symbol for r in rows} == {"R_100", "R_10", "BOOM1000"}
        accuracies = [r.accuracy for r in rows]
        assert accuracies == sorted(accuracies, reverse=True)

    def test_camel_case_json(self, wave, off_hours):
        dumped = ScannerEngine().scan("R_100", wave, now=off_hours).model_dump(mode="json", by_alias=True)
        assert {"orderFlow", "orderFlowStrength", "volumeRatio", "techStrength"} <= dumped.keys()


class TestDeepScan:

    def test_ranking(self, flat, flat_then_spike, off_hours):
        histories = {"R_10": flat, "BOOM1000": flat_then_spike, "R_25": [100.0] * 50}
        results = ScannerEngine().deep_scan(histories, now=off_hours)

        assert [r.symbol for r in results] == ["BOOM1000", "R_10"]
        spike, quiet = results
        assert spike.threat_level >= 65
        assert spike.priority == "HIGH"
        assert quiet.threat_level == 0
        assert quiet.priority == "LOW"

    def test_threat_capped(self, wave, flat_then_spike, off_hours):
        results = ScannerEngine().deep_scan({"R_100": wave, "BOOM1000": flat_then_spike}, now=off_hours)
        assert all(0 <= r.threat_level <= 100 for r in results)

    def test_empty(self, off_hours):
        assert ScannerEngine().deep_scan({}, now=off_hours) == []


class TestZeroPrices:
    """Every engine runs through the scanner; none may divide by a zero price."""

    def test_scan(self, off_hours):
        row = ScannerEngine().scan("R_10", [0.0] * 250, now=off_hours)
        assert row.price == 0.0
        assert 0.0 <= row.accuracy <= 99.9

    def test_deep_scan(self, off_hours):
        results = ScannerEngine().deep_scan({"R_10": [0.0] * 250}, now=off_hours)
        assert [r.symbol for r in results] == ["R_10"]
        assert 0 <= results[0].threat_level <= 100
