"""
MarketLens — ICT Overlay Tests

Kill zones are a pure function of the injected UTC hour.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from marketlens.engines.ict_engine import ICTEngine, utc_hour
from marketlens.models import ICTResult


def _at(hour: int) -> datetime:
    return datetime(2024, 3, 5, hour, 30, tzinfo=timezone.utc)


class TestKillZones:

    @pytest.mark.parametrize("hour", [7, 8, 9])
    def test_london(self, hour):
        assert ICTEngine.kill_zone(_at(hour))[:2] == ("LONDON", 95.0)

    @pytest.mark.parametrize("hour", [12, 13, 14])
    def test_new_york(self, hour):
        assert ICTEngine.kill_zone(_at(hour))[:2] == ("NEW_YORK", 98.0)

    @pytest.mark.parametrize("hour", [1, 2, 3, 4])
    def test_asia(self, hour):
        assert ICTEngine.kill_zone(_at(hour))[:2] == ("ASIA", 85.0)

    @pytest.mark.parametrize("hour", [0, 5, 6, 10, 11, 15, 20, 23])
    def test_outside_sessions(self, hour):
        assert ICTEngine.kill_zone(_at(hour)) == ("NONE", 0.0, "")

    def test_naive_datetime_is_utc(self):
        assert utc_hour(datetime(2024, 3, 5, 13, 0)) == 13

    def test_offset_datetime_is_converted(self):
        eastern = timezone(timedelta(hours=-5))
        # 08:00 at UTC-5 is 13:00 UTC
        assert ICTEngine.kill_zone(datetime(2024, 3, 5, 8, 0, tzinfo=eastern))[0] == "NEW_YORK"

    def test_wall_clock_when_now_omitted(self):
        fixed = datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc)
        with patch("marketlens.engines.ict_engine.datetime") as mock_dt:
            mock_dt.now.return_value = fixed
            assert ICTEngine.kill_zone()[0] == "LONDON"


class TestICTEngine:

    def test_short_history_placeholder(self):
        assert ICTEngine().analyze([100.0] * 49, now=_at(13)) == ICTResult()

    def test_kill_zone_independent_of_prices(self, wave, rising):
        engine = ICTEngine()
        a = engine.analyze(wave[:200], now=_at(8))
        b = engine.analyze(rising[:200], now=_at(8))
        assert a.kill_zone == b.kill_zone == "LONDON"
        assert a.kill_zone_strength == b.kill_zone_strength == 95.0

    def test_kill_zone_factor(self, wave):
        result = ICTEngine().analyze(wave, now=_at(13))
        assert "🎯 NEW YORK KILL ZONE ACTIVE" in result.ict_factors

    def test_idempotent(self, wave):
        engine = ICTEngine()
        assert engine.analyze(wave, now=_at(2)) == engine.analyze(wave, now=_at(2))

    def test_flat_history(self, flat, off_hours):
        result = ICTEngine().analyze(flat, now=off_hours)
        assert result.kill_zone == "NONE"
        assert result.ote_zone.in_zone is False
        assert result.breaker_blocks == []
        assert result.mitigation_blocks == []
        assert result.power_of_3.phase == "NONE"
        assert result.optimal_entry.signal == "WAITING"

    def test_rising_flow_is_buying(self, rising, off_hours):
        result = ICTEngine().analyze(rising, now=off_hours)
        assert result.institutional_order_flow in ("BUY", "STRONG_BUY")

    def test_lists_are_capped(self, wave, off_hours):
        result = ICTEngine().analyze(wave, now=off_hours)
        assert len(result.breaker_blocks) <= 3
        assert len(result.mitigation_blocks) <= 3

    def test_camel_case_aliases(self, wave, off_hours):
        dumped = ICTEngine().analyze(wave, now=off_hours).model_dump(by_alias=True)
        assert "killZone" in dumped
        assert "institutionalOrderFlow" in dumped
        assert "oteZone" in dumped
