"""
MarketLens — Validator Tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from marketlens.utils import parse_at, validate_history, validate_price, validate_symbol


class TestValidateSymbol:

    @pytest.mark.parametrize("raw, expected", [
        ("r_100", "R_100"),
        ("  boom1000 ", "BOOM1000"),
        ("frxeurusd", "frxEURUSD"),
        ("FRXeurusd", "frxEURUSD"),
        ("crybtcusd", "cryBTCUSD"),
        ("frx", "FRX"),
    ])
    def test_normalizes(self, raw, expected):
        assert validate_symbol(raw) == expected

    def test_empty(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            validate_symbol("   ")

    @pytest.mark.parametrize("raw", ["R-100", "R 100", "A" * 21, "R_1$"])
    def test_rejects(self, raw):
        with pytest.raises(ValueError, match="Invalid symbol"):
            validate_symbol(raw)


class TestValidateHistory:

    def test_coerces_to_floats(self):
        assert validate_history([1, 2.5, "3"]) == [1.0, 2.5, 3.0]

    def test_empty_is_allowed(self):
        assert validate_history([]) == []

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite(self, bad):
        with pytest.raises(ValueError, match="not finite"):
            validate_history([1.0, bad])

    @pytest.mark.parametrize("bad", [0.0, 0, -3.5])
    def test_non_positive(self, bad):
        with pytest.raises(ValueError, match="entry 1 must be a positive price"):
            validate_history([1.0, bad])

    @pytest.mark.parametrize("bad", [True, None, "abc"])
    def test_non_numeric(self, bad):
        with pytest.raises(ValueError, match="entry 1 is not a number"):
            validate_history([1.0, bad])


class TestValidatePrice:

    def test_valid(self):
        assert validate_price(1234) == 1234.0

    @pytest.mark.parametrize("bad", [0, -5.0, float("nan")])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            validate_price(bad)


class TestParseAt:

    def test_none_and_blank(self):
        assert parse_at(None) is None
        assert parse_at("") is None

    def test_naive_is_utc(self):
        assert parse_at("2024-01-02T09:30:00") == datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)

    def test_offset_converted(self):
        parsed = parse_at("2024-01-02T10:30:00+01:00")
        assert parsed.tzinfo == timezone.utc
        assert parsed.hour == 9

    def test_datetime_passthrough(self):
        eastern = datetime(2024, 1, 2, 4, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert parse_at(eastern) == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)

    def test_garbage(self):
        with pytest.raises(ValueError, match="Cannot parse date string"):
            parse_at("next tuesday")
