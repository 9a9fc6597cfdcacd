"""
MarketLens — Price History Store Tests
"""

import pytest

from marketlens.history import PriceHistoryStore


class TestPriceHistoryStore:

    def test_push_returns_length(self):
        store = PriceHistoryStore(max_length=5)
        assert store.push("R_100", 1.0) == 1
        assert store.push("R_100", 2.0) == 2
        assert store.get("R_100") == [1.0, 2.0]

    def test_oldest_evicted_at_cap(self):
        store = PriceHistoryStore(max_length=3)
        assert store.extend("R_100", [1, 2, 3, 4, 5]) == 3
        assert store.get("R_100") == [3.0, 4.0, 5.0]

    def test_default_cap_from_settings(self):
        assert PriceHistoryStore().max_length == 200

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            PriceHistoryStore(max_length=-1)

    def test_get_returns_copy(self):
        store = PriceHistoryStore(max_length=5)
        store.extend("R_100", [1.0, 2.0])
        copy = store.get("R_100")
        copy.append(99.0)
        assert store.get("R_100") == [1.0, 2.0]

    def test_unknown_symbol(self):
        store = PriceHistoryStore()
        assert store.get("R_100") == []
        assert "R_100" not in store

    @pytest.mark.parametrize("bad", [0.0, -1.0, float("nan"), float("inf")])
    def test_invalid_price_stores_nothing(self, bad):
        store = PriceHistoryStore(max_length=5)
        store.extend("R_100", [1.0])
        with pytest.raises(ValueError):
            store.extend("R_100", [2.0, bad, 3.0])
        assert store.get("R_100") == [1.0]

    def test_symbols_and_snapshot(self):
        store = PriceHistoryStore(max_length=5)
        store.push("R_50", 1.0)
        store.push("BOOM1000", 2.0)
        assert store.symbols() == ["BOOM1000", "R_50"]
        assert len(store) == 2

        snapshot = store.snapshot()
        snapshot["R_50"].append(9.0)
        assert snapshot == {"R_50": [1.0, 9.0], "BOOM1000": [2.0]}
        assert store.get("R_50") == [1.0]

    def test_clear(self):
        store = PriceHistoryStore(max_length=5)
        store.push("R_50", 1.0)
        store.push("R_75", 1.0)
        store.clear("R_50")
        assert store.symbols() == ["R_75"]
        store.clear("UNKNOWN")
        store.clear()
        assert len(store) == 0
