"""
MarketLens — Price History Store

In-process rolling buffers, one per symbol, capped at
``settings.history_max_length`` prices (oldest evicted first). Readers always
get copies, so engines can never mutate a stored buffer.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterable, Optional

import structlog

from marketlens.config import get_settings
from marketlens.utils.validators import validate_price

log = structlog.get_logger(__name__)


class PriceHistoryStore:
    """Thread-safe per-symbol ring buffers.

    Usage:
        store = PriceHistoryStore(max_length=200)
        store.push("R_100", 1234.5)
        history = store.get("R_100")
    """

    def __init__(self, max_length: Optional[int] = None):
        self.max_length = max_length or get_settings().history_max_length
        if self.max_length < 1:
            raise ValueError("max_length must be at least 1")
        self._buffers: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def push(self, symbol: str, price: float) -> int:
        """Append one price; returns the buffer length afterwards."""
        return self.extend(symbol, [price])

    def extend(self, symbol: str, prices: Iterable[float]) -> int:
        """Append prices in order. Nothing is stored if any price is invalid."""
        cleaned = [validate_price(p) for p in prices]
        with self._lock:
            buffer = self._buffers.get(symbol)
            if buffer is None:
                buffer = self._buffers[symbol] = deque(maxlen=self.max_length)
                log.debug("history.new_symbol", symbol=symbol)
            buffer.extend(cleaned)
            return len(buffer)

    def get(self, symbol: str) -> list[float]:
        """Copy of the symbol's buffer, oldest first (empty when unknown)."""
        with self._lock:
            return list(self._buffers.get(symbol, ()))

    def symbols(self) -> list[str]:
        with self._lock:
            return sorted(self._buffers)

    def snapshot(self) -> dict[str, list[float]]:
        """Copies of every buffer."""
        with self._lock:
            return {symbol: list(buffer) for symbol, buffer in self._buffers.items()}

    def clear(self, symbol: Optional[str] = None) -> None:
        with self._lock:
            if symbol is None:
                self._buffers.clear()
            else:
                self._buffers.pop(symbol, None)
