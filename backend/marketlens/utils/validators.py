"""
MarketLens — Input Validators

Reusable validation helpers for symbols, price histories and clock overrides.
Raise ValueError on invalid input so callers can map to 400 responses.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

# Deriv-style symbols: R_100, BOOM1000, frxEURUSD, cryBTCUSD
_SYMBOL_RE = re.compile(r"^[A-Za-z0-9_]{1,20}$")
_CASED_PREFIXES = ("frx", "cry")


def validate_symbol(raw: str) -> str:
    """Clean and validate a market symbol.

    Returns the normalized symbol or raises ValueError. Symbols keep their
    lowercase ``frx``/``cry`` prefix; everything else is uppercased.

    >>> validate_symbol('r_100')
    'R_100'
    >>> validate_symbol('frxeurusd')
    'frxEURUSD'
    """
    symbol = raw.strip()
    if not symbol:
        raise ValueError("Symbol cannot be empty")
    if not _SYMBOL_RE.match(symbol):
        raise ValueError(
            f"Invalid symbol '{symbol}'. Expected 1-20 letters, digits or underscores"
        )
    prefix = symbol[:3].lower()
    if prefix in _CASED_PREFIXES and len(symbol) > 3:
        return prefix + symbol[3:].upper()
    return symbol.upper()


def validate_history(values: Iterable[float]) -> list[float]:
    """Return the history as a list of floats, rejecting non-finite or non-positive entries.

    >>> validate_history([1, 2.5])
    [1.0, 2.5]
    """
    history: list[float] = []
    for i, value in enumerate(values):
        if isinstance(value, bool):
            raise ValueError(f"History entry {i} is not a number: {value!r}")
        try:
            price = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"History entry {i} is not a number: {value!r}")
        if not math.isfinite(price):
            raise ValueError(f"History entry {i} is not finite: {value!r}")
        if price <= 0:
            raise ValueError(f"History entry {i} must be a positive price: {value!r}")
        history.append(price)
    return history


def validate_price(value: float) -> float:
    """A single tick price: finite and strictly positive."""
    price = float(value)
    if not math.isfinite(price) or price <= 0:
        raise ValueError(f"Price must be a positive finite number, got {value!r}")
    return price


def parse_at(value: Optional[str | datetime]) -> Optional[datetime]:
    """Parse an optional ISO-8601 clock override into a UTC-aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Cannot parse date string: '{value}'. Expected ISO-8601 format.")
    return _ensure_tz(dt)


# ── Helpers ──────────────────────────────────────


def _ensure_tz(dt: datetime) -> datetime:
    """Ensure a datetime has UTC timezone info."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
