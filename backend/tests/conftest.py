"""
Shared price-history fixtures for the engine tests.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest


@pytest.fixture
def rising():
    """250 bars rising 0.5% per bar with zero noise."""
    return [100.0 * 1.005 ** i for i in range(250)]


@pytest.fixture
def flat():
    return [100.0] * 250


@pytest.fixture
def flat_then_spike():
    """249 bars flat at 100 followed by a single 10% jump."""
    return [100.0] * 249 + [110.0]


@pytest.fixture
def wave():
    """300 bars of a 40-bar sine cycle around 100 with ±10 amplitude."""
    return [100.0 + 10.0 * math.sin(2 * math.pi * i / 40) for i in range(300)]


@pytest.fixture
def off_hours():
    """20:00 UTC, outside every kill zone."""
    return datetime(2024, 1, 2, 20, 0, tzinfo=timezone.utc)
