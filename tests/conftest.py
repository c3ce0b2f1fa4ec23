"""Shared fixtures: the built-in solar system and small search settings."""

import numpy as np
import pytest

from config import TrajectorySearchSettings
from ephemeris.bodies import EARTH, SOLAR_SYSTEM, SUN


@pytest.fixture
def catalog():
    return SOLAR_SYSTEM


@pytest.fixture
def sun():
    return SUN


@pytest.fixture
def earth():
    return EARTH


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def search():
    """Search settings small enough for unit tests."""
    return TrajectorySearchSettings(max_generations=5, pop_size_dim_scale=2, split_limit=8)


@pytest.fixture
def window():
    """Departure window 2030-01-01 .. 2031-01-01 (s past J2000)."""
    date_min = 946_728_000.0
    return date_min, date_min + 365.0 * 86400.0
