"""Shared test fixtures for the trip simulator tests.

Provides seeded random sources and fast, deterministic settings so
every test can run whole trips without real waiting or network I/O.
"""

from __future__ import annotations

import random

import pytest

from trip_sim.config import FaultConfig, SimulatorSettings, TripConfig
from trip_sim.gps import Position
from trip_sim.simulator import Reading

SEED = 1234


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source."""
    return random.Random(SEED)


@pytest.fixture
def settings() -> SimulatorSettings:
    """Settings for a 10-minute trip at 5-second ticks, no pacing.

    Returns:
        SimulatorSettings with a fixed seed and ``time_scale`` 0.
    """
    return SimulatorSettings(
        _env_file=None,  # type: ignore[call-arg]
        trip=TripConfig(tick_interval_seconds=5.0, duration_seconds=600.0, time_scale=0.0),
        faults=FaultConfig(probability_per_tick=0.0),
        seed=SEED,
    )


@pytest.fixture
def reading() -> Reading:
    """A representative reading with an active DTC."""
    return Reading(
        timestamp_offset=45.0,
        rpm=3400,
        speed_kmh=60,
        fuel_percent=99.87,
        engine_temp_c=91,
        dtc_code="P0420",
        position=Position(latitude=59.363012, longitude=17.975431, altitude=12.5),
    )
