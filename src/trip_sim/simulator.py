"""Trip simulator.

Owns road speed, engine RPM and fuel level, advances the trip phase
each tick, and composes the engine temperature model, the fault
injector and the GPS navigator into a single telemetry reading.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict

from trip_sim.config import SimulatorSettings, VehicleConfig
from trip_sim.faults import FaultInjector
from trip_sim.gps import GpsNavigator, Position
from trip_sim.thermal import EngineTemperatureModel

logger = logging.getLogger(__name__)

FULL_TANK_PERCENT = 100.0
FUEL_DECIMALS = 2


class TripPhase(str, Enum):
    """Driving phase derived from the current road speed."""

    ACCELERATING = "accelerating"
    CRUISING = "cruising"
    DECELERATING = "decelerating"

    @classmethod
    def for_speed(cls, speed_kmh: float, config: VehicleConfig) -> TripPhase:
        """Classify a speed into a phase using absolute km/h bands.

        Args:
            speed_kmh: Current road speed.
            config: Vehicle constants holding the band edges.

        Returns:
            ``ACCELERATING`` below ``accelerate_below_kmh``,
            ``DECELERATING`` above ``decelerate_above_kmh``,
            ``CRUISING`` otherwise.
        """
        if speed_kmh < config.accelerate_below_kmh:
            return cls.ACCELERATING
        if speed_kmh > config.decelerate_above_kmh:
            return cls.DECELERATING
        return cls.CRUISING


class Reading(BaseModel):
    """One telemetry sample, as handed to a publisher.

    Attributes:
        timestamp_offset: Trip offset in seconds at which the sample
            was taken.
        rpm: Engine speed, rounded.
        speed_kmh: Road speed, rounded.
        fuel_percent: Fuel level, two decimals.
        engine_temp_c: Engine temperature, rounded.
        dtc_code: Active DTC code, or ``None``.
        position: GPS position.
    """

    model_config = ConfigDict(frozen=True)

    timestamp_offset: float
    rpm: int
    speed_kmh: int
    fuel_percent: float
    engine_temp_c: int
    dtc_code: str | None = None
    position: Position

    @property
    def has_dtc(self) -> bool:
        """Whether a DTC is asserted in this reading."""
        return self.dtc_code is not None


@dataclass(frozen=True)
class VehicleState:
    """Snapshot of the full vehicle state between ticks."""

    speed_kmh: float
    rpm: float
    fuel_percent: float
    engine_temp_c: float
    heading_deg: float
    position: Position
    phase: TripPhase
    elapsed_seconds: float


def calculate_rpm(speed_kmh: float, config: VehicleConfig) -> float:
    """Derive engine speed from road speed.

    Idles below the minimal motion speed, otherwise interpolates
    linearly from ``idle_rpm`` at standstill to ``max_rpm`` at
    ``max_speed_kmh``. Never returns less than ``idle_rpm``.

    Args:
        speed_kmh: Road speed.
        config: Vehicle constants.

    Returns:
        Engine speed in RPM.
    """
    if speed_kmh < config.min_motion_speed_kmh:
        return config.idle_rpm
    rpm = config.idle_rpm + (speed_kmh / config.max_speed_kmh) * (
        config.max_rpm - config.idle_rpm
    )
    return max(config.idle_rpm, rpm)


class TripSimulator:
    """Advances the vehicle state one tick at a time.

    All components share one random source owned by this instance, so
    a seeded ``random.Random`` reproduces a trip exactly.

    Attributes:
        _settings: Full simulator configuration.
        _vehicle: Shortcut to the vehicle constants.
        _rng: Random source shared by all components.
        _thermal: Engine temperature model.
        _faults: DTC fault injector.
        _gps: Dead-reckoning navigator.
        _speed: Road speed in km/h.
        _rpm: Engine speed.
        _fuel: Fuel level in percent.
        _phase: Phase chosen on the last tick.
        _elapsed: Trip offset in seconds of the next tick.
    """

    def __init__(
        self,
        settings: SimulatorSettings | None = None,
        codes: Sequence[str] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings or SimulatorSettings()
        self._vehicle = self._settings.vehicle
        if rng is None:
            rng = random.Random(self._settings.seed)
        self._rng = rng

        self._thermal = EngineTemperatureModel(self._settings.thermal, self._vehicle, rng)
        self._faults = FaultInjector(self._settings.faults, codes, rng)
        self._gps = GpsNavigator(self._settings.gps, rng)

        self._speed: float = 0.0
        self._rpm: float = self._vehicle.idle_rpm
        self._fuel: float = FULL_TANK_PERCENT
        self._phase = TripPhase.ACCELERATING
        self._elapsed: float = 0.0
        self._faults.plan(self._settings.trip.duration_seconds)

        logger.info(
            "TripSimulator initialized: max_speed=%.0f km/h, codes=%d",
            self._vehicle.max_speed_kmh, len(codes),
        )

    @property
    def faults(self) -> FaultInjector:
        """The fault injector driving DTC status."""
        return self._faults

    @property
    def thermal(self) -> EngineTemperatureModel:
        """The engine temperature model."""
        return self._thermal

    @property
    def gps(self) -> GpsNavigator:
        """The dead-reckoning navigator."""
        return self._gps

    @property
    def state(self) -> VehicleState:
        """Snapshot of the current vehicle state."""
        return VehicleState(
            speed_kmh=self._speed,
            rpm=self._rpm,
            fuel_percent=self._fuel,
            engine_temp_c=self._thermal.temperature_c,
            heading_deg=self._gps.heading_deg,
            position=self._gps.position,
            phase=self._phase,
            elapsed_seconds=self._elapsed,
        )

    def tick(self, dt_seconds: float) -> Reading:
        """Advance the trip by one tick and produce a reading.

        Args:
            dt_seconds: Tick length in seconds.

        Returns:
            Immutable reading for the tick.
        """
        now = self._elapsed

        self._phase = TripPhase.for_speed(self._speed, self._vehicle)
        self._speed = self._apply_phase(self._phase, self._speed)
        self._speed = max(0.0, min(self._vehicle.max_speed_kmh, self._speed))
        self._rpm = calculate_rpm(self._speed, self._vehicle)
        self._consume_fuel(dt_seconds)

        temp = self._thermal.update(self._speed, self._rpm, dt_seconds)
        dtc = self._faults.tick(now)
        position = self._gps.update(self._speed, dt_seconds)

        reading = Reading(
            timestamp_offset=now,
            rpm=round(self._rpm),
            speed_kmh=round(self._speed),
            fuel_percent=round(self._fuel, FUEL_DECIMALS),
            engine_temp_c=round(temp),
            dtc_code=dtc,
            position=position,
        )

        self._elapsed += dt_seconds

        logger.info(
            "t=%.0fs | %s | speed=%.0f km/h rpm=%.0f fuel=%.1f%% temp=%.1fC dtc=%s",
            now, self._phase.value, self._speed, self._rpm, self._fuel, temp,
            dtc or "-",
        )
        return reading

    def reset(self) -> None:
        """Restore trip-start values and plan a new scheduled fault."""
        self._speed = 0.0
        self._rpm = self._vehicle.idle_rpm
        self._fuel = FULL_TANK_PERCENT
        self._phase = TripPhase.ACCELERATING
        self._elapsed = 0.0
        self._thermal.reset()
        self._faults.reset()
        self._gps.reset()
        self._faults.plan(self._settings.trip.duration_seconds)

        logger.info("Trip state reset to initial values")

    def _apply_phase(self, phase: TripPhase, speed: float) -> float:
        cfg = self._vehicle
        if phase is TripPhase.ACCELERATING:
            return speed + self._rng.uniform(
                cfg.accelerate_delta_min_kmh, cfg.accelerate_delta_max_kmh,
            )
        if phase is TripPhase.CRUISING:
            return speed + self._rng.uniform(-cfg.cruise_jitter_kmh, cfg.cruise_jitter_kmh)
        if phase is TripPhase.DECELERATING:
            return speed - self._rng.uniform(
                cfg.decelerate_delta_min_kmh, cfg.decelerate_delta_max_kmh,
            )
        raise AssertionError(f"Unhandled trip phase: {phase}")

    def _consume_fuel(self, dt_seconds: float) -> None:
        cfg = self._vehicle
        rate = (
            (self._speed / cfg.max_speed_kmh)
            * (self._rpm / cfg.max_rpm)
            * cfg.max_fuel_consumption_per_second
        )
        self._fuel = max(0.0, self._fuel - rate * max(0.0, dt_seconds))
