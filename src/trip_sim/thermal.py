"""Engine coolant temperature model.

First-order thermal lag toward a target composed of a baseline, a
speed term, an engine-load term and a bonus that ramps in only after
sustained high-speed driving. The bonus accumulator rises at full rate
and decays at half rate so the temperature does not oscillate when
speed hovers around the high-speed threshold.
"""

from __future__ import annotations

import logging
import math
import random

from trip_sim.config import ThermalConfig, VehicleConfig

logger = logging.getLogger(__name__)

HIGH_SPEED_DECAY_FACTOR = 0.5


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class EngineTemperatureModel:
    """Stateful, seedable engine temperature simulator.

    Attributes:
        _thermal: Temperature constants.
        _vehicle: Speed and RPM ranges used to normalise inputs.
        _rng: Random source for the jitter term.
        _temp: Current temperature in Celsius.
        _target: Target computed on the most recent update.
        _high_speed_seconds: Sustained high-speed accumulator.
    """

    def __init__(
        self,
        thermal: ThermalConfig | None = None,
        vehicle: VehicleConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._thermal = thermal or ThermalConfig()
        self._vehicle = vehicle or VehicleConfig()
        self._rng = rng or random.Random()
        self._temp: float = self._thermal.initial_c
        self._target: float = self._thermal.initial_c
        self._high_speed_seconds: float = 0.0

    @property
    def temperature_c(self) -> float:
        """Current engine temperature in Celsius."""
        return self._temp

    @property
    def target_c(self) -> float:
        """Target temperature from the most recent update."""
        return self._target

    @property
    def high_speed_seconds(self) -> float:
        """Seconds of sustained high-speed driving currently accumulated."""
        return self._high_speed_seconds

    def compute_target(self, speed_kmh: float, rpm: float) -> float:
        """Target temperature for the given inputs and current accumulator.

        Does not modify model state.

        Args:
            speed_kmh: Road speed.
            rpm: Engine speed.

        Returns:
            Target temperature clamped to ``[min_c, max_c]``.
        """
        cfg = self._thermal
        speed_frac = self._speed_fraction(speed_kmh)
        load_frac = self._load_fraction(rpm)
        bonus = cfg.high_speed_bonus_max_c * (
            self._high_speed_seconds / cfg.high_speed_sustain_seconds
        )
        target = (
            cfg.baseline_c
            + cfg.speed_coefficient * speed_frac
            + cfg.load_coefficient * load_frac
            + bonus
        )
        return _clamp(target, cfg.min_c, cfg.max_c)

    def update(self, speed_kmh: float, rpm: float, dt_seconds: float) -> float:
        """Advance the temperature by one tick.

        Args:
            speed_kmh: Road speed during the tick.
            rpm: Engine speed during the tick.
            dt_seconds: Tick length in seconds.

        Returns:
            New temperature in Celsius, within ``[min_c, max_c]``.
        """
        cfg = self._thermal
        dt = max(0.0, dt_seconds)

        if self._speed_fraction(speed_kmh) >= cfg.high_speed_ratio:
            self._high_speed_seconds = min(
                cfg.high_speed_sustain_seconds, self._high_speed_seconds + dt,
            )
        else:
            self._high_speed_seconds = max(
                0.0, self._high_speed_seconds - dt * HIGH_SPEED_DECAY_FACTOR,
            )

        self._target = self.compute_target(speed_kmh, rpm)

        alpha = 1.0 - math.exp(-dt / cfg.tau_seconds)
        self._temp += (self._target - self._temp) * alpha
        self._temp += self._rng.uniform(-cfg.jitter_c, cfg.jitter_c)
        self._temp = _clamp(self._temp, cfg.min_c, cfg.max_c)

        logger.debug(
            "Thermal: temp=%.2f target=%.2f high_speed=%.1fs",
            self._temp, self._target, self._high_speed_seconds,
        )
        return self._temp

    def reset(self) -> None:
        """Reset to the trip-start temperature."""
        self._temp = self._thermal.initial_c
        self._target = self._thermal.initial_c
        self._high_speed_seconds = 0.0

    def _speed_fraction(self, speed_kmh: float) -> float:
        return _clamp(speed_kmh / self._vehicle.max_speed_kmh, 0.0, 1.0)

    def _load_fraction(self, rpm: float) -> float:
        span = self._vehicle.max_rpm - self._vehicle.idle_rpm
        return _clamp((rpm - self._vehicle.idle_rpm) / span, 0.0, 1.0)
