"""Configuration management for the trip simulator.

Every tunable constant of the simulation core lives in a named
section model. The top-level settings object loads overrides from
environment variables (nested with ``__``) and an optional ``.env``
file using pydantic-settings. Out-of-range values fail fast with a
``pydantic.ValidationError`` when the settings are constructed.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

# Rosengatan 8, Sundbyberg
DEFAULT_START_LATITUDE = 59.362893293655716
DEFAULT_START_LONGITUDE = 17.972157154401952

PublisherKind = Literal["log", "thingspeak", "kuksa"]


class VehicleConfig(BaseModel):
    """Speed, RPM, fuel and trip-phase constants.

    Trip phases use absolute km/h bands: below ``accelerate_below_kmh``
    the vehicle accelerates, above ``decelerate_above_kmh`` it
    decelerates, in between it cruises.

    Attributes:
        max_speed_kmh: Upper clamp for road speed.
        idle_rpm: Engine speed at standstill.
        max_rpm: Engine speed at ``max_speed_kmh``.
        max_fuel_consumption_per_second: Fuel percentage burned per
            second at full speed and full RPM.
        min_motion_speed_kmh: Below this speed the engine idles.
        accelerate_below_kmh: Upper bound of the accelerating band.
        decelerate_above_kmh: Lower bound of the decelerating band.
        accelerate_delta_min_kmh: Smallest per-tick speed gain.
        accelerate_delta_max_kmh: Largest per-tick speed gain.
        cruise_jitter_kmh: Half-width of the per-tick cruising jitter.
        decelerate_delta_min_kmh: Smallest per-tick speed loss.
        decelerate_delta_max_kmh: Largest per-tick speed loss.
    """

    max_speed_kmh: float = Field(default=120.0, gt=0)
    idle_rpm: float = Field(default=800.0, gt=0)
    max_rpm: float = Field(default=6000.0, gt=0)
    max_fuel_consumption_per_second: float = Field(default=0.005, ge=0)
    min_motion_speed_kmh: float = Field(default=1.0, ge=0)
    accelerate_below_kmh: float = Field(default=30.0, gt=0)
    decelerate_above_kmh: float = Field(default=90.0, gt=0)
    accelerate_delta_min_kmh: float = Field(default=2.0, ge=0)
    accelerate_delta_max_kmh: float = Field(default=5.0, ge=0)
    cruise_jitter_kmh: float = Field(default=1.0, ge=0)
    decelerate_delta_min_kmh: float = Field(default=2.0, ge=0)
    decelerate_delta_max_kmh: float = Field(default=5.0, ge=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> VehicleConfig:
        if self.max_rpm <= self.idle_rpm:
            raise ValueError("max_rpm must be greater than idle_rpm")
        if not self.accelerate_below_kmh < self.decelerate_above_kmh <= self.max_speed_kmh:
            raise ValueError(
                "phase bands must satisfy "
                "accelerate_below_kmh < decelerate_above_kmh <= max_speed_kmh"
            )
        if self.accelerate_delta_min_kmh > self.accelerate_delta_max_kmh:
            raise ValueError("accelerate delta range is inverted")
        if self.decelerate_delta_min_kmh > self.decelerate_delta_max_kmh:
            raise ValueError("decelerate delta range is inverted")
        return self


class ThermalConfig(BaseModel):
    """Engine temperature model constants (degrees Celsius, seconds).

    Attributes:
        min_c: Lower clamp for engine temperature.
        max_c: Upper clamp for engine temperature.
        initial_c: Temperature at trip start.
        baseline_c: Target temperature at standstill and idle.
        speed_coefficient: Target rise at full speed.
        load_coefficient: Target rise at full engine load.
        tau_seconds: Thermal time constant of the smoothing step.
        high_speed_ratio: Speed fraction counted as sustained high speed.
        high_speed_sustain_seconds: Accumulator cap; the bonus reaches
            its maximum after this much high-speed driving.
        high_speed_bonus_max_c: Extra target rise at full accumulator.
        jitter_c: Half-width of the uniform per-update jitter.
    """

    min_c: float = 80.0
    max_c: float = 100.0
    initial_c: float = 80.0
    baseline_c: float = 82.0
    speed_coefficient: float = 10.0
    load_coefficient: float = 6.0
    tau_seconds: float = Field(default=30.0, gt=0)
    high_speed_ratio: float = Field(default=0.95, gt=0, le=1)
    high_speed_sustain_seconds: float = Field(default=30.0, gt=0)
    high_speed_bonus_max_c: float = Field(default=2.0, ge=0)
    jitter_c: float = Field(default=0.2, ge=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> ThermalConfig:
        if self.min_c >= self.max_c:
            raise ValueError("min_c must be lower than max_c")
        if not self.min_c <= self.initial_c <= self.max_c:
            raise ValueError("initial_c must lie within [min_c, max_c]")
        return self


class FaultConfig(BaseModel):
    """Fault injection timing.

    Attributes:
        active_seconds: How long an activated DTC stays asserted.
        cooldown_seconds: Quiet period after a DTC clears.
        probability_per_tick: Chance of an unscheduled fault per idle tick.
        schedule_margin_seconds: The guaranteed fault is scheduled at
            least this far from both ends of the trip.
    """

    active_seconds: float = Field(default=120.0, gt=0)
    cooldown_seconds: float = Field(default=180.0, ge=0)
    probability_per_tick: float = Field(default=0.01, ge=0, le=1)
    schedule_margin_seconds: float = Field(default=60.0, ge=0)


class GpsConfig(BaseModel):
    """Dead-reckoning start point and heading drift.

    Attributes:
        start_latitude: Trip start latitude in degrees.
        start_longitude: Trip start longitude in degrees.
        start_altitude_m: Trip start altitude in meters.
        initial_heading_deg: Heading at trip start, clockwise from north.
        heading_drift_range_deg: Full width of the uniform per-tick drift.
    """

    start_latitude: float = Field(default=DEFAULT_START_LATITUDE, ge=-90, le=90)
    start_longitude: float = Field(default=DEFAULT_START_LONGITUDE, ge=-180, le=180)
    start_altitude_m: float = 0.0
    initial_heading_deg: float = 90.0
    heading_drift_range_deg: float = Field(default=10.0, ge=0, lt=360)


class TripConfig(BaseModel):
    """Tick cadence and trip length.

    Attributes:
        tick_interval_seconds: Simulated seconds per tick.
        duration_seconds: Total simulated trip length.
        time_scale: Wall-clock seconds waited per simulated second;
            ``0`` runs the trip as fast as possible.
    """

    tick_interval_seconds: float = Field(default=15.0, gt=0)
    duration_seconds: float = Field(default=600.0, gt=0)
    time_scale: float = Field(default=1.0, ge=0)


class PublisherConfig(BaseModel):
    """Telemetry sink selection and connection parameters.

    Attributes:
        kind: Which publisher to build.
        thingspeak_api_key: ThingSpeak channel write key.
        thingspeak_read_api_key: ThingSpeak channel read key (feeds).
        thingspeak_channel_id: ThingSpeak channel id (feeds).
        thingspeak_base_url: ThingSpeak API root.
        timeout_seconds: HTTP request timeout.
        kuksa_host: Kuksa Databroker hostname.
        kuksa_port: Kuksa Databroker gRPC port.
    """

    kind: PublisherKind = "log"
    thingspeak_api_key: str = ""
    thingspeak_read_api_key: str = ""
    thingspeak_channel_id: str = ""
    thingspeak_base_url: str = "https://api.thingspeak.com"
    timeout_seconds: float = Field(default=10.0, gt=0)
    kuksa_host: str = "localhost"
    kuksa_port: int = Field(default=55555, gt=0, lt=65536)


class DtcSourceConfig(BaseModel):
    """Optional DTC code and description files.

    Attributes:
        codes_csv: File listing valid codes, one per line.
        descriptions_csv: File mapping codes to titles.
    """

    codes_csv: Path | None = None
    descriptions_csv: Path | None = None


class SimulatorSettings(BaseSettings):
    """Application configuration loaded from environment variables.

    Attributes:
        vehicle: Speed, RPM and fuel constants.
        thermal: Engine temperature model constants.
        faults: Fault injection timing.
        gps: Dead-reckoning start point and drift.
        trip: Tick cadence and trip length.
        publisher: Telemetry sink selection.
        dtc: DTC code and description sources.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        seed: Optional seed for a reproducible trip.
    """

    vehicle: VehicleConfig = Field(default_factory=VehicleConfig)
    thermal: ThermalConfig = Field(default_factory=ThermalConfig)
    faults: FaultConfig = Field(default_factory=FaultConfig)
    gps: GpsConfig = Field(default_factory=GpsConfig)
    trip: TripConfig = Field(default_factory=TripConfig)
    publisher: PublisherConfig = Field(default_factory=PublisherConfig)
    dtc: DtcSourceConfig = Field(default_factory=DtcSourceConfig)
    log_level: str = "INFO"
    seed: int | None = None

    model_config = {
        "env_prefix": "",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> SimulatorSettings:
    """Get the application configuration singleton.

    Returns:
        Cached SimulatorSettings instance loaded from environment.
    """
    return SimulatorSettings()
