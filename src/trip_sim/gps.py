"""GPS dead-reckoning navigator.

Derives the vehicle position from road speed, elapsed time and a
slowly drifting heading using the great-circle destination point
formula on a spherical Earth. No map snapping or road constraints.
"""

from __future__ import annotations

import logging
import math
import random

from pydantic import BaseModel, ConfigDict

from trip_sim.config import GpsConfig

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0
KMH_PER_MPS = 3.6


class Position(BaseModel):
    """WGS84 position.

    Attributes:
        latitude: Degrees in [-90, 90].
        longitude: Degrees in (-180, 180].
        altitude: Meters above sea level.
    """

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    altitude: float = 0.0


def normalize_heading(heading_deg: float) -> float:
    """Wrap a heading into ``[0, 360)``."""
    heading = heading_deg % 360.0
    # A tiny negative input can round up to exactly 360.0.
    if heading >= 360.0:
        heading -= 360.0
    return heading


def normalize_longitude(longitude_deg: float) -> float:
    """Wrap a longitude into ``(-180, 180]``.

    In-range values are returned unchanged so a configured start point
    is reproduced exactly.
    """
    if -180.0 < longitude_deg <= 180.0:
        return longitude_deg
    lon = (longitude_deg + 180.0) % 360.0 - 180.0
    if lon <= -180.0:
        lon += 360.0
    return lon


def destination_point(start: Position, distance_m: float, bearing_deg: float) -> Position:
    """Project a point along a great circle.

    Args:
        start: Origin position.
        distance_m: Distance to travel in meters.
        bearing_deg: Initial bearing, clockwise from true north.

    Returns:
        Position reached after travelling ``distance_m`` from ``start``.
        Altitude is carried over unchanged.

    Raises:
        ValueError: If ``distance_m`` is negative.
    """
    if distance_m < 0:
        raise ValueError(f"distance must be non-negative, got {distance_m}")

    bearing = math.radians(normalize_heading(bearing_deg))
    lat1 = math.radians(start.latitude)
    lon1 = math.radians(start.longitude)
    angular = distance_m / EARTH_RADIUS_M

    sin_lat1 = math.sin(lat1)
    cos_lat1 = math.cos(lat1)
    sin_ad = math.sin(angular)
    cos_ad = math.cos(angular)

    sin_lat2 = sin_lat1 * cos_ad + cos_lat1 * sin_ad * math.cos(bearing)
    lat2 = math.asin(max(-1.0, min(1.0, sin_lat2)))

    y = math.sin(bearing) * sin_ad * cos_lat1
    x = cos_ad - sin_lat1 * sin_lat2
    lon2 = lon1 + math.atan2(y, x)

    return Position(
        latitude=math.degrees(lat2),
        longitude=normalize_longitude(math.degrees(lon2)),
        altitude=start.altitude,
    )


class GpsNavigator:
    """Dead-reckoning position tracker.

    Attributes:
        _config: Start point and heading drift settings.
        _rng: Random source for heading drift.
        _position: Current position.
        _heading: Current heading in degrees, ``[0, 360)``.
    """

    def __init__(self, config: GpsConfig | None = None, rng: random.Random | None = None) -> None:
        self._config = config or GpsConfig()
        self._rng = rng or random.Random()
        self._position = self._start_position()
        self._heading = normalize_heading(self._config.initial_heading_deg)

    @property
    def position(self) -> Position:
        """Current position."""
        return self._position

    @property
    def heading_deg(self) -> float:
        """Current heading in degrees."""
        return self._heading

    def update(
        self,
        speed_kmh: float,
        dt_seconds: float,
        altitude: float | None = None,
    ) -> Position:
        """Advance the position by one tick.

        Args:
            speed_kmh: Road speed during the tick.
            dt_seconds: Tick length in seconds.
            altitude: Replacement altitude; keeps the current one if omitted.

        Returns:
            The new position.
        """
        distance_m = max(0.0, speed_kmh) / KMH_PER_MPS * max(0.0, dt_seconds)

        drift_range = self._config.heading_drift_range_deg
        if drift_range > 0:
            drift = self._rng.uniform(-drift_range / 2.0, drift_range / 2.0)
            self._heading = normalize_heading(self._heading + drift)

        moved = destination_point(self._position, distance_m, self._heading)
        if altitude is not None:
            moved = moved.model_copy(update={"altitude": altitude})
        self._position = moved

        logger.debug(
            "GPS: lat=%.6f lon=%.6f heading=%.1f distance=%.1fm",
            moved.latitude, moved.longitude, self._heading, distance_m,
        )
        return moved

    def reset(self) -> None:
        """Return to the configured start point and heading."""
        self._position = self._start_position()
        self._heading = normalize_heading(self._config.initial_heading_deg)

    def _start_position(self) -> Position:
        return Position(
            latitude=self._config.start_latitude,
            longitude=normalize_longitude(self._config.start_longitude),
            altitude=self._config.start_altitude_m,
        )
