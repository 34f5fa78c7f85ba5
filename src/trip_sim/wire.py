"""ThingSpeak channel encoding of readings.

Channel layout:

    field1  engine RPM
    field2  road speed (km/h)
    field3  fuel level (%)
    field4  engine temperature (C)
    field5  DTC code (only sent when a fault is active)
    field6  DTC flag, ``1`` or ``0``
    field7  trip offset (s)
    lat / long / elevation   GPS position
    status  ``"DTC: <code>"`` or ``"OK"``
"""

from __future__ import annotations

from collections.abc import Mapping

from trip_sim.gps import Position
from trip_sim.simulator import Reading

FIELD_RPM = "field1"
FIELD_SPEED = "field2"
FIELD_FUEL = "field3"
FIELD_TEMP = "field4"
FIELD_DTC = "field5"
FIELD_DTC_FLAG = "field6"
FIELD_OFFSET = "field7"
FIELD_LAT = "lat"
FIELD_LON = "long"
FIELD_ELEVATION = "elevation"
FIELD_STATUS = "status"

STATUS_OK = "OK"


def encode_reading(reading: Reading) -> dict[str, str]:
    """Encode a reading as ThingSpeak update parameters.

    Floats use ``repr`` so decoding restores them exactly.

    Args:
        reading: Reading to encode.

    Returns:
        Parameter name to string value.
    """
    fields = {
        FIELD_RPM: str(reading.rpm),
        FIELD_SPEED: str(reading.speed_kmh),
        FIELD_FUEL: repr(reading.fuel_percent),
        FIELD_TEMP: str(reading.engine_temp_c),
        FIELD_DTC_FLAG: "1" if reading.has_dtc else "0",
        FIELD_OFFSET: repr(reading.timestamp_offset),
        FIELD_LAT: repr(reading.position.latitude),
        FIELD_LON: repr(reading.position.longitude),
        FIELD_ELEVATION: repr(reading.position.altitude),
        FIELD_STATUS: f"DTC: {reading.dtc_code}" if reading.has_dtc else STATUS_OK,
    }
    if reading.dtc_code is not None:
        fields[FIELD_DTC] = reading.dtc_code
    return fields


def _optional_float(fields: Mapping[str, str | None], key: str, default: float = 0.0) -> float:
    value = fields.get(key)
    if value is None or value == "":
        return default
    return float(value)


def decode_reading(fields: Mapping[str, str | None]) -> Reading:
    """Rebuild a reading from ThingSpeak parameters or a feed entry.

    Feed entries may omit the offset and position; those default to 0.

    Args:
        fields: Parameter name to string value.

    Returns:
        The decoded reading.

    Raises:
        KeyError: If a required channel field is missing.
        ValueError: If a numeric field cannot be parsed.
    """
    dtc = fields.get(FIELD_DTC) or None
    return Reading(
        timestamp_offset=_optional_float(fields, FIELD_OFFSET),
        rpm=int(fields[FIELD_RPM]),
        speed_kmh=int(fields[FIELD_SPEED]),
        fuel_percent=float(fields[FIELD_FUEL]),
        engine_temp_c=int(fields[FIELD_TEMP]),
        dtc_code=dtc.strip() if dtc else None,
        position=Position(
            latitude=_optional_float(fields, FIELD_LAT),
            longitude=_optional_float(fields, FIELD_LON),
            altitude=_optional_float(fields, FIELD_ELEVATION),
        ),
    )
