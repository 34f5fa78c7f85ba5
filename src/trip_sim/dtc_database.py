"""Built-in DTC reference table.

Maps common OBD-II codes to a short title, a severity level and the
affected vehicle system. Covers every code the fault injector can
emit from its built-in set plus frequent powertrain (Pxxxx), body
(Bxxxx), chassis (Cxxxx) and network (Uxxxx) codes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

Severity = Literal["low", "medium", "high", "critical"]


class DTCEntry(BaseModel):
    """Reference data for a single DTC code.

    Attributes:
        code: OBD-II DTC code (e.g. ``P0300``).
        description: Human-readable title of the fault.
        severity: Urgency level for the driver or technician.
        system: Vehicle subsystem affected.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    description: str
    severity: Severity
    system: str


_ROWS: tuple[tuple[str, str, Severity, str], ...] = (
    # Fuel and air metering
    ("P0101", "Mass air flow sensor range/performance", "medium", "Engine"),
    ("P0113", "Intake air temperature sensor circuit high", "low", "Engine"),
    ("P0117", "Engine coolant temperature sensor circuit low", "medium", "Engine"),
    ("P0128", "Coolant thermostat below regulating temperature", "medium", "Engine"),
    ("P0133", "O2 sensor circuit slow response (bank 1, sensor 1)", "medium", "Emission"),
    ("P0171", "System too lean (bank 1)", "medium", "Engine"),
    ("P0172", "System too rich (bank 1)", "medium", "Engine"),
    ("P0217", "Engine overtemperature condition", "critical", "Engine"),
    # Ignition and misfire
    ("P0300", "Random/multiple cylinder misfire detected", "high", "Engine"),
    ("P0301", "Cylinder 1 misfire detected", "high", "Engine"),
    ("P0335", "Crankshaft position sensor A circuit", "critical", "Engine"),
    # Auxiliary emission controls
    ("P0401", "Exhaust gas recirculation flow insufficient", "medium", "Emission"),
    ("P0420", "Catalyst system efficiency below threshold (bank 1)", "medium", "Emission"),
    ("P0442", "Evaporative emission system small leak detected", "low", "Emission"),
    ("P0455", "Evaporative emission system large leak detected", "low", "Emission"),
    # Speed, idle and electrical
    ("P0500", "Vehicle speed sensor malfunction", "medium", "Transmission"),
    ("P0505", "Idle air control system malfunction", "medium", "Engine"),
    ("P0562", "System voltage low", "medium", "Electrical"),
    ("P0700", "Transmission control system malfunction", "high", "Transmission"),
    # Body, chassis, network
    ("B0001", "Driver frontal stage 1 deployment control", "critical", "Airbag"),
    ("C0035", "Left front wheel speed sensor circuit", "high", "ABS"),
    ("U0100", "Lost communication with ECM/PCM A", "critical", "Network"),
    ("U0121", "Lost communication with ABS control module", "high", "Network"),
)

DTC_DATABASE: dict[str, DTCEntry] = {
    code: DTCEntry(code=code, description=description, severity=severity, system=system)
    for code, description, severity, system in _ROWS
}


def get_dtc_entry(code: str) -> DTCEntry | None:
    """Look up a DTC code in the table.

    Args:
        code: OBD-II DTC code. Case-insensitive.

    Returns:
        ``DTCEntry`` if found, else ``None``.
    """
    return DTC_DATABASE.get(code.strip().upper())


def get_all_dtc_codes() -> list[str]:
    """Return all DTC codes present in the table, sorted."""
    return sorted(DTC_DATABASE)
