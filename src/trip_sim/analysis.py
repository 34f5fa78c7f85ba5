"""Summary statistics over published telemetry.

Reads back ThingSpeak channel entries and reports averages, minima and
maxima per signal along with how many entries carried a DTC.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from statistics import fmean
from typing import Any

from pydantic import BaseModel

from trip_sim.simulator import Reading
from trip_sim.wire import decode_reading

logger = logging.getLogger(__name__)

# ThingSpeak feeds name the position columns differently from updates.
_FEED_ALIASES = {"latitude": "lat", "longitude": "long"}


class SignalStats(BaseModel):
    """Average, minimum and maximum of one signal."""

    avg: float
    min: float
    max: float


class FeedSummary(BaseModel):
    """Statistics over a run of readings.

    Attributes:
        entries: Number of readings.
        rpm: Engine speed statistics.
        speed_kmh: Road speed statistics.
        fuel_percent: Fuel level statistics.
        engine_temp_c: Engine temperature statistics.
        dtc_entries: Readings carrying a DTC.
        last_dtc: Most recent DTC code seen, if any.
    """

    entries: int
    rpm: SignalStats
    speed_kmh: SignalStats
    fuel_percent: SignalStats
    engine_temp_c: SignalStats
    dtc_entries: int
    last_dtc: str | None = None


def _stats(values: Sequence[float]) -> SignalStats:
    return SignalStats(avg=fmean(values), min=min(values), max=max(values))


def summarize(readings: Sequence[Reading]) -> FeedSummary | None:
    """Compute statistics for ``readings``.

    Returns:
        The summary, or ``None`` for an empty sequence.
    """
    if not readings:
        return None
    dtcs = [r.dtc_code for r in readings if r.dtc_code is not None]
    return FeedSummary(
        entries=len(readings),
        rpm=_stats([r.rpm for r in readings]),
        speed_kmh=_stats([r.speed_kmh for r in readings]),
        fuel_percent=_stats([r.fuel_percent for r in readings]),
        engine_temp_c=_stats([r.engine_temp_c for r in readings]),
        dtc_entries=len(dtcs),
        last_dtc=dtcs[-1] if dtcs else None,
    )


def readings_from_feed(entries: Iterable[Mapping[str, Any]]) -> list[Reading]:
    """Decode ThingSpeak feed entries, skipping incomplete ones."""
    readings = []
    for entry in entries:
        fields = {_FEED_ALIASES.get(k, k): v for k, v in entry.items()}
        try:
            readings.append(decode_reading(fields))
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("Skipping feed entry %s: %s", entry.get("entry_id"), exc)
    return readings


def format_summary(label: str, summary: FeedSummary | None) -> str:
    """Render a summary as console text."""
    if summary is None:
        return f"No data available for {label}."
    lines = [
        f"=== Telemetry summary for {label} ===",
        f"Entries: {summary.entries}",
        f"RPM avg: {summary.rpm.avg:.0f}, min: {summary.rpm.min:.0f}, max: {summary.rpm.max:.0f}",
        f"Speed avg: {summary.speed_kmh.avg:.1f} km/h, "
        f"min: {summary.speed_kmh.min:.0f}, max: {summary.speed_kmh.max:.0f}",
        f"Fuel avg: {summary.fuel_percent.avg:.2f} %, "
        f"min: {summary.fuel_percent.min:.2f} %, max: {summary.fuel_percent.max:.2f} %",
        f"Engine temp avg: {summary.engine_temp_c.avg:.1f} C, "
        f"min: {summary.engine_temp_c.min:.0f} C, max: {summary.engine_temp_c.max:.0f} C",
    ]
    dtc_line = f"DTC entries: {summary.dtc_entries}"
    if summary.last_dtc:
        dtc_line += f", last: {summary.last_dtc}"
    lines.append(dtc_line)
    return "\n".join(lines)
