"""Simulation clock.

Drives the tick loop of one trip: a fixed number of ticks at a fixed
interval, each one advancing the simulator, publishing the reading
and, when a new DTC appears, logging its description. A stop event
ends the trip promptly, even while a publish is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, Field

from trip_sim.config import TripConfig
from trip_sim.dtc import CodeDescriber
from trip_sim.exceptions import PublishError
from trip_sim.publishers import Publisher
from trip_sim.simulator import Reading, TripSimulator

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class TripSummary(BaseModel):
    """Outcome of one simulated trip.

    Attributes:
        ticks: Number of ticks simulated.
        published: Readings accepted by the publisher.
        failed: Readings the publisher rejected or failed to deliver.
        stopped_early: Whether a stop signal ended the trip.
        readings: Every reading produced, in order.
    """

    ticks: int = 0
    published: int = 0
    failed: int = 0
    stopped_early: bool = False
    readings: list[Reading] = Field(default_factory=list)


class _Stopped(Exception):
    """Internal signal that the stop event fired mid-tick."""


async def _race_stop(task: asyncio.Task, stop_event: asyncio.Event) -> bool:
    """Wait for ``task`` or ``stop_event``, whichever comes first.

    The loser is cancelled and awaited.

    Returns:
        ``True`` if ``task`` finished, ``False`` if the stop event won.
    """
    stop_wait = asyncio.create_task(stop_event.wait())
    done, pending = await asyncio.wait(
        {task, stop_wait},
        return_when=asyncio.FIRST_COMPLETED,
    )
    for loser in pending:
        loser.cancel()
        try:
            await loser
        except asyncio.CancelledError:
            pass
    return task in done


class SimulationClock:
    """Fixed-interval, fixed-duration tick loop.

    Args:
        config: Tick interval, trip duration and time scale.
        sleep: Awaitable used to pace ticks; replaced in tests.
    """

    def __init__(self, config: TripConfig | None = None, sleep: Sleep = asyncio.sleep) -> None:
        self._config = config or TripConfig()
        self._sleep = sleep

    @property
    def tick_count(self) -> int:
        """Number of ticks in a full trip."""
        return math.ceil(self._config.duration_seconds / self._config.tick_interval_seconds)

    async def run(
        self,
        simulator: TripSimulator,
        publisher: Publisher,
        describer: CodeDescriber | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> TripSummary:
        """Run one trip to completion or until ``stop_event`` is set.

        Args:
            simulator: Trip simulator to advance.
            publisher: Sink receiving each reading.
            describer: Optional DTC describer for log output.
            stop_event: Event that aborts the trip when set.

        Returns:
            Summary of the trip.
        """
        stop_event = stop_event or asyncio.Event()
        interval = self._config.tick_interval_seconds
        total = self.tick_count
        summary = TripSummary()
        last_code: str | None = None

        logger.info(
            "Starting trip: %d ticks, interval=%.1fs, duration=%.0fs",
            total, interval, self._config.duration_seconds,
        )

        try:
            for index in range(total):
                if stop_event.is_set():
                    raise _Stopped

                reading = simulator.tick(interval)
                summary.ticks += 1
                summary.readings.append(reading)

                if reading.dtc_code is not None and reading.dtc_code != last_code:
                    self._describe(describer, reading.dtc_code)
                last_code = reading.dtc_code

                if await self._publish(publisher, reading, stop_event):
                    summary.published += 1
                else:
                    summary.failed += 1

                if index < total - 1:
                    await self._wait(interval, stop_event)
        except _Stopped:
            summary.stopped_early = True
            logger.info("Trip stopped after %d/%d ticks", summary.ticks, total)
        else:
            logger.info("Trip finished: duration reached after %d ticks", summary.ticks)

        return summary

    async def _publish(
        self,
        publisher: Publisher,
        reading: Reading,
        stop_event: asyncio.Event,
    ) -> bool:
        publish_task = asyncio.create_task(publisher.publish(reading))
        if not await _race_stop(publish_task, stop_event):
            logger.info("Publish cancelled by stop signal")
            raise _Stopped

        try:
            accepted = publish_task.result()
        except PublishError as exc:
            logger.error("Publish failed at t=%.0fs: %s", reading.timestamp_offset, exc)
            return False
        if not accepted:
            logger.warning("Reading at t=%.0fs not accepted", reading.timestamp_offset)
        return accepted

    async def _wait(self, interval: float, stop_event: asyncio.Event) -> None:
        delay = interval * self._config.time_scale
        if delay <= 0:
            return
        sleep_task = asyncio.create_task(self._sleep(delay))
        if not await _race_stop(sleep_task, stop_event) or stop_event.is_set():
            raise _Stopped

    @staticmethod
    def _describe(describer: CodeDescriber | None, code: str) -> None:
        if describer is None:
            logger.info("DTC %s active", code)
            return
        info = describer.describe(code)
        if info is None or info.title is None:
            logger.info("DTC %s active (no description) %s", code, info.url if info else "")
        else:
            logger.info("DTC %s active: %s (%s)", code, info.title, info.url)
