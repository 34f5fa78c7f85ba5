"""Command-line entry point for the trip simulator.

``run`` simulates one trip and publishes every reading to the
configured telemetry sink, shutting down gracefully on SIGINT/SIGTERM.
``analyze`` reads the ThingSpeak channel back and prints statistics.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any

from pydantic import ValidationError

from trip_sim.analysis import format_summary, readings_from_feed, summarize
from trip_sim.clock import SimulationClock, TripSummary
from trip_sim.config import SimulatorSettings
from trip_sim.dtc import build_describer, load_codes_csv
from trip_sim.exceptions import PublishError, PublisherConnectionError
from trip_sim.publishers import KuksaPublisher, ThingSpeakPublisher, create_publisher
from trip_sim.simulator import TripSimulator

logger = logging.getLogger(__name__)


def _setup_logging(level_name: str) -> None:
    """Configure root logger with structured format.

    Args:
        level_name: Logging level string (e.g., ``"INFO"``, ``"DEBUG"``).
    """
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trip-sim",
        description="Simulate a vehicle trip and publish its telemetry.",
    )
    parser.add_argument("--log-level", help="Logging level (default from settings)")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser(
        "run",
        help="Simulate one trip",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    run.add_argument("--duration", type=float, help="Trip length in seconds")
    run.add_argument("--interval", type=float, help="Tick interval in seconds")
    run.add_argument(
        "--time-scale", type=float,
        help="Wall-clock seconds per simulated second (0 = as fast as possible)",
    )
    run.add_argument("--seed", type=int, help="Seed for a reproducible trip")
    run.add_argument(
        "--publisher", choices=("log", "thingspeak", "kuksa"), help="Telemetry sink",
    )
    run.add_argument("--codes-csv", help="File listing DTC codes to inject")
    run.add_argument("--descriptions-csv", help="File mapping DTC codes to titles")

    analyze = sub.add_parser("analyze", help="Summarize the ThingSpeak channel feed")
    group = analyze.add_mutually_exclusive_group()
    group.add_argument("--days", type=int, help="Entries from the last N days")
    group.add_argument("--results", type=int, help="Last N entries")
    return parser


def _settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map command-line flags onto nested settings keys."""
    overrides: dict[str, Any] = {}

    def put(section: str, key: str, value: Any) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    if args.log_level:
        overrides["log_level"] = args.log_level
    if getattr(args, "seed", None) is not None:
        overrides["seed"] = args.seed
    put("trip", "duration_seconds", getattr(args, "duration", None))
    put("trip", "tick_interval_seconds", getattr(args, "interval", None))
    put("trip", "time_scale", getattr(args, "time_scale", None))
    put("publisher", "kind", getattr(args, "publisher", None))
    put("dtc", "codes_csv", getattr(args, "codes_csv", None))
    put("dtc", "descriptions_csv", getattr(args, "descriptions_csv", None))
    return overrides


def _log_startup_banner(settings: SimulatorSettings) -> None:
    logger.info("=" * 60)
    logger.info("Trip Simulator starting")
    logger.info("  Publisher: %s", settings.publisher.kind)
    logger.info("  Duration:  %.0fs", settings.trip.duration_seconds)
    logger.info("  Interval:  %.1fs", settings.trip.tick_interval_seconds)
    logger.info("  Seed:      %s", settings.seed if settings.seed is not None else "random")
    logger.info("=" * 60)


def _register_shutdown_handler(shutdown_event: asyncio.Event) -> None:
    """Register OS signal handlers for graceful shutdown.

    Args:
        shutdown_event: Event to set when shutdown signal is received.
    """
    def _on_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s, initiating shutdown...", sig.name)
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig)


async def run_trip(settings: SimulatorSettings) -> TripSummary:
    """Simulate and publish one trip.

    Args:
        settings: Validated simulator configuration.

    Returns:
        Summary of the trip.

    Raises:
        PublisherConnectionError: If the telemetry sink is unreachable.
    """
    codes: list[str] = []
    if settings.dtc.codes_csv is not None:
        codes = load_codes_csv(settings.dtc.codes_csv)

    simulator = TripSimulator(settings, codes)
    describer = build_describer(settings.dtc.descriptions_csv)
    publisher = create_publisher(settings.publisher)
    clock = SimulationClock(settings.trip)

    shutdown_event = asyncio.Event()
    _register_shutdown_handler(shutdown_event)

    try:
        if isinstance(publisher, KuksaPublisher):
            await publisher.connect()
        summary = await clock.run(simulator, publisher, describer, shutdown_event)
    finally:
        await publisher.close()

    logger.info(
        "Trip summary: %d ticks, %d published, %d failed%s",
        summary.ticks, summary.published, summary.failed,
        " (stopped early)" if summary.stopped_early else "",
    )
    return summary


async def analyze_feed(settings: SimulatorSettings, days: int | None, results: int | None) -> str:
    """Fetch the ThingSpeak feed and format its summary."""
    cfg = settings.publisher
    if results is None and days is None:
        days = 1
    label = f"last {results} entries" if results is not None else f"last {days} day(s)"

    publisher = ThingSpeakPublisher(
        api_key=cfg.thingspeak_api_key,
        base_url=cfg.thingspeak_base_url,
        timeout_seconds=cfg.timeout_seconds,
    )
    try:
        entries = await publisher.fetch_feed(
            cfg.thingspeak_channel_id, cfg.thingspeak_read_api_key,
            days=days, results=results,
        )
    finally:
        await publisher.close()
    return format_summary(label, summarize(readings_from_feed(entries)))


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the chosen command.

    Returns:
        Process exit status.
    """
    args = _build_arg_parser().parse_args(argv)
    command = args.command or "run"

    try:
        settings = SimulatorSettings(**_settings_overrides(args))
    except ValidationError as exc:
        _setup_logging("INFO")
        logger.error("Invalid configuration: %s", exc)
        return 1
    _setup_logging(settings.log_level)

    if command == "analyze":
        try:
            print(asyncio.run(analyze_feed(settings, args.days, args.results)))
        except PublishError as exc:
            logger.error("%s", exc)
            return 1
        return 0

    _log_startup_banner(settings)
    try:
        asyncio.run(run_trip(settings))
    except PublisherConnectionError as exc:
        logger.error("Fatal connection error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")

    logger.info("Trip Simulator stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
