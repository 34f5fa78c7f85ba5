"""Telemetry publishers.

A publisher accepts one reading at a time and reports success or
failure. Delivery is best effort: the simulation clock logs failures
and keeps going, so retry policy, if any, belongs here.

Three sinks are provided:

- ``LogPublisher`` writes readings to the log.
- ``ThingSpeakPublisher`` sends channel updates over HTTP.
- ``KuksaPublisher`` writes VSS signals to an Eclipse Kuksa Databroker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx
from kuksa_client.grpc import DataEntry, DataType, Datapoint, EntryUpdate, Field
from kuksa_client.grpc.aio import VSSClient

from trip_sim.config import PublisherConfig
from trip_sim.exceptions import PublishError, PublisherConnectionError
from trip_sim.simulator import Reading
from trip_sim.wire import encode_reading

logger = logging.getLogger(__name__)

# --- VSS Paths ---
VSS_VEHICLE_SPEED = "Vehicle.Speed"
VSS_ENGINE_SPEED = "Vehicle.Powertrain.CombustionEngine.Speed"
VSS_ENGINE_ECT = "Vehicle.Powertrain.CombustionEngine.ECT"
VSS_FUEL_LEVEL = "Vehicle.Powertrain.FuelSystem.RelativeLevel"
VSS_DTC_LIST = "Vehicle.OBD.DTCList"
VSS_LATITUDE = "Vehicle.CurrentLocation.Latitude"
VSS_LONGITUDE = "Vehicle.CurrentLocation.Longitude"
VSS_ALTITUDE = "Vehicle.CurrentLocation.Altitude"

# --- Retry Constants ---
MAX_CONNECT_RETRIES = 5
INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 30.0
BACKOFF_MULTIPLIER = 2.0

THINGSPEAK_REJECTED = "0"
API_KEY_HEADER = "X-THINGSPEAKAPIKEY"


class Publisher(Protocol):
    """Accepts readings for a telemetry backend."""

    async def publish(self, reading: Reading) -> bool:
        """Deliver one reading.

        Returns:
            ``True`` when the backend accepted the reading.

        Raises:
            PublishError: When the backend could not be reached.
        """
        ...

    async def close(self) -> None:
        """Release any connection held by the publisher."""
        ...


class LogPublisher:
    """Writes readings to the log instead of a remote backend."""

    def __init__(self) -> None:
        self.published = 0

    async def publish(self, reading: Reading) -> bool:
        self.published += 1
        logger.info("Telemetry: %s", reading.model_dump_json())
        return True

    async def close(self) -> None:
        logger.debug("LogPublisher closed after %d readings", self.published)


def _describe_http_error(exc: httpx.HTTPError) -> str:
    """Summarize an httpx error without the request URL."""
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return type(exc).__name__


class ThingSpeakPublisher:
    """Sends readings to a ThingSpeak channel.

    Args:
        api_key: Channel write key. When empty, readings are skipped.
            Keys travel in the ``X-THINGSPEAKAPIKEY`` header, never in the
            request URL.
        base_url: ThingSpeak API root.
        timeout_seconds: Per-request timeout.
        client: Pre-built HTTP client, mainly for tests.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.thingspeak.com",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds,
        )

    async def publish(self, reading: Reading) -> bool:
        if not self._api_key.strip():
            logger.warning("ThingSpeak API key not set; skipping send")
            return False

        params = encode_reading(reading)
        logger.debug("ThingSpeak request: %s", params)
        try:
            response = await self._client.get(
                "/update", params=params, headers={API_KEY_HEADER: self._api_key},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PublishError("thingspeak", _describe_http_error(exc)) from exc

        body = response.text.strip()
        if body == THINGSPEAK_REJECTED:
            logger.warning("ThingSpeak rejected update (rate limit or bad key)")
            return False
        logger.info("ThingSpeak accepted update, entry id %s", body)
        return True

    async def fetch_feed(
        self,
        channel_id: str,
        read_api_key: str = "",
        days: int | None = None,
        results: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read back channel entries.

        Args:
            channel_id: ThingSpeak channel id.
            read_api_key: Channel read key for private channels.
            days: Limit to entries from the last ``days`` days.
            results: Limit to the last ``results`` entries.

        Returns:
            Raw feed entries, oldest first.

        Raises:
            PublishError: When the feed cannot be retrieved.
        """
        params: dict[str, Any] = {}
        headers = {API_KEY_HEADER: read_api_key} if read_api_key else {}
        if days is not None:
            params["days"] = days
        if results is not None:
            params["results"] = results

        try:
            response = await self._client.get(
                f"/channels/{channel_id}/feeds.json", params=params, headers=headers,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise PublishError(
                "thingspeak", f"feed read failed: {_describe_http_error(exc)}",
            ) from exc
        except ValueError as exc:
            raise PublishError("thingspeak", "feed read failed: invalid JSON") from exc

        feeds = payload.get("feeds") or []
        logger.info("Fetched %d feed entries from channel %s", len(feeds), channel_id)
        return feeds

    async def close(self) -> None:
        await self._client.aclose()


def build_updates(reading: Reading) -> list[EntryUpdate]:
    """Convert a reading to Kuksa ``EntryUpdate`` objects.

    Each entry carries an explicit ``DataType`` so the gRPC layer knows
    which protobuf oneof field to populate.

    Args:
        reading: Reading to convert.

    Returns:
        List of EntryUpdate instances ready for ``VSSClient.set``.
    """
    signals: list[tuple[str, Any, DataType]] = [
        (VSS_VEHICLE_SPEED, float(reading.speed_kmh), DataType.FLOAT),
        (VSS_ENGINE_SPEED, float(reading.rpm), DataType.FLOAT),
        (VSS_ENGINE_ECT, float(reading.engine_temp_c), DataType.FLOAT),
        (VSS_FUEL_LEVEL, reading.fuel_percent, DataType.FLOAT),
        (VSS_LATITUDE, reading.position.latitude, DataType.DOUBLE),
        (VSS_LONGITUDE, reading.position.longitude, DataType.DOUBLE),
        (VSS_ALTITUDE, reading.position.altitude, DataType.DOUBLE),
        # kuksa-client expects STRING_ARRAY values as a bracketed string.
        (VSS_DTC_LIST, "[" + (reading.dtc_code or "") + "]", DataType.STRING_ARRAY),
    ]
    return [
        EntryUpdate(DataEntry(path, value=Datapoint(value), value_type=vtype), (Field.VALUE,))
        for path, value, vtype in signals
    ]


class KuksaPublisher:
    """Writes readings as VSS signals to an Eclipse Kuksa Databroker.

    Connects lazily on the first publish, with exponential backoff.

    Args:
        host: Databroker hostname.
        port: Databroker gRPC port.
        max_retries: Connection attempts before giving up.
    """

    def __init__(self, host: str, port: int, max_retries: int = MAX_CONNECT_RETRIES) -> None:
        self._host = host
        self._port = port
        self._max_retries = max_retries
        self._client: VSSClient | None = None

    async def connect(self) -> None:
        """Connect to the Databroker, retrying with exponential backoff.

        Raises:
            PublisherConnectionError: If all attempts fail.
        """
        backoff = INITIAL_BACKOFF_SECONDS
        for attempt in range(1, self._max_retries + 1):
            try:
                client = VSSClient(host=self._host, port=self._port)
                await client.connect()
            except Exception as exc:
                logger.warning(
                    "Connection attempt %d/%d failed: %s",
                    attempt, self._max_retries, exc,
                )
                if attempt == self._max_retries:
                    raise PublisherConnectionError(
                        "Failed to connect to Kuksa Databroker at %s:%d "
                        "after %d attempts" % (self._host, self._port, self._max_retries)
                    ) from exc
                logger.info("Retrying in %.1f seconds...", backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
            else:
                self._client = client
                logger.info(
                    "Connected to Kuksa Databroker at %s:%d (attempt %d/%d)",
                    self._host, self._port, attempt, self._max_retries,
                )
                return

    async def publish(self, reading: Reading) -> bool:
        if self._client is None:
            await self.connect()
        assert self._client is not None
        try:
            await self._client.set(updates=build_updates(reading))
        except Exception as exc:
            raise PublishError("kuksa", str(exc)) from exc
        return True

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.disconnect()
            logger.info("Disconnected from Kuksa Databroker")
        except Exception as exc:
            logger.warning("Error during disconnect: %s", exc)
        finally:
            self._client = None


def create_publisher(config: PublisherConfig) -> Publisher:
    """Build the publisher selected by ``config.kind``."""
    if config.kind == "thingspeak":
        return ThingSpeakPublisher(
            api_key=config.thingspeak_api_key,
            base_url=config.thingspeak_base_url,
            timeout_seconds=config.timeout_seconds,
        )
    if config.kind == "kuksa":
        return KuksaPublisher(config.kuksa_host, config.kuksa_port)
    return LogPublisher()
