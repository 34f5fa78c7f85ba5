"""Unit tests for the telemetry publishers.

ThingSpeak traffic goes through ``httpx.MockTransport`` and the Kuksa
``VSSClient`` is replaced with an ``AsyncMock``, so no test touches the
network.
"""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from kuksa_client.grpc import DataType, Field

from trip_sim.clock import SimulationClock
from trip_sim.config import PublisherConfig, SimulatorSettings, TripConfig
from trip_sim.exceptions import PublishError, PublisherConnectionError
from trip_sim.publishers import (
    API_KEY_HEADER,
    VSS_DTC_LIST,
    VSS_ENGINE_ECT,
    VSS_ENGINE_SPEED,
    VSS_FUEL_LEVEL,
    VSS_LATITUDE,
    VSS_VEHICLE_SPEED,
    KuksaPublisher,
    LogPublisher,
    ThingSpeakPublisher,
    build_updates,
    create_publisher,
)
from trip_sim.simulator import Reading, TripSimulator

_VSS_CLIENT_PATCH = "trip_sim.publishers.VSSClient"
_SLEEP_PATCH = "trip_sim.publishers.asyncio.sleep"
_BASE_URL = "https://api.thingspeak.test"
_API_KEY = "WRITEKEY123"
_READ_KEY = "READKEY456"


def _thingspeak(handler, api_key: str = _API_KEY) -> ThingSpeakPublisher:
    """Build a ThingSpeak publisher whose HTTP traffic goes to ``handler``."""
    client = httpx.AsyncClient(base_url=_BASE_URL, transport=httpx.MockTransport(handler))
    return ThingSpeakPublisher(api_key=api_key, client=client)


def _server_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="oops")


# ===================================================================
# LogPublisher
# ===================================================================
class TestLogPublisher:
    """Tests for the log-only sink."""

    @pytest.mark.asyncio
    async def test_publish_logs_reading(
        self, reading: Reading, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Each reading is logged as JSON and counted."""
        publisher = LogPublisher()
        with caplog.at_level(logging.INFO, logger="trip_sim.publishers"):
            assert await publisher.publish(reading) is True
        assert publisher.published == 1
        assert "P0420" in caplog.text

    @pytest.mark.asyncio
    async def test_close_is_safe(self) -> None:
        """Closing a log publisher does not raise."""
        await LogPublisher().close()


# ===================================================================
# ThingSpeakPublisher.publish
# ===================================================================
class TestThingSpeakPublish:
    """Tests for ``ThingSpeakPublisher.publish``."""

    @pytest.mark.asyncio
    async def test_accepted_update(self, reading: Reading) -> None:
        """An entry id in the body means the update was stored."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="42")

        publisher = _thingspeak(handler)
        assert await publisher.publish(reading) is True
        await publisher.close()

        assert len(requests) == 1
        params = requests[0].url.params
        assert requests[0].url.path == "/update"
        assert params["field1"] == "3400"
        assert params["field2"] == "60"
        assert params["field5"] == "P0420"
        assert params["field6"] == "1"
        assert params["status"] == "DTC: P0420"

    @pytest.mark.asyncio
    async def test_write_key_sent_in_header(self, reading: Reading) -> None:
        """The write key travels in the header and never in the URL."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="1")

        await _thingspeak(handler).publish(reading)

        assert requests[0].headers[API_KEY_HEADER] == _API_KEY
        assert "api_key" not in requests[0].url.params
        assert _API_KEY not in str(requests[0].url)

    @pytest.mark.asyncio
    async def test_rejected_update_returns_false(self, reading: Reading) -> None:
        """A ``0`` body means ThingSpeak rejected the update."""
        publisher = _thingspeak(lambda request: httpx.Response(200, text="0"))
        assert await publisher.publish(reading) is False

    @pytest.mark.asyncio
    async def test_empty_key_skips_request(self, reading: Reading) -> None:
        """A blank write key skips the HTTP call entirely."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text="1")

        publisher = _thingspeak(handler, api_key="  ")
        assert await publisher.publish(reading) is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_http_error_raises_publish_error(self, reading: Reading) -> None:
        """An HTTP error status becomes a PublishError naming the status."""
        publisher = _thingspeak(_server_error)
        with pytest.raises(PublishError) as exc_info:
            await publisher.publish(reading)
        assert exc_info.value.backend == "thingspeak"
        assert exc_info.value.detail == "HTTP 500"

    @pytest.mark.asyncio
    async def test_transport_error_raises_publish_error(self, reading: Reading) -> None:
        """A transport failure becomes a PublishError naming the error type."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        publisher = _thingspeak(handler)
        with pytest.raises(PublishError) as exc_info:
            await publisher.publish(reading)
        assert exc_info.value.detail == "ConnectError"


# ===================================================================
# API key never reaches the logs
# ===================================================================
class TestThingSpeakKeyLogging:
    """The write and read keys stay out of every log record."""

    @pytest.mark.asyncio
    async def test_key_absent_on_success(
        self, reading: Reading, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Neither our logger nor httpx's request log carries the key."""
        publisher = _thingspeak(lambda request: httpx.Response(200, text="7"))
        with caplog.at_level(logging.DEBUG):
            await publisher.publish(reading)
        assert _API_KEY not in caplog.text

    @pytest.mark.asyncio
    async def test_key_absent_from_error(self, reading: Reading) -> None:
        """The PublishError message does not embed the request URL."""
        with pytest.raises(PublishError) as exc_info:
            await _thingspeak(_server_error).publish(reading)
        assert _API_KEY not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_key_absent_when_clock_logs_failures(
        self, settings: SimulatorSettings, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A trip against a failing channel logs errors without the key."""
        trip = TripConfig(tick_interval_seconds=5.0, duration_seconds=20.0, time_scale=0.0)
        publisher = _thingspeak(_server_error)

        with caplog.at_level(logging.DEBUG):
            summary = await SimulationClock(trip).run(TripSimulator(settings), publisher)

        assert summary.failed == 4
        assert any(r.levelno == logging.ERROR for r in caplog.records)
        assert "thingspeak publish failed: HTTP 500" in caplog.text
        assert _API_KEY not in caplog.text

    @pytest.mark.asyncio
    async def test_read_key_absent_from_feed_logs(
        self, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Feed reads keep the read key out of logs and errors."""
        publisher = _thingspeak(_server_error)
        with caplog.at_level(logging.DEBUG):
            with pytest.raises(PublishError) as exc_info:
                await publisher.fetch_feed("99", _READ_KEY)
        assert _READ_KEY not in caplog.text
        assert _READ_KEY not in str(exc_info.value)


# ===================================================================
# ThingSpeakPublisher.fetch_feed
# ===================================================================
class TestThingSpeakFeed:
    """Tests for ``ThingSpeakPublisher.fetch_feed``."""

    @pytest.mark.asyncio
    async def test_fetch_feed_returns_entries(self) -> None:
        """Feed entries are returned and the query is built from arguments."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"channel": {"id": 99}, "feeds": [{"entry_id": 1, "field1": "800"}]},
            )

        publisher = _thingspeak(handler)
        feeds = await publisher.fetch_feed("99", _READ_KEY, results=10)

        assert feeds == [{"entry_id": 1, "field1": "800"}]
        assert seen[0].url.path == "/channels/99/feeds.json"
        assert seen[0].headers[API_KEY_HEADER] == _READ_KEY
        assert "api_key" not in seen[0].url.params
        assert seen[0].url.params["results"] == "10"
        assert "days" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_public_channel_sends_no_key(self) -> None:
        """Without a read key no key header is sent."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"feeds": []})

        await _thingspeak(handler).fetch_feed("99", days=2)
        assert API_KEY_HEADER not in seen[0].headers
        assert seen[0].url.params["days"] == "2"

    @pytest.mark.asyncio
    async def test_fetch_feed_without_feeds_key(self) -> None:
        """A payload without ``feeds`` yields an empty list."""
        publisher = _thingspeak(lambda request: httpx.Response(200, json={"channel": {}}))
        assert await publisher.fetch_feed("99", days=1) == []

    @pytest.mark.asyncio
    async def test_fetch_feed_error(self) -> None:
        """An HTTP error status becomes a PublishError."""
        publisher = _thingspeak(lambda request: httpx.Response(404, text="not found"))
        with pytest.raises(PublishError) as exc_info:
            await publisher.fetch_feed("99")
        assert exc_info.value.detail == "feed read failed: HTTP 404"

    @pytest.mark.asyncio
    async def test_fetch_feed_invalid_json(self) -> None:
        """A non-JSON body becomes a PublishError."""
        publisher = _thingspeak(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(PublishError):
            await publisher.fetch_feed("99")


# ===================================================================
# build_updates
# ===================================================================
class TestBuildUpdates:
    """Tests for the reading to VSS conversion."""

    def test_paths_and_values(self, reading: Reading) -> None:
        """Each signal lands on its VSS path with the reading's value."""
        updates = {u.entry.path: u for u in build_updates(reading)}

        assert updates[VSS_VEHICLE_SPEED].entry.value.value == 60.0
        assert updates[VSS_ENGINE_SPEED].entry.value.value == 3400.0
        assert updates[VSS_ENGINE_ECT].entry.value.value == 91.0
        assert updates[VSS_FUEL_LEVEL].entry.value.value == 99.87
        assert updates[VSS_LATITUDE].entry.value.value == 59.363012

    def test_value_types(self, reading: Reading) -> None:
        """Entries carry explicit data types."""
        updates = {u.entry.path: u for u in build_updates(reading)}
        assert updates[VSS_VEHICLE_SPEED].entry.value_type == DataType.FLOAT
        assert updates[VSS_LATITUDE].entry.value_type == DataType.DOUBLE
        assert updates[VSS_DTC_LIST].entry.value_type == DataType.STRING_ARRAY

    def test_all_updates_set_value_field(self, reading: Reading) -> None:
        """Only the VALUE field is written."""
        for update in build_updates(reading):
            assert tuple(update.fields) == (Field.VALUE,)

    def test_dtc_list_with_code(self, reading: Reading) -> None:
        """An active DTC becomes a one-element list."""
        updates = {u.entry.path: u for u in build_updates(reading)}
        assert updates[VSS_DTC_LIST].entry.value.value == "[P0420]"

    def test_dtc_list_empty(self, reading: Reading) -> None:
        """No active DTC becomes an empty list."""
        clear = reading.model_copy(update={"dtc_code": None})
        updates = {u.entry.path: u for u in build_updates(clear)}
        assert updates[VSS_DTC_LIST].entry.value.value == "[]"


# ===================================================================
# KuksaPublisher
# ===================================================================
class TestKuksaPublisher:
    """Tests for the Kuksa Databroker sink."""

    @pytest.mark.asyncio
    async def test_connect_success(self) -> None:
        """Successful connection creates and connects a VSSClient."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient:
            mock_instance = AsyncMock()
            MockVSSClient.return_value = mock_instance

            publisher = KuksaPublisher("localhost", 55555)
            await publisher.connect()

            MockVSSClient.assert_called_once_with(host="localhost", port=55555)
            mock_instance.connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_retries_then_succeeds(self) -> None:
        """A failed attempt is retried after the initial backoff."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient, \
                patch(_SLEEP_PATCH, new_callable=AsyncMock) as mock_sleep:
            mock_instance = AsyncMock()
            mock_instance.connect.side_effect = [Exception("refused"), None]
            MockVSSClient.return_value = mock_instance

            await KuksaPublisher("localhost", 55555).connect()

            assert mock_instance.connect.await_count == 2
            mock_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_connect_exhausts_retries(self) -> None:
        """Exhausted retries raise PublisherConnectionError with doubling backoff."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient, \
                patch(_SLEEP_PATCH, new_callable=AsyncMock) as mock_sleep:
            mock_instance = AsyncMock()
            mock_instance.connect.side_effect = Exception("refused")
            MockVSSClient.return_value = mock_instance

            publisher = KuksaPublisher("broker.local", 1234, max_retries=3)
            with pytest.raises(PublisherConnectionError) as exc_info:
                await publisher.connect()

            assert "broker.local:1234" in str(exc_info.value)
            assert mock_instance.connect.await_count == 3
            assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_publish_connects_lazily(self, reading: Reading) -> None:
        """The first publish connects; later ones reuse the client."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient:
            mock_instance = AsyncMock()
            MockVSSClient.return_value = mock_instance

            publisher = KuksaPublisher("localhost", 55555)
            assert await publisher.publish(reading) is True
            assert await publisher.publish(reading) is True

            mock_instance.connect.assert_awaited_once()
            assert mock_instance.set.await_count == 2
            updates = mock_instance.set.await_args.kwargs["updates"]
            assert len(updates) == len(build_updates(reading))

    @pytest.mark.asyncio
    async def test_publish_failure_raises_publish_error(self, reading: Reading) -> None:
        """A failing ``set`` becomes a PublishError for the kuksa backend."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient:
            mock_instance = AsyncMock()
            mock_instance.set.side_effect = RuntimeError("stream reset")
            MockVSSClient.return_value = mock_instance

            publisher = KuksaPublisher("localhost", 55555)
            with pytest.raises(PublishError) as exc_info:
                await publisher.publish(reading)
            assert exc_info.value.backend == "kuksa"

    @pytest.mark.asyncio
    async def test_close_disconnects(self) -> None:
        """Close disconnects the client and clears the reference."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient:
            mock_instance = AsyncMock()
            MockVSSClient.return_value = mock_instance

            publisher = KuksaPublisher("localhost", 55555)
            await publisher.connect()
            await publisher.close()

            mock_instance.disconnect.assert_awaited_once()
            assert publisher._client is None

    @pytest.mark.asyncio
    async def test_close_ignores_disconnect_error(self) -> None:
        """Close swallows errors from the underlying client."""
        with patch(_VSS_CLIENT_PATCH) as MockVSSClient:
            mock_instance = AsyncMock()
            mock_instance.disconnect.side_effect = RuntimeError("oops")
            MockVSSClient.return_value = mock_instance

            publisher = KuksaPublisher("localhost", 55555)
            await publisher.connect()
            await publisher.close()
            assert publisher._client is None

    @pytest.mark.asyncio
    async def test_close_when_not_connected(self) -> None:
        """Close on an unconnected publisher does not raise."""
        await KuksaPublisher("localhost", 55555).close()


# ===================================================================
# create_publisher
# ===================================================================
class TestCreatePublisher:
    """Tests for the publisher factory."""

    def test_default_is_log(self) -> None:
        """The default kind builds a LogPublisher."""
        assert isinstance(create_publisher(PublisherConfig()), LogPublisher)

    def test_thingspeak(self) -> None:
        """``thingspeak`` builds a ThingSpeakPublisher."""
        publisher = create_publisher(PublisherConfig(kind="thingspeak", thingspeak_api_key="k"))
        assert isinstance(publisher, ThingSpeakPublisher)

    def test_kuksa(self) -> None:
        """``kuksa`` builds a KuksaPublisher for the configured broker."""
        publisher = create_publisher(PublisherConfig(kind="kuksa", kuksa_host="db", kuksa_port=1))
        assert isinstance(publisher, KuksaPublisher)
        assert publisher._host == "db"
        assert publisher._port == 1
