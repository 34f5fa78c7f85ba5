"""Exception types raised by the trip simulator collaborators."""


class TripSimError(Exception):
    """Base class for all trip simulator errors."""


class PublishError(TripSimError):
    """Raised when a telemetry backend fails to accept a reading."""

    def __init__(self, backend: str, detail: str) -> None:
        """Initialise with the failing backend and a human-readable detail.

        Args:
            backend: Short backend name (e.g. ``"thingspeak"``).
            detail: Description of the failure.
        """
        self.backend = backend
        self.detail = detail
        super().__init__(f"{backend} publish failed: {detail}")


class PublisherConnectionError(TripSimError):
    """Raised when a telemetry backend stays unreachable after retries."""

    def __init__(self, detail: str = "Telemetry backend unreachable") -> None:
        """Initialise with a human-readable error detail.

        Args:
            detail: Description of the connection failure.
        """
        self.detail = detail
        super().__init__(detail)
