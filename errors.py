"""Exception hierarchy for roadwatch."""


class RoadWatchError(Exception):
    """Base exception for all roadwatch errors."""


class ValidationError(RoadWatchError, ValueError):
    """Bad input to a store mutation. Raised before any state changes."""


class DeliveryError(RoadWatchError):
    """Writing an event to one subscriber failed."""

    def __init__(self, message: str, subscriber_id: int = 0):
        self.subscriber_id = subscriber_id
        super().__init__(message)


class SubscriberConnectionError(RoadWatchError):
    """Handshake or read-loop failure on a subscriber connection."""


class GeocodingError(RoadWatchError):
    """Upstream geocoding request failed (network, non-200, invalid JSON)."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)
