"""Exceptions for HighNoon-RTC.

Only ``ConfigurationError`` and ``WebRTCUnavailableError`` escape to the
embedding application (at construction time). The others are raised inside
the session layer and converted into ``HNResponse`` values before they reach
a caller.
"""


class HighNoonError(Exception):
    """Base class for all HighNoon-RTC errors."""

    pass


class ConfigurationError(HighNoonError):
    """Raised when session options are missing or invalid."""

    pass


class WebRTCUnavailableError(HighNoonError):
    """Raised when no negotiation capability exists in this environment."""

    pass


class RelayConnectionError(HighNoonError):
    """Raised when the relay cannot be reached."""

    pass


class RelayAuthenticationError(RelayConnectionError):
    """Raised when the relay rejects the project id / API token pair."""

    pass


class RelayTimeoutError(RelayConnectionError):
    """Raised when the relay handshake does not finish in time."""

    pass


class RequestTimeoutError(HighNoonError):
    """Raised when a bounded relay round trip gets no terminal response."""

    pass


class NotInitializedError(HighNoonError):
    """Raised when an operation is attempted before ``init`` completed."""

    pass


class NotConnectedError(HighNoonError):
    """Raised when a room-scoped operation is attempted outside a room."""

    pass


class NotFoundError(HighNoonError):
    """Raised when a target user id or room id is unknown."""

    pass
