from peerdrop.exceptions import (
    BasePeerdropError,
    ParseError,
)


class SignalingError(BasePeerdropError):
    """Base exception for signaling errors."""


class MalformedEnvelopeError(SignalingError, ParseError):
    """Raised when a signaling message is not valid JSON or misses a field."""


class SignalConnectionClosed(SignalingError):
    """The signaling connection is closed and cannot be used."""
