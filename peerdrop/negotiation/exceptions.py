from peerdrop.exceptions import (
    BasePeerdropError,
)


class NegotiationError(BasePeerdropError):
    """Base exception for connection negotiation errors."""


class InvalidTransitionError(NegotiationError):
    """Raised on a state change the negotiation state machine does not allow."""


class NegotiationTimeoutError(NegotiationError):
    """The peer channel did not open in time."""
