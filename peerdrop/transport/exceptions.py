from peerdrop.negotiation.exceptions import (
    NegotiationError,
)


class WebRTCError(NegotiationError):
    """Raised when the WebRTC stack rejects a negotiation step."""
