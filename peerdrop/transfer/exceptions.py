"""
Transfer protocol errors.
"""

from peerdrop.exceptions import (
    BasePeerdropError,
    ValidationError,
)


class TransferError(BasePeerdropError):
    """Base exception for transfer errors."""


class ManifestError(TransferError, ValidationError):
    """Raised when a manifest is malformed."""


class TransferProtocolError(TransferError):
    """Raised when messages arrive out of protocol order."""


class SizeMismatchError(TransferError):
    """Raised when received bytes diverge from the declared file size."""


class ChannelClosedError(TransferError):
    """The peer channel is closed and cannot be used for I/O."""


class BackpressureTimeoutError(TransferError):
    """Timed out waiting for the channel's outgoing buffer to drain."""
