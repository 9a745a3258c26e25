"""
Transfer protocol configuration constants and defaults.
"""

from dataclasses import (
    dataclass,
)

from peerdrop.exceptions import (
    ValidationError,
)

# Default chunk size: 64 KiB
DEFAULT_CHUNK_SIZE = 64 * 1024

# Queue at most this much on the channel before waiting for it to drain
DEFAULT_MAX_BUFFERED_AMOUNT = 256 * 1024
DEFAULT_BUFFERED_AMOUNT_LOW_TIMEOUT = 30.0  # seconds
# How long a sender waits for the receiver to close the channel after a batch
DEFAULT_CLOSE_TIMEOUT = 10.0  # seconds

START_MESSAGE_TYPE = "start"
END_MESSAGE_TYPE = "end"


@dataclass
class TransferConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_buffered_amount: int = DEFAULT_MAX_BUFFERED_AMOUNT
    buffered_amount_low_timeout: float = DEFAULT_BUFFERED_AMOUNT_LOW_TIMEOUT
    # Send an explicit "end" control message after the last chunk
    send_end_marker: bool = False
    close_timeout: float = DEFAULT_CLOSE_TIMEOUT

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise ValidationError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.max_buffered_amount < 0:
            raise ValidationError("max_buffered_amount must not be negative")
        if self.buffered_amount_low_timeout <= 0:
            raise ValidationError("buffered_amount_low_timeout must be positive")
        if self.close_timeout <= 0:
            raise ValidationError("close_timeout must be positive")
