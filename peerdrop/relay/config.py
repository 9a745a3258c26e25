"""
Configuration for the signaling relay.
"""

from dataclasses import (
    dataclass,
    field,
)

from peerdrop.exceptions import (
    ValidationError,
)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

DEFAULT_NAME_POOL = (
    "Indigo Fox",
    "Ruby Eagle",
    "Jade Turtle",
    "Gold Lion",
    "Opal Bear",
    "Sapphire Wolf",
)
FALLBACK_NAME_PREFIX = "User"

# Signaling messages are small; file bytes never reach the relay
DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024
DEFAULT_SEND_TIMEOUT = 5.0  # seconds
DEFAULT_HANDSHAKE_TIMEOUT = 15.0  # seconds

MIN_PORT = 0
MAX_PORT = 65535


@dataclass
class RelayConfig:
    """Configuration for the signaling relay."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # Display names handed out to connecting clients
    name_pool: tuple[str, ...] = field(default=DEFAULT_NAME_POOL)

    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT

    def validate(self) -> None:
        if not MIN_PORT <= self.port <= MAX_PORT:
            raise ValidationError(
                f"port must be between {MIN_PORT} and {MAX_PORT}, got {self.port}"
            )
        if len(set(self.name_pool)) != len(self.name_pool):
            raise ValidationError("name_pool contains duplicate names")
        if self.max_message_size <= 0:
            raise ValidationError("max_message_size must be positive")
        if self.send_timeout <= 0:
            raise ValidationError("send_timeout must be positive")
        if self.handshake_timeout <= 0:
            raise ValidationError("handshake_timeout must be positive")
